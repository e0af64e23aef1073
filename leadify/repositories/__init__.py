"""
Repositories Layer
MongoDB persistence for conversations, the token ledger, leads and agent profiles.
"""
from .connection import db_manager, get_database, DatabaseManager
from .base import BaseRepository
from .conversations import ConversationRepository
from .token_usage import TokenUsageRepository
from .leads import LeadRepository
from .agent_configs import AgentConfigRepository

__all__ = [
    "db_manager",
    "get_database",
    "DatabaseManager",
    "BaseRepository",
    "ConversationRepository",
    "TokenUsageRepository",
    "LeadRepository",
    "AgentConfigRepository",
]
