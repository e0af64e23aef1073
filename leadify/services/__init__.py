"""Services package."""
from leadify.services.handoff_service import (
    HandoffService,
    HandoffNotifier,
    SlackHandoffNotifier,
    LogOnlyNotifier,
    HandoffRequest,
    get_handoff_service,
)
from leadify.services.token_ledger import TokenLedger, LedgerWriteFailure, get_token_ledger

__all__ = [
    "HandoffService",
    "HandoffNotifier",
    "SlackHandoffNotifier",
    "LogOnlyNotifier",
    "HandoffRequest",
    "get_handoff_service",
    "TokenLedger",
    "LedgerWriteFailure",
    "get_token_ledger",
]
