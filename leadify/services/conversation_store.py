"""
Conversation State Storage

Abstract persistence for ConversationState plus an in-memory implementation.
The MongoDB implementation lives in `leadify.repositories.conversations`.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Optional
from leadify.models.conversation import ConversationState


class ConversationNotFound(Exception):
    """Raised when an operation targets an unknown conversation."""
    pass


class ConversationStore(ABC):

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        pass

    @abstractmethod
    async def save(self, state: ConversationState) -> ConversationState:
        pass

    @abstractmethod
    async def commit(self, state: ConversationState) -> bool:
        """
        Save unless the stored conversation was archived in the meantime.
        Returns False (and writes nothing) for archived conversations.
        """
        pass

    @abstractmethod
    async def is_archived(self, conversation_id: str) -> bool:
        pass

    @abstractmethod
    async def archive(self, conversation_id: str) -> bool:
        """Mark archived. Returns False if the conversation does not exist."""
        pass


class InMemoryConversationStore(ConversationStore):
    """
    Stores deep copies so callers never share mutable state with the store.
    """

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._lock = asyncio.Lock()

    async def get(self, conversation_id: str) -> Optional[ConversationState]:
        state = self._states.get(conversation_id)
        return state.model_copy(deep=True) if state else None

    async def save(self, state: ConversationState) -> ConversationState:
        async with self._lock:
            state.touch()
            self._states[state.conversation_id] = state.model_copy(deep=True)
        return state

    async def commit(self, state: ConversationState) -> bool:
        async with self._lock:
            stored = self._states.get(state.conversation_id)
            if stored is not None and stored.archived:
                return False
            state.touch()
            self._states[state.conversation_id] = state.model_copy(deep=True)
            return True

    async def is_archived(self, conversation_id: str) -> bool:
        state = self._states.get(conversation_id)
        return bool(state and state.archived)

    async def archive(self, conversation_id: str) -> bool:
        async with self._lock:
            state = self._states.get(conversation_id)
            if state is None:
                return False
            state.archived = True
            state.touch()
            return True
