from typing import AsyncGenerator
import logging

from pollboard.core.config import uses_memory_store
from pollboard.core.db import AsyncSessionLocal
from pollboard.store.base import (
    POLL_ANALYTICS, POLL_OPTIONS, POLLS, VOTES, PollStore
)
from pollboard.store.memory import InMemoryPollStore
from pollboard.store.sqlalchemy_store import SQLAlchemyPollStore

logger = logging.getLogger(__name__)

# Shared by every request when STORE_BACKEND=memory
memory_store = InMemoryPollStore()


async def get_store() -> AsyncGenerator[PollStore, None]:
    """
    Dependency that yields the configured PollStore.

    Yields:
        PollStore: the process-wide in-memory store, or a SQLAlchemy store
        wrapping a fresh session that is closed after the request
    """
    if uses_memory_store():
        yield memory_store
        return

    async with AsyncSessionLocal() as session:
        yield SQLAlchemyPollStore(session)


__all__ = [
    "POLLS",
    "POLL_OPTIONS",
    "VOTES",
    "POLL_ANALYTICS",
    "PollStore",
    "InMemoryPollStore",
    "SQLAlchemyPollStore",
    "get_store",
    "memory_store",
]
