from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

_local_locks: dict[str, asyncio.Lock] = {}
_local_holders: dict[str, int] = {}

@asynccontextmanager
async def transaction_lock(session: AsyncSession, key: str) -> AsyncIterator[None]:
    """
    Serialize work on `key` until the surrounding transaction ends.

    On PostgreSQL this takes pg_advisory_xact_lock, released by the commit or
    rollback the caller issues inside the block. Other dialects (sqlite in
    tests, single-process dev) fall back to an in-process keyed asyncio.Lock
    held for the duration of the block.
    """
    if session.get_bind().dialect.name == "postgresql":
        await session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:k))"), {"k": key})
        yield
        return

    lock = _local_locks.setdefault(key, asyncio.Lock())
    _local_holders[key] = _local_holders.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _local_holders[key] -= 1
        if _local_holders[key] == 0:
            del _local_holders[key]
            _local_locks.pop(key, None)

def attempt_key(participant_id, quiz_id) -> str:
    return f"attempt:{participant_id}:{quiz_id}"

def session_key(session_id) -> str:
    return f"session:{session_id}"
