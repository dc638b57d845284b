# app/services/resource_lock.py
"""
Per-resource mutual exclusion backed by MongoDB.

A lock is a document in `resource_locks` whose _id is the resource key, so
the collection's built-in unique _id index lets exactly one writer hold it.
Locks are leases: a holder that dies without releasing is reclaimed after
LOCK_LEASE_SECONDS.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import List, Optional, Tuple

from pymongo.errors import DuplicateKeyError

from app.core.config import (
    COLLECTION_LOCKS, LOCK_LEASE_SECONDS, LOCK_POLL_INTERVAL_SECONDS, LOCK_TIMEOUT_SECONDS,
)
from app.core.exceptions import ConcurrencyConflict
from app.db.mongodb import get_db
from app.utiles.custom_helpers import _now_utc, _gen_lock_token
from app.utiles.logger import get_logger

logger = get_logger(__name__)


def resource_key(resource_kind: str, resource_id: str) -> str:
    return f"{resource_kind}:{resource_id}"


async def acquire_lock(key: str, timeout: Optional[float] = None) -> str:
    """Block until `key` is held or `timeout` elapses. Returns the owner token."""
    timeout = LOCK_TIMEOUT_SECONDS if timeout is None else timeout
    coll = get_db()[COLLECTION_LOCKS]
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    token = _gen_lock_token()

    while True:
        now = _now_utc()
        try:
            await coll.insert_one({
                "_id": key,
                "owner": token,
                "acquired_at": now,
                "expires_at": now + timedelta(seconds=LOCK_LEASE_SECONDS),
            })
            logger.debug("Lock acquired: %s (%s)", key, token)
            return token
        except DuplicateKeyError:
            reclaimed = await coll.delete_one({"_id": key, "expires_at": {"$lte": now}})
            if reclaimed.deleted_count:
                logger.warning("Reclaimed expired lock %s", key)
                continue

        if loop.time() >= deadline:
            logger.warning("Timed out after %ss waiting for lock %s", timeout, key)
            raise ConcurrencyConflict(
                f"Resource {key} is being modified by another request; retry the operation",
                resource=key,
            )
        await asyncio.sleep(LOCK_POLL_INTERVAL_SECONDS)


async def release_lock(key: str, token: str) -> None:
    result = await get_db()[COLLECTION_LOCKS].delete_one({"_id": key, "owner": token})
    if not result.deleted_count:
        # Lease expired and someone else took over
        logger.warning("Lock %s was no longer held by %s at release", key, token)


@asynccontextmanager
async def hold_resources(*keys: str, timeout: Optional[float] = None):
    """Hold every lock in `keys` for the duration of the block.

    Keys are taken in sorted order so two writers touching the same pair of
    resources cannot deadlock each other.
    """
    held: List[Tuple[str, str]] = []
    try:
        for key in sorted(set(keys)):
            held.append((key, await acquire_lock(key, timeout)))
        yield
    finally:
        for key, token in reversed(held):
            await release_lock(key, token)
