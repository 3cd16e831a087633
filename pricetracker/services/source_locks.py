"""
Lease-based lock table giving single-writer access to sources.

A lock is a row keyed by ``source:<uuid>`` (or ``catalog`` for catalog
writes). Acquiring is an insert that the primary key makes atomic, so the
same table works for coroutines, threads and separate worker processes.
Leases expire so a crashed worker cannot wedge a source.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pricetracker.core.config import settings
from pricetracker.core.exceptions import SourceBusyError
from pricetracker.core.identity import Clock, utcnow
from pricetracker.core.logging import get_logger
from pricetracker.models.source_lock import SourceLock

logger = get_logger(__name__)

CATALOG_LOCK_KEY = "catalog"


def source_lock_key(source_id: UUID) -> str:
    """Lock key for a source."""
    return f"source:{source_id}"


class SourceLockTable:
    """Acquire and release leases stored in the ``source_locks`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock = utcnow,
        ttl_seconds: Optional[int] = None,
        catalog_ttl_seconds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds or settings.LOCK_TTL_SECONDS)
        # Catalog writes are short; a dead holder must not stall every source for long
        self.catalog_ttl = timedelta(seconds=catalog_ttl_seconds or settings.CATALOG_LOCK_TTL_SECONDS)

    def lease_length(self, key: str) -> timedelta:
        return self.catalog_ttl if key == CATALOG_LOCK_KEY else self.ttl

    async def try_acquire(self, key: str, owner: str, ttl: Optional[timedelta] = None) -> bool:
        """
        Take the lease for ``key`` if nobody holds a live one.

        Args:
            key: Lock key
            owner: Owner token stored on the lease
            ttl: Lease length (defaults to ``lease_length(key)``)

        Returns:
            True if acquired, False if another owner holds it
        """
        now = self.clock()
        async with self.session_factory() as db:
            await db.execute(
                delete(SourceLock).where(
                    SourceLock.lock_key == key,
                    SourceLock.expires_at < now,
                )
            )
            db.add(
                SourceLock(
                    lock_key=key,
                    owner=owner,
                    acquired_at=now,
                    expires_at=now + (ttl or self.lease_length(key)),
                )
            )
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False

        logger.debug("Lock acquired", extra={"lock_key": key, "owner": owner})
        return True

    async def acquire(
        self,
        key: str,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Acquire ``key`` and return the owner token.

        Args:
            key: Lock key
            wait: Poll until the lock frees up instead of failing at once
            timeout: Max seconds to wait (defaults to LOCK_WAIT_TIMEOUT)

        Raises:
            SourceBusyError: If the lock is held (or still held after timeout)
        """
        owner = uuid4().hex
        deadline = time.monotonic() + (timeout if timeout is not None else settings.LOCK_WAIT_TIMEOUT)

        while True:
            if await self.try_acquire(key, owner):
                return owner
            if not wait or time.monotonic() >= deadline:
                raise SourceBusyError(key)
            await asyncio.sleep(settings.LOCK_POLL_INTERVAL)

    async def release(self, key: str, owner: str) -> None:
        """Release ``key`` if ``owner`` still holds it."""
        async with self.session_factory() as db:
            await db.execute(
                delete(SourceLock).where(
                    SourceLock.lock_key == key,
                    SourceLock.owner == owner,
                )
            )
            await db.commit()

        logger.debug("Lock released", extra={"lock_key": key, "owner": owner})

    @asynccontextmanager
    async def hold(
        self,
        key: str,
        wait: bool = False,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[str]:
        """Hold ``key`` for the duration of the block."""
        owner = await self.acquire(key, wait=wait, timeout=timeout)
        try:
            yield owner
        finally:
            await self.release(key, owner)


__all__ = ["CATALOG_LOCK_KEY", "SourceLockTable", "source_lock_key"]
