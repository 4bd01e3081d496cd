from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


logger = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionCoordinator:
    """Run units of work atomically against an explicit session handle.

    Callers that already hold a session inside a transaction pass it through and
    the coordinator joins it rather than opening a nested transaction. Only the
    outermost scope commits; every exception, including cancellation, rolls the
    transaction back before it propagates.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        if session_factory is None:
            from reimburse.persistence.db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory

    @asynccontextmanager
    async def transaction(self, session: AsyncSession | None = None) -> AsyncIterator[AsyncSession]:
        if session is not None and session.in_transaction():
            # Join the caller's transaction; the owner decides commit or rollback.
            yield session
            return
        if session is not None:
            async with self._scope(session):
                yield session
            return
        async with self._session_factory() as owned:
            async with self._scope(owned):
                yield owned

    @asynccontextmanager
    async def _scope(self, session: AsyncSession) -> AsyncIterator[None]:
        await session.begin()
        try:
            yield
        except BaseException as exc:
            logger.debug("transaction_rollback error=%s", type(exc).__name__)
            await session.rollback()
            raise
        await session.commit()

    async def run(
        self,
        work: Callable[[AsyncSession], Awaitable[T]],
        session: AsyncSession | None = None,
    ) -> T:
        async with self.transaction(session) as active:
            return await work(active)
