from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, TypeVar

import anyio
import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alert_provisioning.domain.errors import DomainError, StoreError
from alert_provisioning.infra.db import dialect_name
from alert_provisioning.infra.metrics import Metrics, metrics as default_metrics

logger = logging.getLogger(__name__)

T = TypeVar("T")
UnitOfWork = Callable[[AsyncSession], Awaitable[T]]

DEFAULT_TIMEOUT = object()


async def _acquire_sqlite_write_lock(session: AsyncSession, deadline: float | None = None) -> None:
    if dialect_name(session) != "sqlite":
        return
    if session.in_transaction():
        return
    if not deadline:
        await session.execute(sa.text("BEGIN IMMEDIATE"))
        return
    # the lock wait runs on the driver thread; only busy_timeout bounds it
    previous = int(await session.scalar(sa.text("PRAGMA busy_timeout")) or 0)
    busy_timeout = max(1, int(deadline * 1000))
    if previous and previous <= busy_timeout:
        await session.execute(sa.text("BEGIN IMMEDIATE"))
        return
    await session.execute(sa.text(f"PRAGMA busy_timeout = {busy_timeout}"))
    try:
        await session.execute(sa.text("BEGIN IMMEDIATE"))
    finally:
        await session.execute(sa.text(f"PRAGMA busy_timeout = {previous}"))


class TransactionManager:
    """Runs a unit of work inside exactly one storage transaction.

    The unit of work receives the transaction-scoped ``AsyncSession`` and must
    pass it to every store call. The transaction commits when the work returns
    and rolls back when it raises, times out or is cancelled. Storage failures,
    unexpected errors and deadline expiry surface as ``StoreError``; domain
    errors raised by the work pass through unchanged and cancellation
    propagates after the rollback.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout: float | None = None,
        metrics: Metrics | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = timeout
        self._metrics = metrics or default_metrics

    async def _rollback(self, session: AsyncSession, operation: str) -> None:
        try:
            await session.rollback()
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "transaction_rollback_failed",
                extra={"extra": {"operation": operation, "error_type": type(exc).__name__}},
            )
            raise StoreError(detail=f"{operation} could not be rolled back", operation=operation) from exc

    async def run_in_transaction(
        self,
        work: UnitOfWork[T],
        *,
        operation: str = "transaction",
        write: bool = True,
        timeout: float | None | object = DEFAULT_TIMEOUT,
    ) -> T:
        deadline = self._timeout if timeout is DEFAULT_TIMEOUT else timeout
        started = time.perf_counter()
        async with self._session_factory() as session:

            async def _run() -> T:
                if write:
                    # SQLite serializes writers at BEGIN; the group lookup must
                    # not race another writer.
                    await _acquire_sqlite_write_lock(session, deadline)
                return await work(session)

            try:
                if deadline:
                    result = await asyncio.wait_for(_run(), deadline)
                else:
                    result = await _run()
                await session.commit()
            except DomainError:
                await self._rollback(session, operation)
                raise
            except asyncio.CancelledError:
                with anyio.CancelScope(shield=True):
                    await session.rollback()
                raise
            except asyncio.TimeoutError as exc:
                await self._rollback(session, operation)
                logger.warning(
                    "transaction_timeout",
                    extra={"extra": {"operation": operation, "timeout_seconds": deadline}},
                )
                raise StoreError(
                    detail=f"{operation} did not complete within {deadline} seconds",
                    operation=operation,
                ) from exc
            except SQLAlchemyError as exc:
                await self._rollback(session, operation)
                logger.warning(
                    "transaction_failed",
                    extra={"extra": {"operation": operation, "error_type": type(exc).__name__}},
                )
                raise StoreError(detail=f"{operation} failed", operation=operation) from exc
            except Exception as exc:  # noqa: BLE001
                await self._rollback(session, operation)
                logger.exception(
                    "transaction_failed",
                    extra={"extra": {"operation": operation, "error_type": type(exc).__name__}},
                )
                raise StoreError(detail=f"{operation} failed", operation=operation) from exc
            finally:
                self._metrics.record_transaction_latency(operation, time.perf_counter() - started)
        return result
