"""Worker wiring for periodic failed cashback sweeps."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.jobs.loyalty.common import SessionFactory
from rewards_api.services.cashback.cashback_service import CashbackPaymentService
from rewards_api.services.cashback.providers import PaymentProvider, build_payment_provider

ProviderFactory = Callable[[], PaymentProvider]


class CashbackRetryWorker:
    """Periodically re-attempts failed cashback transfers below the attempt ceiling."""

    # meta: worker: cashback-retry

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        provider_factory: ProviderFactory | None = None,
        interval_seconds: int | None = None,
        limit: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory or build_payment_provider
        self.interval_seconds = interval_seconds or settings.cashback_retry_interval_seconds
        self._limit = limit or settings.cashback_retry_batch_size
        self._max_attempts = max_attempts or settings.cashback_retry_max_attempts
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self.is_running: bool = False

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_loop())
        self.is_running = True
        logger.info(
            "Cashback retry worker started",
            interval_seconds=self.interval_seconds,
            limit=self._limit,
            max_attempts=self._max_attempts,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Cashback retry worker stopped")

    async def run_once(self) -> Dict[str, int]:
        summary: Dict[str, int] = {"processed": 0, "succeeded": 0, "failed": 0}
        session = await self._ensure_session()
        async with session as managed_session:
            service = CashbackPaymentService(managed_session, self._provider_factory())
            candidates = await service.list_retryable(limit=self._limit, max_attempts=self._max_attempts)
            for transaction_id in [transaction.id for transaction in candidates]:
                summary["processed"] += 1
                try:
                    succeeded = await service.retry_by_id(transaction_id)
                except Exception as exc:
                    await managed_session.rollback()
                    summary["failed"] += 1
                    logger.exception(
                        "Cashback retry raised",
                        transaction_id=str(transaction_id),
                        error=str(exc),
                    )
                    continue
                summary["succeeded" if succeeded else "failed"] += 1

        if summary["processed"]:
            logger.bind(summary=summary).info("Cashback retry sweep completed")
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - loop must keep running
                logger.exception("Cashback retry iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
