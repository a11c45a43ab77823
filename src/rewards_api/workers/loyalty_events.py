"""Worker draining the loyalty event outbox into notifications."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.jobs.loyalty.common import SessionFactory
from rewards_api.services.loyalty.events import LoyaltyEventDispatcher
from rewards_api.services.notifications import NotificationService

NotificationFactory = Callable[[], NotificationService]


class LoyaltyEventWorker:
    """Periodically delivers pending loyalty events."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        notification_factory: NotificationFactory | None = None,
        interval_seconds: int | None = None,
        limit: int | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._notification_factory = notification_factory or NotificationService
        self.interval_seconds = interval_seconds or settings.loyalty_event_interval_seconds
        self._limit = limit or settings.loyalty_event_batch_size
        self._max_attempts = max_attempts or settings.loyalty_event_max_attempts
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
            "Loyalty event worker started",
            interval_seconds=self.interval_seconds,
            limit=self._limit,
        )

    async def stop(self) -> None:
        if not self._task:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self.is_running = False
        logger.info("Loyalty event worker stopped")

    async def run_once(self) -> Dict[str, int]:
        session = await self._ensure_session()
        async with session as managed_session:
            dispatcher = LoyaltyEventDispatcher(
                managed_session,
                self._notification_factory(),
                max_attempts=self._max_attempts,
            )
            summary = (await dispatcher.dispatch_pending(limit=self._limit)).as_dict()
        if summary["processed"]:
            logger.bind(summary=summary).info("Loyalty event sweep completed")
        return summary

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as exc:  # pragma: no cover - loop must keep running
                logger.exception("Loyalty event iteration failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _ensure_session(self) -> AsyncSession:
        maybe_session = self._session_factory()
        if isinstance(maybe_session, AsyncSession):
            return maybe_session
        return await maybe_session
