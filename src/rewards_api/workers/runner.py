"""Run the loyalty background workers until asked to stop."""

from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger

from rewards_api.core.settings import settings
from rewards_api.jobs.loyalty.common import SessionFactory

from .cashback_retry import CashbackRetryWorker
from .loyalty_events import LoyaltyEventWorker


class BackgroundWorker(Protocol):
    interval_seconds: int

    def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


async def run_workers(
    session_factory: SessionFactory,
    *,
    stop_event: asyncio.Event,
    cashback_worker: BackgroundWorker | None = None,
    event_worker: BackgroundWorker | None = None,
) -> list[str]:
    """Start every enabled worker, wait for ``stop_event``, then stop them."""

    started: list[tuple[str, BackgroundWorker]] = []

    if settings.cashback_retry_worker_enabled:
        worker = cashback_worker or CashbackRetryWorker(session_factory)
        worker.start()
        started.append(("cashback_retry", worker))
        logger.info("Cashback retry worker enabled", interval_seconds=worker.interval_seconds)
    else:
        logger.info("Cashback retry worker disabled", reason="cashback_retry_worker_enabled is false")

    if settings.loyalty_event_worker_enabled:
        worker = event_worker or LoyaltyEventWorker(session_factory)
        worker.start()
        started.append(("loyalty_events", worker))
        logger.info("Loyalty event worker enabled", interval_seconds=worker.interval_seconds)
    else:
        logger.info("Loyalty event worker disabled", reason="loyalty_event_worker_enabled is false")

    try:
        await stop_event.wait()
    finally:
        for _, worker in reversed(started):
            await worker.stop()

    return [name for name, _ in started]


__all__ = ["run_workers"]
