"""Job draining the loyalty outbox into notifications."""

from __future__ import annotations

from typing import Dict

from loguru import logger

from rewards_api.services.loyalty.events import LoyaltyEventDispatcher
from rewards_api.services.notifications import NotificationService

from .common import SessionFactory, open_session


async def dispatch_loyalty_events(
    *,
    session_factory: SessionFactory,
    limit: int | None = None,
    notifications: NotificationService | None = None,
) -> Dict[str, int]:
    session = await open_session(session_factory)
    async with session as managed_session:
        dispatcher = LoyaltyEventDispatcher(managed_session, notifications)
        summary = (await dispatcher.dispatch_pending(limit=limit)).as_dict()
        if summary["processed"] == 0:
            logger.info("No loyalty events ready for dispatch")
        else:
            logger.bind(summary=summary).info("Loyalty event dispatch completed")
        return summary
