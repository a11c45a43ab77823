"""Transactional outbox for loyalty domain events."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rewards_api.core.settings import settings
from rewards_api.models.cashback import CashbackTransaction
from rewards_api.models.loyalty import (
    Achievement,
    Badge,
    LoyaltyEvent,
    LoyaltyEventStatusEnum,
    LoyaltyEventTypeEnum,
)
from rewards_api.models.user import User
from rewards_api.observability.loyalty import get_loyalty_store
from rewards_api.services.notifications import NotificationService


def record_loyalty_event(
    session: AsyncSession,
    *,
    event_type: LoyaltyEventTypeEnum,
    user_id: UUID,
    subject_id: UUID,
    payload: Mapping[str, Any] | None = None,
) -> LoyaltyEvent:
    """Stage an outbox row on ``session``; it becomes visible on the caller's commit."""

    event = LoyaltyEvent(
        event_type=event_type,
        user_id=user_id,
        subject_id=subject_id,
        payload=dict(payload or {}),
        status=LoyaltyEventStatusEnum.PENDING,
        attempts=0,
    )
    session.add(event)
    return event


@dataclass(slots=True)
class EventDispatchSummary:
    processed: int = 0
    dispatched: int = 0
    retrying: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "dispatched": self.dispatched,
            "retrying": self.retrying,
            "failed": self.failed,
        }


class _MissingSubjectError(LookupError):
    pass


class LoyaltyEventDispatcher:
    """Drain pending outbox rows into user notifications.

    Delivery failures are recorded on the event and never raised. An event is
    retried on later sweeps until ``max_attempts`` is reached.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifications: NotificationService | None = None,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self._session = session
        self._notifications = notifications or NotificationService()
        self._max_attempts = max_attempts or settings.loyalty_event_max_attempts

    async def fetch_pending(self, *, limit: int | None = None) -> Sequence[LoyaltyEvent]:
        stmt = (
            select(LoyaltyEvent)
            .where(
                LoyaltyEvent.status == LoyaltyEventStatusEnum.PENDING,
                LoyaltyEvent.attempts < self._max_attempts,
            )
            .order_by(LoyaltyEvent.created_at.asc(), LoyaltyEvent.id.asc())
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def dispatch_pending(self, *, limit: int | None = None) -> EventDispatchSummary:
        summary = EventDispatchSummary()
        events = await self.fetch_pending(limit=limit or settings.loyalty_event_batch_size)
        for event in events:
            summary.processed += 1
            status = await self._dispatch_one(event)
            if status == LoyaltyEventStatusEnum.DISPATCHED:
                summary.dispatched += 1
            elif status == LoyaltyEventStatusEnum.FAILED:
                summary.failed += 1
            else:
                summary.retrying += 1
        return summary

    async def _dispatch_one(self, event: LoyaltyEvent) -> LoyaltyEventStatusEnum:
        store = get_loyalty_store()
        event_type = event.event_type.value
        event.attempts = (event.attempts or 0) + 1
        try:
            delivered = await self._deliver(event)
        except _MissingSubjectError as exc:
            event.status = LoyaltyEventStatusEnum.FAILED
            event.last_error = str(exc)
            await self._session.commit()
            store.record_notification(event_type, "failed")
            logger.warning("Loyalty event subject missing", event_id=str(event.id), error=str(exc))
            return event.status
        except Exception as exc:
            event.last_error = str(exc)
            if event.attempts >= self._max_attempts:
                event.status = LoyaltyEventStatusEnum.FAILED
            await self._session.commit()
            store.record_notification(event_type, "failed")
            logger.error(
                "Failed to deliver loyalty notification",
                event_id=str(event.id),
                event_type=event_type,
                user_id=str(event.user_id),
                attempts=event.attempts,
                error=str(exc),
            )
            return event.status

        event.status = LoyaltyEventStatusEnum.DISPATCHED
        event.dispatched_at = datetime.now(timezone.utc)
        event.last_error = None
        await self._session.commit()
        store.record_notification(event_type, "delivered" if delivered else "skipped")
        logger.info(
            "Loyalty notification dispatched",
            event_id=str(event.id),
            event_type=event_type,
            user_id=str(event.user_id),
            delivered=delivered,
        )
        return event.status

    async def _deliver(self, event: LoyaltyEvent) -> bool:
        user = await self._session.get(User, event.user_id)
        if user is None:
            raise _MissingSubjectError(f"User {event.user_id} not found")

        if event.event_type == LoyaltyEventTypeEnum.ACHIEVEMENT_UNLOCKED:
            achievement = await self._load(Achievement, event.subject_id)
            return await self._notifications.send_achievement_unlocked(user, achievement)
        if event.event_type == LoyaltyEventTypeEnum.BADGE_UNLOCKED:
            badge = await self._load(Badge, event.subject_id)
            return await self._notifications.send_badge_unlocked(user, badge)
        if event.event_type == LoyaltyEventTypeEnum.CASHBACK_PROCESSED:
            transaction = await self._load(CashbackTransaction, event.subject_id)
            return await self._notifications.send_cashback_processed(user, transaction)
        if event.event_type == LoyaltyEventTypeEnum.CASHBACK_FAILED:
            transaction = await self._load(CashbackTransaction, event.subject_id)
            return await self._notifications.send_cashback_failed(user, transaction)
        raise ValueError(f"Unsupported loyalty event type {event.event_type}")

    async def _load(self, model: type, subject_id: UUID) -> Any:
        instance = await self._session.get(model, subject_id)
        if instance is None:
            raise _MissingSubjectError(f"{model.__name__} {subject_id} not found")
        return instance


__all__ = ["EventDispatchSummary", "LoyaltyEventDispatcher", "record_loyalty_event"]
