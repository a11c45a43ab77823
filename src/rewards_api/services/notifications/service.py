"""High-level notification service for loyalty emails."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from rewards_api.core.settings import get_settings
from rewards_api.models.cashback import CashbackTransaction
from rewards_api.models.loyalty import Achievement, Badge
from rewards_api.models.user import User

from .backend import EmailBackend, InMemoryEmailBackend, SMTPEmailBackend
from .templates import (
    RenderedTemplate,
    render_achievement_unlocked,
    render_badge_unlocked,
    render_cashback_failed,
    render_cashback_processed,
)


@dataclass
class NotificationEvent:
    """Representation of a notification that was sent."""

    recipient: str
    subject: str
    body_text: str
    body_html: str | None
    event_type: str
    metadata: dict[str, Any]


class NotificationService:
    """Coordinates notification delivery via pluggable backends.

    Every ``send_*`` method returns ``False`` when no backend is configured or
    the user has no address. Backend errors propagate to the caller.
    """

    def __init__(self, backend: Optional[EmailBackend] = None) -> None:
        self._backend = backend or self._build_default_backend()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        """Expose events (useful for tests when using in-memory backend)."""
        return self._events

    @property
    def has_backend(self) -> bool:
        return self._backend is not None

    def use_in_memory_backend(self) -> InMemoryEmailBackend:
        """Replace backend with in-memory implementation (useful for tests)."""
        backend = InMemoryEmailBackend()
        self._backend = backend
        return backend

    async def send_achievement_unlocked(self, user: User, achievement: Achievement) -> bool:
        template = render_achievement_unlocked(achievement, contact_name=user.display_name)
        metadata = {
            "achievement_id": str(achievement.id),
            "points": achievement.points,
        }
        return await self._deliver(user, template, event_type="achievement_unlocked", metadata=metadata)

    async def send_badge_unlocked(self, user: User, badge: Badge) -> bool:
        template = render_badge_unlocked(badge, contact_name=user.display_name)
        metadata = {"badge_id": str(badge.id), "level": badge.level}
        return await self._deliver(user, template, event_type="badge_unlocked", metadata=metadata)

    async def send_cashback_processed(self, user: User, transaction: CashbackTransaction) -> bool:
        template = render_cashback_processed(transaction, contact_name=user.display_name)
        metadata = {
            "transaction_id": str(transaction.id),
            "amount": str(transaction.amount),
            "reference": transaction.reference,
        }
        return await self._deliver(user, template, event_type="cashback_processed", metadata=metadata)

    async def send_cashback_failed(self, user: User, transaction: CashbackTransaction) -> bool:
        template = render_cashback_failed(transaction, contact_name=user.display_name)
        metadata = {
            "transaction_id": str(transaction.id),
            "amount": str(transaction.amount),
            "error": transaction.error_message,
        }
        return await self._deliver(user, template, event_type="cashback_failed", metadata=metadata)

    def _build_default_backend(self) -> Optional[EmailBackend]:
        settings = get_settings()
        if not settings.smtp_host or not settings.smtp_sender_email:
            return None

        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender_email=settings.smtp_sender_email,
        )

    async def _deliver(
        self,
        user: User,
        template: RenderedTemplate,
        *,
        event_type: str,
        metadata: dict[str, Any],
    ) -> bool:
        """Send using active backend and record emitted event."""
        if self._backend is None or not user.email:
            return False

        await self._backend.send_email(
            user.email,
            template.subject,
            template.text_body,
            body_html=template.html_body,
        )
        self._events.append(
            NotificationEvent(
                recipient=user.email,
                subject=template.subject,
                body_text=template.text_body,
                body_html=template.html_body,
                event_type=event_type,
                metadata={"user_id": str(user.id), **metadata},
            )
        )
        return True
