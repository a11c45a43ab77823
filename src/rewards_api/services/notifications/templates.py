"""Notification templates for loyalty events."""

from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from rewards_api.core.settings import settings
from rewards_api.models.cashback import CashbackTransaction
from rewards_api.models.loyalty import Achievement, Badge


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def _format_amount(amount: Decimal | None, currency: str | None) -> str:
    numeric = f"{Decimal(str(amount or 0)):.2f}"
    return f"{(currency or settings.default_currency).upper()} {numeric}"


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "just now"
    return value.strftime("%b %d, %Y %I:%M %p")


def _dashboard_url(path: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}{path}"


def _wrap_html(paragraphs: list[str]) -> str:
    body = "\n".join(f"    <p>{paragraph}</p>" for paragraph in paragraphs)
    return f"""<html>
  <body>
{body}
  </body>
</html>"""


def render_achievement_unlocked(achievement: Achievement, *, contact_name: str | None) -> RenderedTemplate:
    """Render the congratulation email for a freshly unlocked achievement."""

    name = contact_name or "there"
    url = _dashboard_url("/dashboard/achievements")
    text_lines = [
        f"Congratulations, {name}!",
        "",
        f"You've unlocked a new achievement: {achievement.name}",
    ]
    if achievement.description:
        text_lines.append(achievement.description)
    text_lines.extend(
        [
            f"You earned {achievement.points} points!",
            "",
            f"View your achievements: {url}",
            "Keep up the great work!",
        ]
    )

    paragraphs = [
        f"Congratulations, {html.escape(name)}!",
        f"You've unlocked a new achievement: <strong>{html.escape(achievement.name)}</strong>",
    ]
    if achievement.description:
        paragraphs.append(html.escape(achievement.description))
    paragraphs.extend(
        [
            f"You earned <strong>{achievement.points} points</strong>!",
            f'<a href="{url}">View your achievements</a>',
            "Keep up the great work!",
        ]
    )
    return RenderedTemplate(
        subject="Achievement Unlocked!",
        text_body="\n".join(text_lines),
        html_body=_wrap_html(paragraphs),
    )


def render_badge_unlocked(badge: Badge, *, contact_name: str | None) -> RenderedTemplate:
    name = contact_name or "there"
    url = _dashboard_url("/dashboard/profile")
    benefits = badge.benefits if isinstance(badge.benefits, (list, tuple)) and badge.benefits else None
    benefits_text = ", ".join(str(benefit) for benefit in benefits) if benefits else "Exclusive benefits"
    badge_label = f"{badge.name} {badge.icon}".strip() if badge.icon else badge.name

    text_lines = [
        f"Amazing, {name}!",
        "",
        f"You've earned a new badge: {badge_label}",
    ]
    if badge.description:
        text_lines.append(badge.description)
    text_lines.extend(
        [
            f"Level: {badge.level}",
            f"Benefits: {benefits_text}",
            "",
            f"View your profile: {url}",
            "You're on fire! Keep going!",
        ]
    )

    paragraphs = [
        f"Amazing, {html.escape(name)}!",
        f"You've earned a new badge: <strong>{html.escape(badge_label)}</strong>",
    ]
    if badge.description:
        paragraphs.append(html.escape(badge.description))
    paragraphs.extend(
        [
            f"<strong>Level:</strong> {badge.level}",
            f"<strong>Benefits:</strong> {html.escape(benefits_text)}",
            f'<a href="{url}">View your profile</a>',
        ]
    )
    return RenderedTemplate(
        subject="New Badge Earned!",
        text_body="\n".join(text_lines),
        html_body=_wrap_html(paragraphs),
    )


def render_cashback_processed(transaction: CashbackTransaction, *, contact_name: str | None) -> RenderedTemplate:
    name = contact_name or "there"
    amount = _format_amount(transaction.amount, transaction.currency)
    processed = _format_timestamp(transaction.processed_at)
    url = _dashboard_url("/dashboard/cashback")
    text_lines = [
        f"Great news, {name}!",
        "",
        f"Your cashback of {amount} has been processed successfully!",
        f"Transaction reference: {transaction.reference or 'n/a'}",
        f"Processed: {processed}",
        "",
        f"View transaction history: {url}",
        "Thank you for being a loyal customer!",
    ]
    paragraphs = [
        f"Great news, {html.escape(name)}!",
        f"Your cashback of <strong>{amount}</strong> has been processed successfully!",
        f"<strong>Transaction reference:</strong> {html.escape(transaction.reference or 'n/a')}",
        f"<strong>Processed:</strong> {processed}",
        f'<a href="{url}">View transaction history</a>',
    ]
    return RenderedTemplate(
        subject="Cashback Received!",
        text_body="\n".join(text_lines),
        html_body=_wrap_html(paragraphs),
    )


def render_cashback_failed(transaction: CashbackTransaction, *, contact_name: str | None) -> RenderedTemplate:
    name = contact_name or "there"
    amount = _format_amount(transaction.amount, transaction.currency)
    error = transaction.error_message or "Unknown error"
    url = _dashboard_url("/support")
    text_lines = [
        f"Hello {name},",
        "",
        "We encountered an issue processing your cashback payment.",
        f"Amount: {amount}",
        f"Error: {error}",
        "Don't worry! We're automatically retrying the payment.",
        "",
        f"Contact support: {url}",
        "We apologize for any inconvenience.",
    ]
    paragraphs = [
        f"Hello {html.escape(name)},",
        "We encountered an issue processing your cashback payment.",
        f"<strong>Amount:</strong> {amount}",
        f"<strong>Error:</strong> {html.escape(error)}",
        "Don't worry! We're automatically retrying the payment.",
        f'<a href="{url}">Contact support</a>',
    ]
    return RenderedTemplate(
        subject="Cashback Payment Issue",
        text_body="\n".join(text_lines),
        html_body=_wrap_html(paragraphs),
    )
