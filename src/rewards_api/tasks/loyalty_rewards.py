"""CLI + sync helpers for loyalty reward workflows.

Celery tasks and cron jobs call the ``*_sync`` helpers so they share the same
async job code. Session factories stay injectable for tests and queue runners.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
from typing import Any, Dict
from uuid import UUID

from loguru import logger

from rewards_api.core.logging import configure_logging
from rewards_api.core.settings import settings
from rewards_api.db.session import async_session
from rewards_api.jobs.loyalty import (
    abandon_purchase_rewards,
    dispatch_loyalty_events,
    process_purchase_rewards,
    requeue_unprocessed_purchases,
    retry_cashback_transaction,
    retry_failed_cashback,
)
from rewards_api.jobs.loyalty.common import SessionFactory
from rewards_api.jobs.loyalty.rewards import PipelineDispatcher
from rewards_api.workers.runner import run_workers


def _default_session_factory():
    return async_session()


def process_purchase_rewards_sync(
    purchase_id: UUID,
    *,
    attempt: int = 1,
    triggered_by: str | None = None,
    session_factory: SessionFactory | None = None,
) -> Dict[str, Any]:
    """Synchronous helper so Celery/cron jobs can reuse the async pipeline job."""

    return asyncio.run(
        process_purchase_rewards(
            session_factory=session_factory or _default_session_factory,
            purchase_id=purchase_id,
            attempt=attempt,
            triggered_by=triggered_by,
        )
    )


def abandon_purchase_rewards_sync(
    purchase_id: UUID,
    *,
    error: str,
    session_factory: SessionFactory | None = None,
) -> Dict[str, Any]:
    return asyncio.run(
        abandon_purchase_rewards(
            session_factory=session_factory or _default_session_factory,
            purchase_id=purchase_id,
            error=error,
        )
    )


def retry_cashback_sync(
    transaction_id: UUID,
    *,
    session_factory: SessionFactory | None = None,
) -> Dict[str, Any]:
    return asyncio.run(
        retry_cashback_transaction(
            session_factory=session_factory or _default_session_factory,
            transaction_id=transaction_id,
        )
    )


def retry_failed_cashback_sync(
    *,
    limit: int | None = None,
    session_factory: SessionFactory | None = None,
) -> Dict[str, int]:
    return asyncio.run(
        retry_failed_cashback(
            session_factory=session_factory or _default_session_factory,
            limit=limit,
        )
    )


def dispatch_loyalty_events_sync(
    *,
    limit: int | None = None,
    session_factory: SessionFactory | None = None,
) -> Dict[str, int]:
    return asyncio.run(
        dispatch_loyalty_events(
            session_factory=session_factory or _default_session_factory,
            limit=limit,
        )
    )


def requeue_unprocessed_purchases_sync(
    *,
    dispatcher: PipelineDispatcher,
    limit: int | None = None,
    session_factory: SessionFactory | None = None,
) -> Dict[str, int]:
    return asyncio.run(
        requeue_unprocessed_purchases(
            session_factory=session_factory or _default_session_factory,
            dispatcher=dispatcher,
            limit=limit,
        )
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Loyalty reward pipeline utilities.")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Run the reward pipeline for one purchase.")
    process.add_argument("purchase_id", help="UUID of the completed purchase.")

    retry = sub.add_parser("retry-cashback", help="Retry a single failed cashback transaction.")
    retry.add_argument("transaction_id", help="UUID of the cashback transaction.")

    sweep = sub.add_parser("retry-failed", help="Retry failed cashback transactions once.")
    sweep.add_argument("--limit", type=int, default=None, help="Max transactions to retry.")

    events = sub.add_parser("dispatch-events", help="Deliver pending loyalty notifications once.")
    events.add_argument("--limit", type=int, default=None, help="Max events to dispatch.")

    sub.add_parser("run-workers", help="Run the cashback retry and loyalty event workers until interrupted.")

    return parser


async def _async_main(args: argparse.Namespace) -> Dict[str, Any]:
    factory = _default_session_factory
    if args.command == "process":
        return await process_purchase_rewards(
            session_factory=factory,
            purchase_id=UUID(args.purchase_id),
            triggered_by="cli",
        )
    if args.command == "retry-cashback":
        return await retry_cashback_transaction(
            session_factory=factory,
            transaction_id=UUID(args.transaction_id),
        )
    if args.command == "retry-failed":
        return await retry_failed_cashback(session_factory=factory, limit=args.limit)
    if args.command == "dispatch-events":
        return await dispatch_loyalty_events(session_factory=factory, limit=args.limit)
    if args.command == "run-workers":
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop_event.set)
        started = await run_workers(factory, stop_event=stop_event)
        return {"workers": started, "status": "stopped"}
    raise ValueError(f"Unsupported command {args.command}")  # pragma: no cover - argparse guards this.


def cli(argv: list[str] | None = None) -> None:
    configure_logging(service_name=settings.service_name, environment=settings.environment, version="cli")
    parser = _build_parser()
    args = parser.parse_args(argv)
    summary = asyncio.run(_async_main(args))
    logger.info("Loyalty command finished", command=args.command)
    print(json.dumps(summary, default=str))


if __name__ == "__main__":  # pragma: no cover
    cli()
