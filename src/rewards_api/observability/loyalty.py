from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    pipeline: Dict[str, int]
    rewards: Dict[str, int]
    cashback: Dict[str, int]
    notifications: Dict[str, Dict[str, int]]

    def as_dict(self) -> Dict[str, object]:
        return {
            "pipeline": dict(self.pipeline),
            "rewards": dict(self.rewards),
            "cashback": dict(self.cashback),
            "notifications": {key: dict(value) for key, value in self.notifications.items()},
        }


class LoyaltyObservabilityStore:
    """Collect reward pipeline telemetry for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._pipeline: Dict[str, int] = defaultdict(int)
        self._rewards: Dict[str, int] = defaultdict(int)
        self._cashback: Dict[str, int] = defaultdict(int)
        self._notification_status: Dict[str, int] = defaultdict(int)
        self._notification_types: Dict[str, int] = defaultdict(int)

    def record_pipeline_outcome(self, status: str, reason: str | None = None) -> None:
        with self._lock:
            self._pipeline[status] += 1
            if reason:
                self._pipeline[f"{status}:{reason}"] += 1

    def record_achievements_unlocked(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._rewards["achievements_unlocked"] += count

    def record_badges_awarded(self, count: int) -> None:
        if count <= 0:
            return
        with self._lock:
            self._rewards["badges_awarded"] += count

    def record_cashback_outcome(self, status: str, *, retry: bool = False) -> None:
        with self._lock:
            self._cashback[status] += 1
            if retry:
                self._cashback[f"retry:{status}"] += 1

    def record_notification(self, event_type: str, status: str) -> None:
        with self._lock:
            self._notification_status[status] += 1
            self._notification_types[event_type] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            pipeline = dict(self._pipeline)
            rewards = dict(self._rewards)
            cashback = dict(self._cashback)
            notifications = {
                "by_status": dict(self._notification_status),
                "by_type": dict(self._notification_types),
            }
        return LoyaltySnapshot(
            pipeline=pipeline,
            rewards=rewards,
            cashback=cashback,
            notifications=notifications,
        )

    def reset(self) -> None:
        with self._lock:
            self._pipeline.clear()
            self._rewards.clear()
            self._cashback.clear()
            self._notification_status.clear()
            self._notification_types.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
