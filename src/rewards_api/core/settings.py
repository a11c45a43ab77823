from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    service_name: str = "rewards-api"
    database_url: str = "sqlite+aiosqlite:///./rewards.db"
    database_echo: bool = False
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str | None = None
    celery_result_backend: str | None = None
    celery_default_queue: str = "rewards-default"
    loyalty_pipeline_task_queue: str = "loyalty-pipeline"
    cashback_retry_task_queue: str = "cashback-retry"
    loyalty_events_task_queue: str = "loyalty-events"

    # Reward pipeline retry policy
    pipeline_max_attempts: int = 3
    pipeline_timeout_seconds: int = 120
    pipeline_retry_backoff_seconds: int = 30

    # Sweep for completed purchases whose pipeline task never ran
    loyalty_requeue_enabled: bool = True
    loyalty_requeue_interval_seconds: int = 600
    loyalty_requeue_grace_seconds: int = 900
    loyalty_requeue_batch_size: int = 100

    # Per-user serialization of pipeline runs
    loyalty_user_lock_backend: Literal["local", "redis"] = "local"
    loyalty_user_lock_wait_seconds: float = 30.0

    # Cashback payments
    cashback_provider: str = "mock"
    default_currency: str = "NGN"
    cashback_transfer_timeout_seconds: float = 60.0
    cashback_retry_max_attempts: int = 5
    cashback_retry_backoff_seconds: int = 300
    cashback_retry_worker_enabled: bool = True
    cashback_retry_interval_seconds: int = 300
    cashback_retry_batch_size: int = 25

    # Mock provider knobs
    mock_provider_success_rate: float = 1.0
    mock_provider_latency_seconds: float = 0.0

    # REST payout provider
    payout_api_base_url: str = "https://api.paystack.co"
    payout_secret_key: str = ""
    payout_timeout_seconds: float = 30.0
    payout_default_bank_code: str = "058"
    payout_recipient_type: str = "nuban"

    @field_validator("mock_provider_success_rate")
    @classmethod
    def _clamp_success_rate(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)

    # Outbound loyalty events
    loyalty_event_worker_enabled: bool = True
    loyalty_event_interval_seconds: int = 15
    loyalty_event_batch_size: int = 50
    loyalty_event_max_attempts: int = 5

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None
    frontend_url: str = "http://localhost:3000"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
