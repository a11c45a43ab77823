import sys
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

import rewards_api.models  # noqa: E402,F401
from rewards_api.db.base import Base  # noqa: E402
from rewards_api.models.loyalty import Achievement, AchievementTierEnum, AchievementTypeEnum, Badge  # noqa: E402
from rewards_api.models.purchase import Purchase, PurchaseStatusEnum  # noqa: E402
from rewards_api.models.user import User  # noqa: E402
from rewards_api.observability.loyalty import get_loyalty_store  # noqa: E402
from rewards_api.services.cashback.providers import MockPaymentProvider  # noqa: E402
from rewards_api.services.loyalty.locks import LocalUserLockProvider  # noqa: E402


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest.fixture(autouse=True)
def reset_loyalty_store():
    get_loyalty_store().reset()
    yield
    get_loyalty_store().reset()


@pytest.fixture
def mock_provider() -> MockPaymentProvider:
    return MockPaymentProvider(success_rate=1.0)


@pytest.fixture
def failing_provider() -> MockPaymentProvider:
    return MockPaymentProvider(success_rate=0.0)


@pytest.fixture
def lock_provider() -> LocalUserLockProvider:
    return LocalUserLockProvider(wait_seconds=1)


class LoyaltyFactory:
    """Seed helpers for users, purchases and the reward catalog."""

    async def user(self, session, *, email: str = "member@example.com", display_name: str | None = "Ada") -> User:
        user = User(email=email, display_name=display_name, total_points=0, total_cashback=Decimal("0"))
        session.add(user)
        await session.flush()
        return user

    async def purchase(
        self,
        session,
        user: User,
        *,
        amount: str = "1000.00",
        status: PurchaseStatusEnum = PurchaseStatusEnum.COMPLETED,
        processed: bool = False,
    ) -> Purchase:
        purchase = Purchase(
            user_id=user.id,
            amount=Decimal(amount),
            currency="NGN",
            status=status,
            processed_for_loyalty=processed,
        )
        session.add(purchase)
        await session.flush()
        return purchase

    async def achievement(
        self,
        session,
        *,
        name: str,
        type: AchievementTypeEnum = AchievementTypeEnum.PURCHASE,
        target: int | str | None = 1,
        points: int = 10,
        tier: AchievementTierEnum = AchievementTierEnum.BRONZE,
        is_active: bool = True,
    ) -> Achievement:
        achievement = Achievement(
            name=name,
            description=f"{name} description",
            type=type,
            criteria={"target": target},
            points=points,
            tier=tier,
            is_active=is_active,
        )
        session.add(achievement)
        await session.flush()
        return achievement

    async def badge(
        self,
        session,
        *,
        name: str,
        level: int,
        points_required: int = 0,
        achievements_required: int = 0,
        is_active: bool = True,
    ) -> Badge:
        badge = Badge(
            name=name,
            description=f"{name} tier",
            level=level,
            points_required=points_required,
            achievements_required=achievements_required,
            benefits=[f"{name} perk"],
            is_active=is_active,
        )
        session.add(badge)
        await session.flush()
        return badge


@pytest.fixture
def factory() -> LoyaltyFactory:
    return LoyaltyFactory()
