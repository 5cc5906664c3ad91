"""Shared pytest fixtures and configuration for the Nestmate test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures: logging, a clean environment, a manually
driven clock, and an in-memory database wired into a
:class:`~nestmate.service.marketplace.Marketplace`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from nestmate.core import configure_logging
from nestmate.core.clock import FixedClock
from nestmate.core.exceptions import GatewayUnavailable
from nestmate.core.ids import new_id
from nestmate.core.models import (
    BillingCycle,
    Gender,
    ListingDraft,
    ListingKind,
    PaymentPurpose,
    Profile,
    RoomType,
    Tier,
    UserType,
)
from nestmate.core.settings import Settings
from nestmate.entitlements.subscriptions import price_of
from nestmate.service.marketplace import Marketplace
from nestmate.storage.database import open_memory_db
from nestmate.storage.gateway import PersistenceGateway
from nestmate.storage.repository import Repositories

#: Instant every test starts at.
T0 = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove Nestmate env vars and disable ``.env`` loading for one test.

    A developer's shell or local ``.env`` file must not change the policy
    constants the tests rely on.
    """
    prefixes = (
        "DATABASE_",
        "GATEWAY_",
        "CONFLICT_",
        "LISTING_",
        "BOOST_",
        "DISCLOSURE_",
        "LOG_LEVEL",
        "LOG_FORMAT",
    )
    for key in list(os.environ):
        if any(key.startswith(prefix) for prefix in prefixes):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


@pytest.fixture()
def settings(clean_env: None) -> Settings:
    return Settings()


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(T0)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
async def conn() -> AsyncIterator[aiosqlite.Connection]:
    connection = await open_memory_db()
    yield connection
    await connection.close()


@pytest.fixture()
def gateway(conn: aiosqlite.Connection) -> PersistenceGateway:
    return PersistenceGateway(conn, timeout=2.0)


@pytest.fixture()
def repos(gateway: PersistenceGateway) -> Repositories:
    return Repositories(gateway)


@pytest.fixture()
def unavailable_tables(gateway: PersistenceGateway, monkeypatch: pytest.MonkeyPatch) -> set[str]:
    """Make conditional updates on the named tables fail as if the store were down.

    Tests add table names to the returned set and clear it to recover.
    """
    tables: set[str] = set()
    real = gateway.conditional_update

    async def _conditional_update(table: str, *args: Any, **kwargs: Any) -> bool:
        if table in tables:
            raise GatewayUnavailable("conditional_update", table, "database is locked")
        return await real(table, *args, **kwargs)

    monkeypatch.setattr(gateway, "conditional_update", _conditional_update)
    return tables


@pytest.fixture()
def market(repos: Repositories, settings: Settings, clock: FixedClock) -> Marketplace:
    return Marketplace(repos, settings, clock)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def make_draft(**overrides: Any) -> ListingDraft:
    """Return a valid :class:`ListingDraft` with overridable defaults."""
    fields: dict[str, Any] = {
        "kind": ListingKind.ROOMMATE,
        "title": "Sunny room near the metro",
        "description": "Shared flat, two flatmates, working professionals.",
        "price": 12000,
        "location": "Indiranagar, Bengaluru",
        "room_type": RoomType.PRIVATE,
        "tags": ["professional", "vegetarian"],
        "amenities": ["wifi", "washing machine"],
    }
    fields.update(overrides)
    return ListingDraft(**fields)


@pytest.fixture()
def draft_factory() -> Callable[..., ListingDraft]:
    return make_draft


@pytest.fixture()
def new_user(market: Marketplace) -> Callable[..., Awaitable[Profile]]:
    """Create a profile, optionally onboarded, optionally subscribed.

    ``tier`` implies a business account and buys that plan with a confirmed
    payment, so the user's entitlements are exactly the tier's.
    """

    async def _create(
        *,
        gender: Gender | None = None,
        user_type: UserType | None = UserType.INDIVIDUAL,
        tier: Tier | None = None,
        phone_number: str | None = None,
        display_name: str = "",
    ) -> Profile:
        user_id = new_id()
        profile = (
            await market.create_profile(
                user_id,
                display_name or f"user-{user_id[:6]}",
                gender,
                phone_number,
            )
        ).unwrap()
        if tier is not None:
            user_type = UserType.BUSINESS
        if user_type is not None:
            profile = (await market.set_user_type(user_id, user_type)).unwrap()
        if tier is not None:
            ref = f"sub-{new_id()}"
            price = price_of(tier, BillingCycle.MONTHLY)
            await market.record_payment(ref, user_id, PaymentPurpose.SUBSCRIPTION, price)
            (await market.purchase_subscription(user_id, tier, BillingCycle.MONTHLY, ref)).unwrap()
        return profile

    return _create


@pytest.fixture()
def logger() -> logging.Logger:
    return logging.getLogger("tests")
