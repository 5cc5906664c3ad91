"""Unit tests for the storage layer.

Covers:
- :func:`~nestmate.storage.database.create_schema` idempotency and constraints.
- :class:`~nestmate.storage.gateway.PersistenceGateway` operations, the
  compare-and-swap contract, timeouts and error translation.
- :func:`~nestmate.storage.retry.retry_on_conflict`.
- Row mapping in :mod:`nestmate.storage.repository`.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import pytest

from nestmate.core.exceptions import (
    Conflict,
    DuplicateRecord,
    GatewayTimeout,
    GatewayUnavailable,
    ListingNotFound,
)
from nestmate.core.models import Boost, Coordinates, Listing, ListingKind, Profile, RoomType
from nestmate.storage.database import create_schema, open_db, open_memory_db
from nestmate.storage.gateway import PersistenceGateway
from nestmate.storage.repository import Repositories
from nestmate.storage.retry import retry_on_conflict

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=UTC)


def _profile_row(user_id: str = "u1", **overrides: object) -> dict[str, object]:
    row: dict[str, object] = {
        "id": user_id,
        "display_name": "Asha",
        "created_at": T0.isoformat(),
        "updated_at": T0.isoformat(),
    }
    row.update(overrides)
    return row


# ===========================================================================
# Schema
# ===========================================================================


class TestSchema:
    async def test_create_schema_is_idempotent(self, conn: aiosqlite.Connection) -> None:
        await create_schema(conn)
        await create_schema(conn)
        cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        tables = {row[0] for row in await cursor.fetchall()}
        assert {"listings", "boosts", "chats", "messages", "payments"} <= tables

    async def test_open_db_creates_parent_directory(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "nestmate.db"
        conn = await open_db(path)
        try:
            assert path.exists()
        finally:
            await conn.close()


# ===========================================================================
# Gateway
# ===========================================================================


class TestGatewayCrud:
    """Tests for the five gateway operations against a real in-memory DB."""

    async def test_insert_then_get(self, gateway: PersistenceGateway) -> None:
        assert await gateway.insert("profiles", _profile_row()) == "u1"
        row = await gateway.get("profiles", "u1")
        assert row is not None
        assert row["display_name"] == "Asha"
        assert row["version"] == 1

    async def test_get_missing_returns_none(self, gateway: PersistenceGateway) -> None:
        assert await gateway.get("profiles", "nobody") is None

    async def test_duplicate_id_raises_duplicate_record(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        with pytest.raises(DuplicateRecord):
            await gateway.insert("profiles", _profile_row())

    async def test_insert_requires_id(self, gateway: PersistenceGateway) -> None:
        with pytest.raises(ValueError, match="requires an id"):
            await gateway.insert("profiles", {"display_name": "x"})

    async def test_query_filters_and_orders_by_id(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row("u2", gender="female"))
        await gateway.insert("profiles", _profile_row("u1", gender="female"))
        await gateway.insert("profiles", _profile_row("u3", gender="male"))
        rows = await gateway.query("profiles", {"gender": "female"})
        assert [r["id"] for r in rows] == ["u1", "u2"]

    async def test_query_none_matches_null(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row("u1"))
        await gateway.insert("profiles", _profile_row("u2", user_type="business"))
        rows = await gateway.query("profiles", {"user_type": None})
        assert [r["id"] for r in rows] == ["u1"]

    async def test_query_predicate_runs_after_sql_filter(self, gateway: PersistenceGateway) -> None:
        for uid in ("a", "b", "c"):
            await gateway.insert("profiles", _profile_row(uid))
        rows = await gateway.query("profiles", predicate=lambda r: r["id"] != "b")
        assert [r["id"] for r in rows] == ["a", "c"]

    async def test_delete(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        assert await gateway.delete("profiles", "u1") is True
        assert await gateway.delete("profiles", "u1") is False

    async def test_unknown_table_or_column_rejected(self, gateway: PersistenceGateway) -> None:
        with pytest.raises(ValueError, match="unknown table"):
            await gateway.get("users; DROP TABLE profiles", "x")
        with pytest.raises(ValueError, match="unknown column"):
            await gateway.query("profiles", {"password": "x"})


class TestConditionalUpdate:
    """The compare-and-swap contract of :meth:`PersistenceGateway.conditional_update`."""

    async def test_matching_version_applies_and_bumps(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        assert await gateway.conditional_update("profiles", "u1", 1, {"display_name": "Asha R"})
        row = await gateway.get("profiles", "u1")
        assert row is not None
        assert row["display_name"] == "Asha R"
        assert row["version"] == 2

    async def test_stale_version_is_rejected(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        assert await gateway.conditional_update("profiles", "u1", 1, {"display_name": "first"})
        assert not await gateway.conditional_update("profiles", "u1", 1, {"display_name": "second"})
        row = await gateway.get("profiles", "u1")
        assert row is not None and row["display_name"] == "first"

    async def test_empty_patch_still_claims_the_row(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        assert await gateway.conditional_update("profiles", "u1", 1, {})
        row = await gateway.get("profiles", "u1")
        assert row is not None and row["version"] == 2

    async def test_missing_row_is_not_applied(self, gateway: PersistenceGateway) -> None:
        assert not await gateway.conditional_update("profiles", "ghost", 1, {"display_name": "x"})

    async def test_patch_cannot_set_version_or_id(self, gateway: PersistenceGateway) -> None:
        await gateway.insert("profiles", _profile_row())
        assert await gateway.conditional_update("profiles", "u1", 1, {"version": 99, "id": "zz"})
        row = await gateway.get("profiles", "u1")
        assert row is not None
        assert row["version"] == 2
        assert row["id"] == "u1"


class TestGatewayFailures:
    """Timeouts and store failures surface only as gateway errors."""

    async def test_slow_call_raises_gateway_timeout(self) -> None:
        async def _slow(*_: object, **__: object) -> None:
            await asyncio.sleep(5)

        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=_slow)
        gateway = PersistenceGateway(conn, timeout=5.0)
        with pytest.raises(GatewayTimeout) as exc_info:
            await gateway.get("listings", "l1", timeout=0.01)
        assert exc_info.value.timeout == 0.01
        assert exc_info.value.table == "listings"

    async def test_sqlite_error_becomes_unavailable(self) -> None:
        conn = MagicMock()
        conn.execute = AsyncMock(side_effect=aiosqlite.OperationalError("disk I/O error"))
        gateway = PersistenceGateway(conn)
        with pytest.raises(GatewayUnavailable, match="disk I/O error"):
            await gateway.query("listings")

    async def test_closed_connection_becomes_unavailable(self) -> None:
        conn = await open_memory_db()
        gateway = PersistenceGateway(conn)
        await conn.close()
        with pytest.raises(GatewayUnavailable):
            await gateway.get("profiles", "u1")

    async def test_foreign_key_violation_becomes_unavailable(self, gateway: PersistenceGateway) -> None:
        message = {
            "id": "m1",
            "chat_id": "no-such-chat",
            "from_user": "u1",
            "to_user": "u2",
            "content": "hi",
            "created_at": T0.isoformat(),
        }
        with pytest.raises(GatewayUnavailable):
            await gateway.insert("messages", message)


# ===========================================================================
# retry_on_conflict
# ===========================================================================


class TestRetryOnConflict:
    async def test_returns_first_success(self) -> None:
        fn = AsyncMock(return_value="ok")
        assert await retry_on_conflict(fn, max_attempts=3) == "ok"
        assert fn.await_count == 1

    async def test_retries_conflicts_then_succeeds(self) -> None:
        fn = AsyncMock(side_effect=[Conflict("listings", "l1"), Conflict("listings", "l1"), "ok"])
        assert await retry_on_conflict(fn, max_attempts=3) == "ok"
        assert fn.await_count == 3

    async def test_reraises_conflict_after_max_attempts(self) -> None:
        fn = AsyncMock(side_effect=Conflict("listings", "l1"))
        with pytest.raises(Conflict):
            await retry_on_conflict(fn, max_attempts=2)
        assert fn.await_count == 2

    async def test_other_errors_are_not_retried(self) -> None:
        fn = AsyncMock(side_effect=GatewayTimeout("get", "listings", 1.0))
        with pytest.raises(GatewayTimeout):
            await retry_on_conflict(fn, max_attempts=3)
        assert fn.await_count == 1


# ===========================================================================
# Repositories
# ===========================================================================


class TestRepositories:
    """Row ↔ model mapping and the optimistic helpers."""

    async def _seed(self, repos: Repositories) -> Listing:
        await repos.profiles.insert(Profile(id="owner", created_at=T0, updated_at=T0))
        listing = Listing(
            id="l1",
            kind=ListingKind.HOSTEL,
            title="Bed in 6-share dorm",
            price=5500,
            location="Hauz Khas, Delhi",
            coordinates=Coordinates(lat=28.5494, lng=77.2001),
            images=["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"],
            tags=["student"],
            amenities=["wifi", "meals"],
            owner_id="owner",
            room_type=RoomType.DORMITORY,
            created_at=T0,
            updated_at=T0,
            expires_at=T0 + timedelta(days=30),
        )
        await repos.listings.insert(listing)
        return listing

    async def test_listing_survives_storage(self, repos: Repositories) -> None:
        listing = await self._seed(repos)
        stored = await repos.listings.require("l1")
        assert stored == listing
        assert stored.coordinates == Coordinates(lat=28.5494, lng=77.2001)
        assert stored.images[1] == "https://img.example.com/2.jpg"

    async def test_require_missing_listing_raises_typed_error(self, repos: Repositories) -> None:
        with pytest.raises(ListingNotFound):
            await repos.listings.require("missing")

    async def test_replace_bumps_version(self, repos: Repositories) -> None:
        listing = await self._seed(repos)
        updated = await repos.listings.replace(listing, listing.model_copy(update={"price": 6000}))
        assert updated.version == 2
        stored = await repos.listings.require("l1")
        assert stored.price == 6000
        assert stored.version == 2

    async def test_replace_with_stale_record_raises_conflict(self, repos: Repositories) -> None:
        listing = await self._seed(repos)
        await repos.listings.replace(listing, listing.model_copy(update={"price": 6000}))
        with pytest.raises(Conflict):
            await repos.listings.replace(listing, listing.model_copy(update={"price": 7000}))

    async def test_boosts_outlive_their_listing(self, repos: Repositories) -> None:
        await self._seed(repos)
        await repos.boosts.insert(
            Boost(id="b1", listing_id="l1", user_id="owner", amount=49, duration_hours=48, start_time=T0)
        )
        await repos.listings.delete("l1")
        assert [b.id for b in await repos.boosts.by_user("owner")] == ["b1"]

    async def test_reserved_row_kept_when_block_succeeds(self, repos: Repositories) -> None:
        await self._seed(repos)
        boost = Boost(id="b1", listing_id="l1", user_id="owner", amount=0, duration_hours=48, start_time=T0)
        async with repos.boosts.reserved(boost):
            pass
        assert await repos.boosts.get("b1") is not None

    @pytest.mark.parametrize(
        "error",
        [
            Conflict("profiles", "owner"),
            GatewayUnavailable("conditional_update", "profiles", "disk I/O error"),
            GatewayTimeout("conditional_update", "profiles", 0.01),
        ],
    )
    async def test_reserved_row_removed_when_block_fails(
        self, repos: Repositories, error: Exception
    ) -> None:
        await self._seed(repos)
        boost = Boost(id="b1", listing_id="l1", user_id="owner", amount=0, duration_hours=48, start_time=T0)
        with pytest.raises(type(error)):
            async with repos.boosts.reserved(boost):
                raise error
        assert await repos.boosts.get("b1") is None

    async def test_reserved_row_kept_on_unexpected_error(self, repos: Repositories) -> None:
        await self._seed(repos)
        boost = Boost(id="b1", listing_id="l1", user_id="owner", amount=0, duration_hours=48, start_time=T0)
        with pytest.raises(RuntimeError):
            async with repos.boosts.reserved(boost):
                raise RuntimeError("bug")
        assert await repos.boosts.get("b1") is not None
