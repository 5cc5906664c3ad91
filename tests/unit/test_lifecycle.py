"""Unit tests for :mod:`nestmate.lifecycle.manager`.

Covers:
- Listing creation, expiry stamps and the active-listing quota.
- Manual expiry, owner edits and deletion.
- View counting that never fails the caller.
- Boost attachment: check order, credit, payment and the one-winner race.
- The owner dashboard.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import timedelta

import pytest

from nestmate.core.clock import FixedClock
from nestmate.core.exceptions import (
    BoostAlreadyActive,
    BoostCreditExhausted,
    GatewayUnavailable,
    ListingExpired,
    ListingNotFound,
    NotOwner,
    PaymentNotConfirmed,
    ProfileNotFound,
    QuotaExceeded,
)
from nestmate.core.models import (
    Coordinates,
    ListingChanges,
    ListingDraft,
    PaymentPurpose,
    Profile,
    Tier,
    UserType,
)
from nestmate.service.marketplace import Marketplace

NewUser = Callable[..., Awaitable[Profile]]
DraftFactory = Callable[..., ListingDraft]


# ===========================================================================
# Creation and quota
# ===========================================================================


class TestCreateListing:
    async def test_new_listing_is_active_for_thirty_days(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        assert listing.owner_id == owner.id
        assert listing.created_at == listing.updated_at == clock.now()
        assert listing.expires_at == clock.now() + timedelta(days=30)
        assert listing.view_count == 0
        assert listing.manually_expired is False
        assert listing.is_active(clock.now())
        assert await market.repos.listings.require(listing.id) == listing

    async def test_owner_without_profile_is_rejected(
        self, market: Marketplace, draft_factory: DraftFactory
    ) -> None:
        result = await market.create_listing("ghost", draft_factory())
        assert result.error_kind == ProfileNotFound.kind

    async def test_draft_content_is_copied(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        draft = draft_factory(coordinates=Coordinates(lat=12.9716, lng=77.6412), tags=["pets", "student"])
        listing = (await market.create_listing(owner.id, draft)).unwrap()
        assert listing.coordinates == Coordinates(lat=12.9716, lng=77.6412)
        assert listing.tags == ["pets", "student"]
        assert listing.room_type == draft.room_type


class TestQuota:
    async def test_business_user_without_plan_is_held_to_three(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(user_type=UserType.BUSINESS)
        for _ in range(3):
            assert (await market.create_listing(owner.id, draft_factory())).ok

        result = await market.create_listing(owner.id, draft_factory())
        assert not result.ok
        assert result.error_kind == QuotaExceeded.kind
        assert len(await market.repos.listings.by_owner(owner.id)) == 3

    async def test_failed_quota_claim_leaves_no_listing(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        unavailable_tables: set[str],
    ) -> None:
        owner = await new_user()
        unavailable_tables.add("profiles")

        result = await market.create_listing(owner.id, draft_factory())
        assert result.error_kind == GatewayUnavailable.kind
        assert await market.repos.listings.by_owner(owner.id) == []

        unavailable_tables.clear()
        assert (await market.create_listing(owner.id, draft_factory())).ok
        assert len(await market.repos.listings.by_owner(owner.id)) == 1

    async def test_individual_user_is_held_to_three(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(user_type=UserType.INDIVIDUAL)
        for _ in range(3):
            (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.create_listing(owner.id, draft_factory())
        assert result.error_kind == QuotaExceeded.kind

    async def test_expired_listings_do_not_count(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        listings = [(await market.create_listing(owner.id, draft_factory())).unwrap() for _ in range(3)]
        (await market.mark_expired(listings[0].id, owner.id)).unwrap()
        assert (await market.create_listing(owner.id, draft_factory())).ok

    async def test_lapsed_listings_do_not_count(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user()
        for _ in range(3):
            (await market.create_listing(owner.id, draft_factory())).unwrap()
        clock.advance(days=30)
        assert (await market.create_listing(owner.id, draft_factory())).ok

    async def test_standard_plan_allows_ten(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.STANDARD)
        for _ in range(10):
            (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.create_listing(owner.id, draft_factory())
        assert result.error_kind == QuotaExceeded.kind

    async def test_premium_plan_is_unbounded(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        for _ in range(15):
            (await market.create_listing(owner.id, draft_factory())).unwrap()

    async def test_concurrent_creates_never_exceed_quota(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        for _ in range(2):
            (await market.create_listing(owner.id, draft_factory())).unwrap()

        results = await asyncio.gather(
            *(market.create_listing(owner.id, draft_factory()) for _ in range(3))
        )

        assert sum(r.ok for r in results) == 1
        assert all(r.error_kind == QuotaExceeded.kind for r in results if not r.ok)
        assert len(await market.repos.listings.by_owner(owner.id)) == 3


# ===========================================================================
# Owner edits
# ===========================================================================


class TestMarkExpired:
    async def test_owner_can_expire(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        clock.advance(days=2)

        expired = (await market.mark_expired(listing.id, owner.id)).unwrap()
        assert expired.manually_expired is True
        assert expired.is_active(clock.now()) is False
        assert expired.updated_at == clock.now()
        assert expired.expires_at == listing.expires_at

    async def test_second_call_is_a_no_op(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        first = (await market.mark_expired(listing.id, owner.id)).unwrap()
        second = (await market.mark_expired(listing.id, owner.id)).unwrap()
        assert second == first

    async def test_other_user_cannot_expire(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner, stranger = await new_user(), await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.mark_expired(listing.id, stranger.id)
        assert result.error_kind == NotOwner.kind
        assert (await market.repos.listings.require(listing.id)).manually_expired is False

    async def test_missing_listing(self, market: Marketplace, new_user: NewUser) -> None:
        owner = await new_user()
        result = await market.mark_expired("missing", owner.id)
        assert result.error_kind == ListingNotFound.kind


class TestUpdateListing:
    async def test_owner_edits_descriptive_fields(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        clock.advance(hours=3)

        changes = ListingChanges(price=13500, coordinates=Coordinates(lat=12.97, lng=77.64))
        edited = (await market.update_listing(listing.id, owner.id, changes)).unwrap()

        assert edited.price == 13500
        assert edited.coordinates == Coordinates(lat=12.97, lng=77.64)
        assert edited.title == listing.title
        assert edited.updated_at == clock.now()
        assert edited.expires_at == listing.expires_at
        assert (await market.repos.listings.require(listing.id)).price == 13500

    async def test_empty_edit_returns_listing_unchanged(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        assert (await market.update_listing(listing.id, owner.id, ListingChanges())).unwrap() == listing

    async def test_stranger_cannot_edit(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner, stranger = await new_user(), await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.update_listing(listing.id, stranger.id, ListingChanges(price=1))
        assert result.error_kind == NotOwner.kind


class TestDeleteListing:
    async def test_delete_removes_listing_but_keeps_boosts(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        boost = (await market.attach_boost(listing.id, owner.id, amount=0)).unwrap()

        assert (await market.delete_listing(listing.id, owner.id)).ok
        assert await market.repos.listings.get(listing.id) is None
        assert [b.id for b in await market.repos.boosts.by_listing(listing.id)] == [boost.id]
        assert (await market.owner_dashboard(owner.id)).unwrap() == []

    async def test_deleting_boosted_listing_does_not_refund_credit(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.STANDARD)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        (await market.attach_boost(listing.id, owner.id, amount=49)).unwrap()
        assert (await market.boost_credits_remaining(owner.id)).unwrap() == 0

        (await market.delete_listing(listing.id, owner.id)).unwrap()
        assert (await market.boost_credits_remaining(owner.id)).unwrap() == 0

        reposted = (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.attach_boost(reposted.id, owner.id, amount=49)
        assert result.error_kind == BoostCreditExhausted.kind

    async def test_stranger_cannot_delete(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner, stranger = await new_user(), await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.delete_listing(listing.id, stranger.id)
        assert result.error_kind == NotOwner.kind
        assert await market.repos.listings.get(listing.id) is not None


# ===========================================================================
# Views
# ===========================================================================


class TestRecordView:
    async def test_views_accumulate(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        for _ in range(3):
            assert (await market.record_view(listing.id)).ok
        assert (await market.repos.listings.require(listing.id)).view_count == 3

    async def test_concurrent_views_are_all_counted(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        await asyncio.gather(*(market.record_view(listing.id) for _ in range(2)))
        assert (await market.repos.listings.require(listing.id)).view_count == 2

    async def test_missing_listing_does_not_fail_the_caller(
        self, market: Marketplace, caplog: pytest.LogCaptureFixture
    ) -> None:
        result = await market.record_view("missing")
        assert result.ok
        assert "not recorded" in caplog.text


# ===========================================================================
# Boosts
# ===========================================================================


class TestAttachBoost:
    async def test_premium_owner_boosts_active_listing(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        boost = (await market.attach_boost(listing.id, owner.id, amount=49)).unwrap()
        assert boost.listing_id == listing.id
        assert boost.user_id == owner.id
        assert boost.amount == 49
        assert boost.duration_hours == 48
        assert boost.start_time == clock.now()
        assert boost.ends_at == clock.now() + timedelta(hours=48)

    async def test_stranger_is_rejected_first(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner, stranger = await new_user(tier=Tier.PREMIUM), await new_user()
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        (await market.mark_expired(listing.id, owner.id)).unwrap()

        result = await market.attach_boost(listing.id, stranger.id, amount=49)
        assert result.error_kind == NotOwner.kind

    async def test_expired_listing_cannot_be_boosted(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        (await market.mark_expired(listing.id, owner.id)).unwrap()

        result = await market.attach_boost(listing.id, owner.id, amount=49)
        assert result.error_kind == ListingExpired.kind

    async def test_running_boost_blocks_another(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        (await market.attach_boost(listing.id, owner.id, amount=49)).unwrap()

        clock.advance(hours=47)
        assert (await market.attach_boost(listing.id, owner.id, amount=49)).error_kind == (
            BoostAlreadyActive.kind
        )
        clock.advance(hours=1)
        assert (await market.attach_boost(listing.id, owner.id, amount=49)).ok

    async def test_basic_plan_has_no_boost_credit(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(user_type=UserType.BUSINESS)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        result = await market.attach_boost(listing.id, owner.id, amount=49)
        assert result.error_kind == BoostCreditExhausted.kind

    async def test_standard_plan_credit_runs_out(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user(tier=Tier.STANDARD)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        (await market.attach_boost(listing.id, owner.id, amount=49)).unwrap()
        clock.advance(hours=48)
        result = await market.attach_boost(listing.id, owner.id, amount=49)
        assert result.error_kind == BoostCreditExhausted.kind

    async def test_purchase_ref_must_be_confirmed(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        unpaid = await market.attach_boost(listing.id, owner.id, amount=49, purchase_ref="boost-1")
        assert unpaid.error_kind == PaymentNotConfirmed.kind
        assert await market.repos.boosts.by_listing(listing.id) == []

        await market.record_payment("boost-1", owner.id, PaymentPurpose.BOOST, 49)
        paid = await market.attach_boost(listing.id, owner.id, amount=49, purchase_ref="boost-1")
        assert paid.ok

    async def test_underpaid_boost_is_rejected(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        await market.record_payment("cheap", owner.id, PaymentPurpose.BOOST, 10)
        result = await market.attach_boost(listing.id, owner.id, amount=10, purchase_ref="cheap")
        assert result.error_kind == PaymentNotConfirmed.kind

    async def test_concurrent_boosts_have_one_winner(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        first, second = await asyncio.gather(
            market.attach_boost(listing.id, owner.id, amount=49),
            market.attach_boost(listing.id, owner.id, amount=49),
        )

        outcomes = sorted([first.ok, second.ok])
        assert outcomes == [False, True]
        loser = first if not first.ok else second
        assert loser.error_kind == BoostAlreadyActive.kind
        assert len(await market.repos.boosts.by_listing(listing.id)) == 1
        assert (await market.boost_credits_remaining(owner.id)).unwrap() == 4

    async def test_failed_claim_leaves_no_boost(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        unavailable_tables: set[str],
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()
        unavailable_tables.add("profiles")

        result = await market.attach_boost(listing.id, owner.id, amount=49)
        assert result.error_kind == GatewayUnavailable.kind
        assert await market.repos.boosts.by_listing(listing.id) == []
        assert (await market.boost_credits_remaining(owner.id)).unwrap() == 5
        [status] = (await market.owner_dashboard(owner.id)).unwrap()
        assert not status.is_boosted

        unavailable_tables.clear()
        assert (await market.attach_boost(listing.id, owner.id, amount=49)).ok
        assert len(await market.repos.boosts.by_listing(listing.id)) == 1

    async def test_views_during_boost_do_not_block_it(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        boost, *views = await asyncio.gather(
            market.attach_boost(listing.id, owner.id, amount=49),
            *(market.record_view(listing.id) for _ in range(2)),
        )

        assert boost.ok
        assert all(v.ok for v in views)
        assert (await market.repos.listings.require(listing.id)).view_count == 2

    async def test_edit_during_boost_does_not_block_it(
        self, market: Marketplace, new_user: NewUser, draft_factory: DraftFactory
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        listing = (await market.create_listing(owner.id, draft_factory())).unwrap()

        boost, edit = await asyncio.gather(
            market.attach_boost(listing.id, owner.id, amount=49),
            market.update_listing(listing.id, owner.id, ListingChanges(price=9000)),
        )

        assert boost.ok
        assert edit.ok


# ===========================================================================
# Dashboard
# ===========================================================================


class TestOwnerDashboard:
    async def test_dashboard_is_newest_first_with_derived_state(
        self,
        market: Marketplace,
        new_user: NewUser,
        draft_factory: DraftFactory,
        clock: FixedClock,
    ) -> None:
        owner = await new_user(tier=Tier.PREMIUM)
        old = (await market.create_listing(owner.id, draft_factory(title="Old"))).unwrap()
        clock.advance(days=1)
        boosted = (await market.create_listing(owner.id, draft_factory(title="Boosted"))).unwrap()
        (await market.attach_boost(boosted.id, owner.id, amount=49)).unwrap()
        clock.advance(days=1)
        expired = (await market.create_listing(owner.id, draft_factory(title="Gone"))).unwrap()
        (await market.mark_expired(expired.id, owner.id)).unwrap()

        rows = (await market.owner_dashboard(owner.id)).unwrap()

        assert [r.listing.id for r in rows] == [expired.id, boosted.id, old.id]
        gone, hot, aging = rows
        assert (gone.is_active, gone.days_remaining, gone.is_boosted) == (False, 0, False)
        assert (hot.is_active, hot.days_remaining, hot.is_boosted) == (True, 29, True)
        assert (aging.is_active, aging.days_remaining, aging.is_boosted) == (True, 28, False)

    async def test_dashboard_of_user_without_listings(self, market: Marketplace, new_user: NewUser) -> None:
        owner = await new_user()
        assert (await market.owner_dashboard(owner.id)).unwrap() == []
