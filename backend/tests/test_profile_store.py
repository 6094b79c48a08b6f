"""
Profile Store Tests
Keyed product entries, atomic reservation, owner restore, plan step-down.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import ConflictError, ValidationFailure
from db.profile_store import ProductEntries
from services.profile_service import apply_plan_expiry


def _units(store, token, pid):
    return ProductEntries.find(store.find_by_token(token), pid)["unitsLeft"]


# ============================================================================
# LOOKUPS / CREATE
# ============================================================================

class TestLookups:
    def test_find_by_public_slug_or_slug(self, store, make_profile):
        make_profile(slug="jane", publicSlug="jane-shop")
        assert store.find_by_slug("JANE-SHOP")["slug"] == "jane"
        assert store.find_by_slug("jane")["publicSlug"] == "jane-shop"
        assert store.find_by_slug("nobody") is None

    def test_find_by_product_narrowed_to_slug(self, store, make_profile):
        make_profile(slug="jane", products=[{"id": "p1"}])
        make_profile(slug="omar", products=[{"id": "p1"}])
        assert store.find_by_product("p1", "omar")["slug"] == "omar"
        assert store.find_by_product("p1", "nobody") is None

    def test_sole_owner_only_when_unambiguous(self, store, make_profile):
        make_profile(slug="jane", products=[{"id": "p1"}, {"id": "p2"}])
        make_profile(slug="omar", products=[{"id": "p1"}])
        assert store.find_sole_owner("p2")["slug"] == "jane"
        assert store.find_sole_owner("p1") is None
        assert store.find_sole_owner("zzz") is None

    def test_duplicate_slug_conflicts(self, make_profile):
        make_profile(slug="jane")
        with pytest.raises(ConflictError) as exc:
            make_profile(slug="jane")
        assert exc.value.code == "slug_taken"

    def test_slug_taken_excludes_owner(self, store, make_profile):
        doc = make_profile(slug="jane")
        assert store.slug_taken("jane")
        assert not store.slug_taken("jane", exclude_token=doc["editToken"])


# ============================================================================
# RESERVE
# ============================================================================

class TestReserveUnit:
    def test_last_unit_reserved_once(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 1, "unitsTotal": 5}])
        first = store.reserve_unit(doc["editToken"], "p1")
        second = store.reserve_unit(doc["editToken"], "p1")
        assert (first.matched, first.modified) == (1, 1)
        assert (second.matched, second.modified) == (0, 0)
        assert _units(store, doc["editToken"], "p1") == 0

    def test_n_units_allow_exactly_n_reservations(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 4, "unitsTotal": 4}])
        results = [store.reserve_unit(doc["editToken"], "p1") for _ in range(7)]
        assert sum(r.reserved for r in results) == 4
        assert _units(store, doc["editToken"], "p1") == 0

    def test_concurrent_buyers_never_oversell(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 5, "unitsTotal": 5}])
        # The server applies each single-document update atomically
        write_lock = threading.Lock()
        update_one = store.profiles.update_one

        def atomic_update_one(*args, **kwargs):
            with write_lock:
                return update_one(*args, **kwargs)

        store.profiles.update_one = atomic_update_one
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.reserve_unit(doc["editToken"], "p1"), range(10)))

        assert sum(r.reserved for r in results) == 5
        assert _units(store, doc["editToken"], "p1") == 0

    def test_only_the_addressed_entry_changes(self, store, make_profile):
        doc = make_profile(products=[
            {"id": "a", "unitsLeft": 2, "unitsTotal": 2},
            {"id": "b", "unitsLeft": 2, "unitsTotal": 2},
        ])
        store.reserve_unit(doc["editToken"], "b")
        assert _units(store, doc["editToken"], "a") == 2
        assert _units(store, doc["editToken"], "b") == 1

    @pytest.mark.parametrize("units_left", [None, "3"])
    def test_untracked_stock_never_matches(self, store, make_profile, units_left):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": units_left}])
        result = store.reserve_unit(doc["editToken"], "p1")
        assert result.matched == 0
        assert _units(store, doc["editToken"], "p1") == units_left

    def test_unknown_token_or_product(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 1}])
        assert store.reserve_unit("nope", "p1").matched == 0
        assert store.reserve_unit(doc["editToken"], "p2").matched == 0


# ============================================================================
# RESTORE
# ============================================================================

class TestRestoreUnit:
    def test_sets_value_and_is_idempotent(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 0, "unitsTotal": 5}])
        first = store.restore_unit(doc["editToken"], "p1", 3)
        second = store.restore_unit(doc["editToken"], "p1", 3)
        assert first.matched == 1 and first.units_left == 3
        assert second.matched == 1
        assert _units(store, doc["editToken"], "p1") == 3

    def test_clamped_to_total(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 0, "unitsTotal": 5}])
        result = store.restore_unit(doc["editToken"], "p1", 50)
        assert result.units_left == 5
        assert _units(store, doc["editToken"], "p1") == 5

    @pytest.mark.parametrize("value", [-1, 1.5, "3", True, None])
    def test_rejects_non_counts(self, store, make_profile, value):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 0, "unitsTotal": 5}])
        with pytest.raises(ValidationFailure):
            store.restore_unit(doc["editToken"], "p1", value)

    def test_unknown_product_matches_nothing(self, store, make_profile):
        doc = make_profile(products=[{"id": "p1", "unitsLeft": 0}])
        result = store.restore_unit(doc["editToken"], "zzz", 2)
        assert (result.matched, result.modified) == (0, 0)


# ============================================================================
# PLAN EXPIRY
# ============================================================================

class TestPlanStepDown:
    def test_expired_promo_steps_down_once(self, store, make_profile):
        expired = datetime.now(timezone.utc) - timedelta(days=1)
        doc = make_profile(plan="starter_plus", planExpiresAt=expired)
        stale = store.find_by_token(doc["editToken"])

        first = apply_plan_expiry(store, dict(stale))
        second = apply_plan_expiry(store, dict(stale))

        assert first["plan"] == "starter"
        assert first["planExpiresAt"] is None
        assert second["plan"] == "starter"

    def test_string_expiry_steps_down(self, store, make_profile):
        expired = (datetime.now(timezone.utc) - timedelta(days=2)).isoformat().replace("+00:00", "Z")
        doc = make_profile(plan="starter_plus", planExpiresAt=expired)
        fresh = apply_plan_expiry(store, store.find_by_token(doc["editToken"]))
        assert fresh["plan"] == "starter"
        assert fresh["planExpiresAt"] is None

    def test_expiry_reached_exactly_steps_down(self, store, make_profile):
        boundary = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        doc = make_profile(plan="starter", planExpiresAt="2025-06-01T12:00:00Z")
        fresh = apply_plan_expiry(store, store.find_by_token(doc["editToken"]), now=boundary)
        assert fresh["plan"] == "free"

    def test_unexpired_plan_untouched(self, store, make_profile):
        doc = make_profile(plan="starter_plus", planExpiresAt=datetime.now(timezone.utc) + timedelta(days=3))
        fresh = apply_plan_expiry(store, store.find_by_token(doc["editToken"]))
        assert fresh["plan"] == "starter_plus"

    def test_plan_without_lower_tier_untouched(self, store, make_profile):
        doc = make_profile(plan="pro", planExpiresAt=datetime.now(timezone.utc) - timedelta(days=3))
        fresh = apply_plan_expiry(store, store.find_by_token(doc["editToken"]))
        assert fresh["plan"] == "pro"

    def test_views_increment(self, store, make_profile):
        doc = make_profile(slug="jane")
        store.increment_views("jane")
        store.increment_views("JANE")
        assert store.find_by_token(doc["editToken"])["views"] == 2
