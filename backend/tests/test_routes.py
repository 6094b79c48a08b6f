"""
HTTP surface tests (TestClient against an in-process store)
"""
import hashlib
import hmac
import json
import time

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from config.settings import Settings
from core.dependencies import get_app_settings, get_store

PRICE = "https://buy.stripe.com/test_abc"


def _sign(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def owner(client):
    res = client.post("/api/profile", json={"name": "Jane", "slug": "jane", "bio": "hi"})
    assert res.status_code == 201
    return res.json()["editToken"]


# ============================================================================
# PROFILE
# ============================================================================

class TestProfileRoutes:
    def test_create_and_read(self, client, owner):
        res = client.get("/api/profile", params={"editToken": owner})
        body = res.json()
        assert res.status_code == 200
        assert body["profile"]["displayName"] == "Jane"
        assert body["profile"]["plan"] == "free"

    def test_header_token_accepted(self, client, owner):
        assert client.get("/api/profile", headers={"X-Edit-Token": owner}).status_code == 200

    def test_missing_token(self, client):
        res = client.get("/api/profile")
        assert res.status_code == 400
        assert res.json()["error"] == "missing_edit_token"

    def test_unknown_token(self, client):
        res = client.get("/api/profile", params={"editToken": "nope"})
        assert res.status_code == 404
        assert res.json() == {"ok": False, "error": "profile_not_found", "message": "Profile not found"}

    def test_duplicate_slug(self, client, owner):
        res = client.post("/api/profile", json={"name": "Other", "slug": "jane"})
        assert res.status_code == 409

    def test_bad_create_body(self, client):
        res = client.post("/api/profile", json={"slug": "jane"})
        assert res.status_code == 400
        assert res.json()["error"] == "invalid_request"

    def test_link_quota(self, client, owner):
        links = [{"label": str(i), "url": f"https://example.com/{i}"} for i in range(6)]
        res = client.post("/api/profile/update", params={"editToken": owner}, json={"links": links})
        assert res.status_code == 400
        assert res.json()["message"] == "Too many links (max 5)."

    def test_links_social(self, client, owner):
        res = client.post(
            "/api/profile/links-social",
            params={"editToken": owner},
            json={"links": [{"label": "Shop", "url": "example.com"}], "social": {"instagram": "@jane"}},
        )
        assert res.json()["links"] == [{"label": "Shop", "url": "https://example.com"}]

    def test_email_settings_free_forced_off(self, client, owner):
        res = client.post(
            "/api/profile/email-settings",
            params={"editToken": owner},
            json={"collectEmail": True, "klaviyoListId": "L1"},
        )
        assert res.json()["collectEmail"] is False


# ============================================================================
# PRODUCTS / PUBLIC
# ============================================================================

class TestProductRoutes:
    def test_batch_then_public_view(self, client, owner):
        res = client.post(
            "/api/products/batch",
            params={"editToken": owner},
            json={"products": [{"id": "p1", "title": "Mug", "priceUrl": PRICE, "unitsTotal": 3, "published": True}]},
        )
        assert res.status_code == 200

        public = client.get("/api/public/jane", params={"track": "false"}).json()
        assert public["products"][0]["status"]["label"] == "3/3 left"
        assert "editToken" not in public["profile"]

    def test_product_quota(self, client, owner):
        res = client.post("/api/products/batch", params={"editToken": owner}, json={"products": [{"id": "a"}, {"id": "b"}]})
        assert res.status_code == 400
        assert res.json()["limit"] == 1

    def test_restore_inventory(self, client, owner):
        client.post(
            "/api/products/batch",
            params={"editToken": owner},
            json={"products": [{"id": "p1", "unitsTotal": 3, "unitsLeft": 0}]},
        )
        res = client.post("/api/products/restore-inventory", json={"editToken": owner, "productId": "p1", "unitsLeft": 2})
        assert res.json()["unitsLeft"] == 2
        bad = client.post("/api/products/restore-inventory", json={"editToken": owner, "productId": "p1", "unitsLeft": -1})
        assert bad.status_code == 400

    def test_buy_redirects_to_checkout(self, client, owner):
        client.post(
            "/api/products/batch",
            params={"editToken": owner},
            json={"products": [{"id": "p1", "priceUrl": PRICE, "published": True}]},
        )
        res = client.get("/api/products/buy", params={"id": "p1", "slug": "jane"}, follow_redirects=False)
        assert res.status_code == 302
        assert res.headers["location"].startswith(PRICE)
        assert "no-store" in res.headers["cache-control"]

    def test_buy_blocked_returns_to_page(self, client, owner):
        client.post(
            "/api/products/batch",
            params={"editToken": owner},
            json={"products": [{"id": "p1", "priceUrl": "https://evil.example.com/x", "published": True}]},
        )
        res = client.get("/api/products/buy", params={"id": "p1", "slug": "jane"}, follow_redirects=False)
        assert res.headers["location"] == "/jane?reason=bad_checkout_host"

    def test_public_unknown_slug(self, client):
        assert client.get("/api/public/nobody").status_code == 404

    def test_plans(self, client):
        plans = client.get("/api/plans").json()["plans"]
        assert "starter_plus" not in plans


# ============================================================================
# TRACKING / SUBSCRIBE
# ============================================================================

class TestTrackingRoutes:
    def test_junk_is_silently_accepted(self, client, db):
        res = client.post("/api/track", content=b"not json", headers={"content-type": "application/json"})
        assert res.status_code == 204
        assert client.post("/api/track", json={"type": "hack"}).status_code == 204
        assert db["events"].count_documents({}) == 0

    def test_foreign_origin_dropped(self, client, owner):
        res = client.post(
            "/api/track",
            json={"type": "buy_click", "slug": "jane", "productId": "p1"},
            headers={"Origin": "https://evil.example.com"},
        )
        assert res.status_code == 204

    def test_flood_is_rate_limited(self, client, owner):
        statuses = [
            client.post("/api/track", json={"type": "buy_click", "productId": f"p{i}"}).status_code
            for i in range(31)
        ]
        assert statuses[-1] == 429
        assert set(statuses[:30]) == {204}

    def test_summary_requires_known_token(self, client):
        assert client.get("/api/analytics/summary").status_code == 400
        assert client.get("/api/analytics/summary", params={"editToken": "nope"}).status_code == 404

    def test_summary_shape(self, client, owner):
        body = client.get("/api/analytics/summary", params={"editToken": owner, "days": "0"}).json()
        assert body["range"]["days"] == 7
        assert body["totals"] == []


class TestSubscribeRoute:
    def test_capture_disabled_on_free(self, client, owner):
        res = client.post("/api/subscribe", json={"email": "a@b.co", "publicSlug": "jane"})
        assert res.status_code == 403
        assert res.json()["error"] == "email_collection_disabled"

    def test_rate_limited_with_retry_after(self, client, owner):
        for _ in range(5):
            client.post("/api/subscribe", json={"email": "bad"})
        res = client.post("/api/subscribe", json={"email": "bad"})
        assert res.status_code == 429
        assert int(res.headers["retry-after"]) >= 1
        assert res.json()["retryAfter"] >= 1


# ============================================================================
# WEBHOOK
# ============================================================================

class TestStripeWebhook:
    def _payload(self, token):
        return json.dumps({
            "id": "evt_route_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {"object": {
                "object": "checkout.session",
                "payment_status": "paid",
                "client_reference_id": "p1",
                "metadata": {"editToken": token},
            }},
        }).encode()

    def test_signed_event_reserves(self, client, owner, settings, store):
        client.post(
            "/api/products/batch",
            params={"editToken": owner},
            json={"products": [{"id": "p1", "unitsTotal": 2}]},
        )
        payload = self._payload(owner)
        headers = {"Stripe-Signature": _sign(payload, settings.stripe_webhook_secret)}

        first = client.post("/api/webhooks/stripe", content=payload, headers=headers)
        second = client.post("/api/webhooks/stripe", content=payload, headers=headers)

        assert first.json() == {"received": True, "outcome": "reserved", "productId": "p1"}
        assert second.json()["outcome"] == "duplicate"
        assert store.find_by_token(owner)["products"][0]["unitsLeft"] == 1

    def test_bad_signature(self, client, owner):
        res = client.post(
            "/api/webhooks/stripe",
            content=self._payload(owner),
            headers={"Stripe-Signature": "t=1,v1=deadbeef"},
        )
        assert res.status_code == 400
        assert res.json()["error"] == "invalid_signature"

    def test_missing_signature(self, client, owner):
        res = client.post("/api/webhooks/stripe", content=self._payload(owner))
        assert res.status_code == 400


# ============================================================================
# DEPENDENCY OVERRIDES
# ============================================================================

class _DownStore:
    def find_by_token(self, token):
        raise ServerSelectionTimeoutError("no servers")


class TestOverrides:
    def test_tracking_switched_off(self, app, client):
        app.dependency_overrides[get_app_settings] = lambda: Settings(track_enabled=False)
        res = client.post("/api/track", json={"type": "page_view", "slug": "jane"})
        assert res.status_code == 404

    def test_store_outage_is_503(self, app, client):
        app.dependency_overrides[get_store] = lambda: _DownStore()
        res = client.get("/api/analytics/summary", params={"editToken": "tok"})
        assert res.status_code == 503
        assert res.json()["error"] == "store_unavailable"
