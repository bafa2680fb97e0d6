"""Tests for shop registration, webhooks and the app proxy."""

# pylint: disable=duplicate-code
import base64
import hashlib
import hmac as hmac_mod
import json
import logging
from urllib.parse import urlencode

import pytest

from wsgi import app
from service.common import status
from service.models import Campaign, Shop, db
from tests.factories import CampaignFactory, ShopFactory

API_SECRET = "test-api-secret"
SHOP_DOMAIN = "test-shop.myshopify.com"
PROXY_URL = "/proxy/campaigns/checkout"
ADMIN_HEADERS = {"X-Shop-Admin-Token": API_SECRET}


def _webhook_hmac(body: bytes, secret: str = API_SECRET) -> str:
    """Compute a valid webhook HMAC header value."""
    return base64.b64encode(
        hmac_mod.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    ).decode("utf-8")


def _proxy_query(params: list, secret: str = API_SECRET) -> str:
    """Sign app proxy query parameters the way Shopify does."""
    grouped = {}
    for key, value in params:
        grouped.setdefault(key, []).append(value)
    message = "".join(sorted(f"{key}={','.join(values)}" for key, values in grouped.items()))
    signature = hmac_mod.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return urlencode(params + [("signature", signature)])


def _post_uninstalled(client, payload, shop_domain=SHOP_DOMAIN, secret=API_SECRET):
    body = json.dumps(payload).encode("utf-8")
    headers = {"X-Shopify-Hmac-Sha256": _webhook_hmac(body, secret), "X-Shopify-Topic": "app/uninstalled"}
    if shop_domain:
        headers["X-Shopify-Shop-Domain"] = shop_domain
    return client.post(
        "/webhooks/app/uninstalled", data=body, content_type="application/json", headers=headers
    )


@pytest.fixture(name="client")
def _client():
    """Test client over a clean database"""
    app.config["TESTING"] = True
    app.config["SHOPIFY_API_SECRET"] = API_SECRET
    app.config["SHOP_ADMIN_TOKEN"] = ""
    app.logger.setLevel(logging.CRITICAL)
    ctx = app.app_context()
    ctx.push()
    db.session.query(Campaign).delete()
    db.session.query(Shop).delete()
    db.session.commit()
    try:
        yield app.test_client()
    finally:
        db.session.remove()
        ctx.pop()


@pytest.fixture(name="shop")
def _shop(client):  # pylint: disable=unused-argument
    shop = ShopFactory(shop_domain=SHOP_DOMAIN)
    shop.create()
    return shop


class TestRegisterShop:
    """POST /api/shops/register"""

    def test_register_new_shop(self, client):
        resp = client.post(
            "/api/shops/register",
            json={"shopDomain": SHOP_DOMAIN, "accessToken": "shpat_abc", "scope": "read_products"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == status.HTTP_201_CREATED
        data = resp.get_json()
        assert data["message"] == "Shop registered"
        assert data["shop"]["shopDomain"] == SHOP_DOMAIN
        assert "accessToken" not in data["shop"]

    def test_register_existing_shop(self, client, shop):
        shop.deactivate()
        resp = client.post(
            "/api/shops/register",
            json={"shopDomain": SHOP_DOMAIN, "accessToken": "shpat_new"},
            headers=ADMIN_HEADERS,
        )
        assert resp.status_code == status.HTTP_200_OK
        assert resp.get_json()["message"] == "Shop updated"
        refreshed = Shop.find_by_domain(SHOP_DOMAIN)
        assert refreshed.is_active is True
        assert refreshed.access_token == "shpat_new"

    def test_register_missing_token(self, client):
        resp = client.post(
            "/api/shops/register", json={"shopDomain": SHOP_DOMAIN}, headers=ADMIN_HEADERS
        )
        assert resp.status_code == status.HTTP_400_BAD_REQUEST

    def test_register_wrong_content_type(self, client):
        resp = client.post(
            "/api/shops/register", data="x", content_type="text/plain", headers=ADMIN_HEADERS
        )
        assert resp.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE


class TestDeactivateShop:
    """DELETE /api/shops/<shop_domain>"""

    def test_deactivate_shop(self, client, shop):
        CampaignFactory(shop_id=shop.id).create()
        resp = client.delete(f"/api/shops/{SHOP_DOMAIN}", headers=ADMIN_HEADERS)
        assert resp.status_code == status.HTTP_200_OK
        assert resp.get_json()["message"] == "Shop deactivated"
        assert Shop.find(shop.id).is_active is False
        assert len(Campaign.find_by_shop(shop.id)) == 1

    def test_deactivate_unknown_shop(self, client):
        resp = client.delete("/api/shops/missing.myshopify.com", headers=ADMIN_HEADERS)
        assert resp.status_code == status.HTTP_404_NOT_FOUND


class TestShopAdminToken:
    """Shared-token check on the /api/shops endpoints"""

    def test_register_without_token(self, client):
        resp = client.post(
            "/api/shops/register", json={"shopDomain": SHOP_DOMAIN, "accessToken": "shpat_abc"}
        )
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED
        assert Shop.find_by_domain(SHOP_DOMAIN) is None

    def test_register_with_wrong_token(self, client, shop):
        token = shop.access_token
        resp = client.post(
            "/api/shops/register",
            json={"shopDomain": SHOP_DOMAIN, "accessToken": "stolen"},
            headers={"X-Shop-Admin-Token": "guess"},
        )
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED
        assert Shop.find_by_domain(SHOP_DOMAIN).access_token == token

    def test_deactivate_without_token(self, client, shop):
        resp = client.delete(f"/api/shops/{SHOP_DOMAIN}")
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED
        assert Shop.find(shop.id).is_active is True

    def test_dedicated_admin_token(self, client, shop):
        app.config["SHOP_ADMIN_TOKEN"] = "dedicated-admin-token"
        try:
            resp = client.delete(f"/api/shops/{SHOP_DOMAIN}", headers=ADMIN_HEADERS)
            assert resp.status_code == status.HTTP_401_UNAUTHORIZED
            resp = client.delete(
                f"/api/shops/{SHOP_DOMAIN}", headers={"X-Shop-Admin-Token": "dedicated-admin-token"}
            )
            assert resp.status_code == status.HTTP_200_OK
            assert Shop.find(shop.id).is_active is False
        finally:
            app.config["SHOP_ADMIN_TOKEN"] = ""

    def test_unconfigured_token(self, client):
        app.config["SHOPIFY_API_SECRET"] = ""
        try:
            resp = client.delete(f"/api/shops/{SHOP_DOMAIN}", headers=ADMIN_HEADERS)
            assert resp.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        finally:
            app.config["SHOPIFY_API_SECRET"] = API_SECRET


class TestUninstalledWebhook:
    """POST /webhooks/app/uninstalled"""

    def test_uninstall_deactivates_shop(self, client, shop):
        resp = _post_uninstalled(client, {"domain": SHOP_DOMAIN})
        assert resp.status_code == status.HTTP_200_OK
        assert Shop.find(shop.id).is_active is False

    def test_bad_hmac_rejected(self, client, shop):
        resp = _post_uninstalled(client, {"domain": SHOP_DOMAIN}, secret="wrong")
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED
        assert Shop.find(shop.id).is_active is True

    def test_missing_shop_header(self, client):
        resp = _post_uninstalled(client, {}, shop_domain=None)
        assert resp.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_shop_acknowledged(self, client):
        resp = _post_uninstalled(client, {}, shop_domain="missing.myshopify.com")
        assert resp.status_code == status.HTTP_200_OK


class TestAppProxy:
    """GET/POST /proxy/campaigns/checkout"""

    def test_post_returns_banner(self, client, shop):
        campaign = CampaignFactory(shop_id=shop.id, checkout_banner="Proxy banner", priority=3)
        campaign.create()
        query = _proxy_query([("shop", SHOP_DOMAIN), ("path_prefix", "/apps/campaigns"), ("timestamp", "1")])
        resp = client.post(f"{PROXY_URL}?{query}", json={"productIds": ["123"]})
        assert resp.status_code == status.HTTP_200_OK
        assert resp.get_json() == {
            "banner": "Proxy banner",
            "campaignId": campaign.id,
            "campaignName": campaign.name,
            "priority": 3,
        }

    def test_get_with_query_product_ids(self, client, shop):
        CampaignFactory(shop_id=shop.id, checkout_banner="From GET").create()
        query = _proxy_query([("shop", SHOP_DOMAIN), ("productIds", "999"), ("productIds", "456")])
        resp = client.get(f"{PROXY_URL}?{query}")
        assert resp.status_code == status.HTTP_200_OK
        assert resp.get_json()["banner"] == "From GET"

    def test_bad_signature(self, client, shop):  # pylint: disable=unused-argument
        query = _proxy_query([("shop", SHOP_DOMAIN)], secret="wrong")
        resp = client.post(f"{PROXY_URL}?{query}", json={"productIds": ["123"]})
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unsigned_request(self, client):
        resp = client.post(f"{PROXY_URL}?shop={SHOP_DOMAIN}", json={"productIds": ["123"]})
        assert resp.status_code == status.HTTP_401_UNAUTHORIZED

    def test_unknown_or_inactive_shop(self, client, shop):
        CampaignFactory(shop_id=shop.id).create()
        query = _proxy_query([("shop", "missing.myshopify.com")])
        resp = client.post(f"{PROXY_URL}?{query}", json={"productIds": ["123"]})
        assert resp.get_json() == {"banner": None}

        shop.deactivate()
        query = _proxy_query([("shop", SHOP_DOMAIN)])
        resp = client.post(f"{PROXY_URL}?{query}", json={"productIds": ["123"]})
        assert resp.get_json() == {"banner": None}

    def test_missing_product_ids(self, client, shop):  # pylint: disable=unused-argument
        query = _proxy_query([("shop", SHOP_DOMAIN)])
        resp = client.get(f"{PROXY_URL}?{query}")
        assert resp.status_code == status.HTTP_400_BAD_REQUEST

    def test_proxy_allows_any_origin(self, client):
        resp = client.options(
            PROXY_URL,
            headers={"Origin": "https://any-store.example", "Access-Control-Request-Method": "POST"},
        )
        assert resp.headers.get("Access-Control-Allow-Origin") in ("*", "https://any-store.example")
