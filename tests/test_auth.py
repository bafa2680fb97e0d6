"""Tests for Shopify request verification."""

import base64
import hashlib
import hmac as hmac_mod
import time

import pytest
from jose import JWTError
from werkzeug.datastructures import MultiDict

from service.common.auth import (
    decode_session_token,
    shop_domain_from_claims,
    verify_app_proxy_signature,
    verify_webhook_hmac,
)
from tests.factories import session_token

SECRET = "test-webhook-secret-key"
SHOP = "test-shop.myshopify.com"


def _webhook_hmac(body: bytes, secret: str = SECRET) -> str:
    """Compute a valid Shopify-style webhook HMAC for testing."""
    return base64.b64encode(
        hmac_mod.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    ).decode("utf-8")


def _signed_proxy_args(params: list, secret: str = SECRET) -> MultiDict:
    """Build app proxy query args and sign them the way Shopify does."""
    args = MultiDict(params)
    message = "".join(
        sorted(f"{key}={','.join(args.getlist(key))}" for key in args.keys())
    )
    args.add("signature", hmac_mod.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest())
    return args


class TestSessionToken:
    """Tests for decode_session_token() and shop_domain_from_claims()."""

    def test_valid_token(self):
        token = session_token(SHOP, SECRET, audience="api-key")
        claims = decode_session_token(token, SECRET, "api-key")
        assert claims["dest"] == f"https://{SHOP}"
        assert shop_domain_from_claims(claims) == SHOP

    def test_audience_ignored_without_api_key(self):
        token = session_token(SHOP, SECRET, audience="someone-else")
        assert decode_session_token(token, SECRET)["aud"] == "someone-else"

    def test_wrong_audience_rejected(self):
        token = session_token(SHOP, SECRET, audience="someone-else")
        with pytest.raises(JWTError):
            decode_session_token(token, SECRET, "api-key")

    def test_wrong_secret_rejected(self):
        token = session_token(SHOP, "another-secret")
        with pytest.raises(JWTError):
            decode_session_token(token, SECRET)

    def test_expired_token_rejected(self):
        token = session_token(SHOP, SECRET, exp=int(time.time()) - 60)
        with pytest.raises(JWTError):
            decode_session_token(token, SECRET)

    def test_garbage_token_rejected(self):
        with pytest.raises(JWTError):
            decode_session_token("not.a.token", SECRET)

    def test_missing_dest_rejected(self):
        with pytest.raises(JWTError):
            shop_domain_from_claims({"iss": "x"})

    def test_dest_trailing_slash(self):
        assert shop_domain_from_claims({"dest": f"https://{SHOP}/"}) == SHOP


class TestVerifyWebhookHmac:
    """Tests for verify_webhook_hmac()."""

    def test_valid_signature(self):
        body = b'{"id": 12345, "domain": "test-shop.myshopify.com"}'
        assert verify_webhook_hmac(body, _webhook_hmac(body), SECRET) is True

    def test_tampered_payload_rejected(self):
        body = b'{"id": 12345}'
        header = _webhook_hmac(body)
        assert verify_webhook_hmac(b'{"id": 54321}', header, SECRET) is False

    def test_empty_header_rejected(self):
        assert verify_webhook_hmac(b"{}", "", SECRET) is False
        assert verify_webhook_hmac(b"{}", None, SECRET) is False

    def test_missing_secret_rejected(self):
        body = b"{}"
        assert verify_webhook_hmac(body, _webhook_hmac(body, ""), "") is False

    def test_wrong_secret_rejected(self):
        body = b"{}"
        assert verify_webhook_hmac(body, _webhook_hmac(body), "wrong-secret") is False

    def test_unicode_payload(self):
        body = '{"name": "café résumé"}'.encode("utf-8")
        assert verify_webhook_hmac(body, _webhook_hmac(body), SECRET) is True


class TestVerifyAppProxySignature:
    """Tests for verify_app_proxy_signature()."""

    def test_valid_signature(self):
        args = _signed_proxy_args(
            [("shop", SHOP), ("path_prefix", "/apps/campaigns"), ("timestamp", "1317327555")]
        )
        assert verify_app_proxy_signature(args, SECRET) is True

    def test_repeated_values_joined(self):
        args = _signed_proxy_args([("shop", SHOP), ("productIds", "1"), ("productIds", "2")])
        assert verify_app_proxy_signature(args, SECRET) is True

    def test_tampered_parameter_rejected(self):
        args = _signed_proxy_args([("shop", SHOP), ("timestamp", "1317327555")])
        args["shop"] = "evil.myshopify.com"
        assert verify_app_proxy_signature(args, SECRET) is False

    def test_missing_signature_rejected(self):
        assert verify_app_proxy_signature(MultiDict([("shop", SHOP)]), SECRET) is False

    def test_wrong_secret_rejected(self):
        args = _signed_proxy_args([("shop", SHOP)])
        assert verify_app_proxy_signature(args, "wrong-secret") is False
