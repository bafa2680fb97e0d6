######################################################################
# Copyright 2016, 2024 John J. Rofrano. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
# https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
######################################################################
"""
Module: auth

Verification of the three kinds of signed requests Shopify sends to the app:

* session tokens (HS256 JWTs) from the embedded admin and checkout extension
* webhooks, signed with X-Shopify-Hmac-Sha256
* app proxy requests, signed with a ``signature`` query parameter

Shop registration calls from the app's own server carry a shared admin token.
"""

import base64
import hashlib
import hmac
from functools import wraps
from typing import Optional

from flask import abort, current_app as app, g, request
from jose import JWTError, jwt

from service.common import status
from service.models import Shop

ALGORITHM = "HS256"
ADMIN_TOKEN_HEADER = "X-Shop-Admin-Token"


def decode_session_token(token: str, secret: str, audience: Optional[str] = None) -> dict:
    """
    Decode and validate a Shopify session token, returning its claims.

    The audience is only checked when the app's API key is configured.
    Raises jose.JWTError on failure.
    """
    options = {} if audience else {"verify_aud": False}
    return jwt.decode(token, secret, algorithms=[ALGORITHM], audience=audience or None, options=options)


def shop_domain_from_claims(claims: dict) -> str:
    """The dest claim carries the shop URL, e.g. https://my-shop.myshopify.com"""
    dest = claims.get("dest") or ""
    domain = dest.replace("https://", "").replace("http://", "").strip("/")
    if not domain:
        raise JWTError("Session token has no 'dest' claim")
    return domain


def require_session_token(function):
    """
    Route decorator that authenticates the request with a Shopify session token.

    On success the (auto-created or reactivated) Shop is stored on flask.g.shop.
    """

    @wraps(function)
    def decorated(*args, **kwargs):
        secret = app.config.get("SHOPIFY_API_SECRET")
        if not secret:
            app.logger.error("SHOPIFY_API_SECRET is not configured")
            abort(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            app.logger.info("No Bearer token on request to %s", request.path)
            abort(status.HTTP_401_UNAUTHORIZED, "Missing or invalid Authorization header")

        token = auth_header[len("Bearer "):].strip()
        try:
            claims = decode_session_token(token, secret, app.config.get("SHOPIFY_API_KEY"))
            shop_domain = shop_domain_from_claims(claims)
        except JWTError as error:
            app.logger.warning("Session token rejected: %s", error)
            abort(status.HTTP_401_UNAUTHORIZED, "Invalid session token")

        g.shop = Shop.find_or_create(shop_domain)
        app.logger.info("Authenticated request for shop %s", g.shop.shop_domain)
        return function(*args, **kwargs)

    return decorated


def require_admin_token(function):
    """
    Route decorator for server-to-server calls from the app's install flow.

    The caller sends the shared SHOP_ADMIN_TOKEN (SHOPIFY_API_SECRET when that
    is unset) in the X-Shop-Admin-Token header.
    """

    @wraps(function)
    def decorated(*args, **kwargs):
        expected = app.config.get("SHOP_ADMIN_TOKEN") or app.config.get("SHOPIFY_API_SECRET")
        if not expected:
            app.logger.error("SHOP_ADMIN_TOKEN is not configured")
            abort(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server configuration error")

        supplied = request.headers.get(ADMIN_TOKEN_HEADER, "")
        if not supplied or not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            app.logger.warning("Admin token rejected on request to %s", request.path)
            abort(status.HTTP_401_UNAUTHORIZED, f"Missing or invalid {ADMIN_TOKEN_HEADER} header")
        return function(*args, **kwargs)

    return decorated


def verify_webhook_hmac(request_body: bytes, hmac_header: Optional[str], secret: str) -> bool:
    """
    Verify the HMAC-SHA256 signature of a Shopify webhook request.

    Shopify sends an X-Shopify-Hmac-Sha256 header containing a Base64-encoded
    digest of the raw request body, computed with the app's API secret.
    """
    if not hmac_header or not secret:
        return False
    computed = base64.b64encode(
        hmac.new(secret.encode("utf-8"), request_body, hashlib.sha256).digest()
    ).decode("utf-8")
    return hmac.compare_digest(computed, hmac_header)


def verify_app_proxy_signature(args, secret: str) -> bool:
    """
    Verify the ``signature`` query parameter of a Shopify app proxy request.

    The signature is the hex HMAC-SHA256 of every other parameter rendered as
    ``key=value`` (repeated values joined with commas), sorted and concatenated
    without a separator.

    Args:
        args: a werkzeug MultiDict of query parameters (request.args)
        secret: the app's API secret
    """
    signature = args.get("signature", "")
    if not signature or not secret:
        return False
    message = "".join(
        sorted(
            f"{key}={','.join(args.getlist(key))}"
            for key in args.keys()
            if key != "signature"
        )
    )
    computed = hmac.new(
        secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return hmac.compare_digest(computed, signature)
