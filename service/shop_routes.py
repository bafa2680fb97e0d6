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
Shop installation and storefront endpoints

- /api/shops: register (install/reinstall) and deactivate Shops, admin-token only
- /webhooks/app/uninstalled: Shopify webhook, HMAC-verified
- /proxy/campaigns/checkout: app proxy used by the checkout extension
"""

from flask import abort, current_app as app, jsonify, request

from service.checkout import find_checkout_banner, parse_product_ids
from service.common import status
from service.common.auth import (
    require_admin_token,
    verify_app_proxy_signature,
    verify_webhook_hmac,
)
from service.models import DataValidationError, Shop
from service.routes import check_content_type


######################################################################
# REGISTER a Shop (install / reinstall)
######################################################################
@app.route("/api/shops/register", methods=["POST"])
@require_admin_token
def register_shop():
    """
    Registers a Shop or refreshes its credentials
    Returns 201 for a new Shop and 200 when an existing one was updated
    """
    app.logger.info("Request to register a Shop")
    check_content_type("application/json")
    try:
        shop, is_new = Shop.register(request.get_json())
    except DataValidationError as error:
        abort(status.HTTP_400_BAD_REQUEST, str(error))

    app.logger.info("Shop %s %s", shop.shop_domain, "registered" if is_new else "updated")
    return (
        jsonify(
            message="Shop registered" if is_new else "Shop updated",
            shop=shop.serialize(),
        ),
        status.HTTP_201_CREATED if is_new else status.HTTP_200_OK,
    )


######################################################################
# DEACTIVATE a Shop
######################################################################
@app.route("/api/shops/<shop_domain>", methods=["DELETE"])
@require_admin_token
def deactivate_shop(shop_domain: str):
    """
    Deactivates a Shop; its campaigns are kept for a later reinstall
    """
    app.logger.info("Request to deactivate Shop [%s]", shop_domain)
    shop = Shop.find_by_domain(shop_domain)
    if not shop:
        abort(status.HTTP_404_NOT_FOUND, f"Shop '{shop_domain}' was not found.")
    shop.deactivate()
    return jsonify(message="Shop deactivated"), status.HTTP_200_OK


######################################################################
# WEBHOOK app/uninstalled
######################################################################
@app.route("/webhooks/app/uninstalled", methods=["POST"])
def app_uninstalled_webhook():
    """
    Handles the app/uninstalled webhook by deactivating the Shop.
    Unknown shops are acknowledged so Shopify stops retrying.
    """
    shop_domain = request.headers.get("X-Shopify-Shop-Domain")
    if not shop_domain:
        abort(status.HTTP_400_BAD_REQUEST, "Missing X-Shopify-Shop-Domain header")

    raw_body = request.get_data()
    hmac_header = request.headers.get("X-Shopify-Hmac-Sha256", "")
    if not verify_webhook_hmac(raw_body, hmac_header, app.config.get("SHOPIFY_API_SECRET")):
        app.logger.warning("HMAC verification failed for %s", shop_domain)
        abort(status.HTTP_401_UNAUTHORIZED, "HMAC verification failed")

    shop = Shop.find_by_domain(shop_domain)
    if shop is None:
        app.logger.warning("Uninstall webhook for unknown shop %s", shop_domain)
    elif shop.is_active:
        shop.deactivate()
        app.logger.info("Shop %s uninstalled the app", shop_domain)
    return jsonify(status="ok"), status.HTTP_200_OK


######################################################################
# APP PROXY checkout banner
######################################################################
@app.route("/proxy/campaigns/checkout", methods=["GET", "POST"])
def proxy_checkout_banner():
    """
    Checkout banner lookup through the Shopify app proxy.

    The proxy signs its query string; the Shop comes from the ``shop``
    parameter. POST carries {"productIds": [...]}, GET repeats
    ``productIds`` in the query string.
    """
    if not verify_app_proxy_signature(request.args, app.config.get("SHOPIFY_API_SECRET")):
        app.logger.warning("App proxy signature rejected")
        abort(status.HTTP_401_UNAUTHORIZED, "Invalid app proxy signature")

    shop_domain = request.args.get("shop", "")
    app.logger.info("App proxy checkout request from %s", shop_domain)

    if request.method == "POST":
        check_content_type("application/json")
        data = request.get_json()
    else:
        data = {"productIds": request.args.getlist("productIds")}
    try:
        product_ids = parse_product_ids(data)
    except DataValidationError as error:
        abort(status.HTTP_400_BAD_REQUEST, str(error))

    shop = Shop.find_by_domain(shop_domain) if shop_domain else None
    if shop is None or not shop.is_active:
        app.logger.info("No active shop for app proxy request (%s)", shop_domain)
        return jsonify(banner=None), status.HTTP_200_OK

    return jsonify(find_checkout_banner(product_ids, shop_id=shop.id)), status.HTTP_200_OK
