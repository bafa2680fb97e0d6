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
Campaigns Service

This service implements a REST API that allows a Shop to Create, Read,
Update, Delete and List checkout banner Campaigns, and lets the checkout
extension ask which banner to show for a cart.
"""

# Standard library
from datetime import datetime, timezone

# Third-party
from flask import abort, current_app as app, g, jsonify, request, url_for

# First-party
from service.checkout import find_checkout_banner, parse_product_ids
from service.common import status  # HTTP status codes
from service.common.auth import require_session_token
from service.models import CAMPAIGN_STATUSES, Campaign, DataValidationError, db

BASE_URL = "/api/campaigns"


def _parse_bool_strict(value: str):
    """
    Strictly parse query-string boolean.
    Accepted (case-insensitive, trimmed):
      True:  'true', '1', 'yes'
      False: 'false', '0', 'no'
    Others: return None (caller should raise 400)
    """
    v = str(value).strip().lower()
    if v in {"true", "1", "yes"}:
        return True
    if v in {"false", "0", "no"}:
        return False
    return None


######################################################################
# Root endpoint
######################################################################
@app.route("/", methods=["GET"])
def index():
    """Root URL response"""
    return (
        jsonify(
            name="Campaigns Service",
            version="1.0.0",
            description="RESTful service for managing checkout banner campaigns",
            paths={
                "campaigns": BASE_URL,
                "checkout": f"{BASE_URL}/checkout",
                "shops": "/api/shops",
            },
        ),
        status.HTTP_200_OK,
    )


######################################################################
# LIST Campaigns with optional filters

# Supported query params:
# ?active=<bool>   -> true  => running now (status active, inside date window)
#                     false => everything else
#                     Accepted: true/false/1/0/yes/no (case-insensitive)
#                     Invalid => 400
# ?status=<str>    -> exact match list (must be a known status)
# ?name=<str>      -> exact match list
# Priority: active > status > name > all
######################################################################
@app.route(BASE_URL, methods=["GET"])
@require_session_token
def list_campaigns():
    """
    List the Campaigns of the authenticated Shop
    - Without query: return all campaigns, newest first
    - With filter: return matches
    """
    app.logger.info("Request to list Campaigns")
    shop_id = g.shop.id

    active_raw = request.args.get("active")
    campaign_status = request.args.get("status")
    name = request.args.get("name")

    if active_raw is not None:
        active = _parse_bool_strict(active_raw)
        if active is None:
            abort(
                status.HTTP_400_BAD_REQUEST,
                (
                    "Invalid value for query parameter 'active'. "
                    "Accepted: true, false, 1, 0, yes, no (case-insensitive). "
                    f"Received: {active_raw!r}"
                ),
            )
        if active:
            app.logger.info("Filtering by running campaigns")
            campaigns = Campaign.find_active(shop_id=shop_id)
        else:
            app.logger.info("Filtering by campaigns not running")
            campaigns = Campaign.find_inactive(shop_id)
    elif campaign_status:
        campaign_status = campaign_status.strip()
        if campaign_status not in CAMPAIGN_STATUSES:
            abort(
                status.HTTP_400_BAD_REQUEST,
                f"Invalid value for query parameter 'status'. Accepted: {', '.join(CAMPAIGN_STATUSES)}",
            )
        app.logger.info("Filtering by status=%s", campaign_status)
        campaigns = Campaign.find_by_status(shop_id, campaign_status)
    elif name:
        app.logger.info("Filtering by name=%s", name)
        campaigns = Campaign.find_by_name(shop_id, name.strip())
    else:
        campaigns = Campaign.find_by_shop(shop_id)

    results = [campaign.serialize() for campaign in campaigns]
    return jsonify(results), status.HTTP_200_OK


######################################################################
# READ a Campaign
######################################################################
@app.route(f"{BASE_URL}/<campaign_id>", methods=["GET"])
@require_session_token
def get_campaigns(campaign_id: str):
    """
    Get a Campaign by id
    """
    app.logger.info("Request to get Campaign with id [%s]", campaign_id)
    campaign = _find_or_404(campaign_id)
    return jsonify(campaign.serialize()), status.HTTP_200_OK


######################################################################
# CREATE a Campaign
######################################################################
@app.route(BASE_URL, methods=["POST"])
@require_session_token
def create_campaigns():
    """
    Create a Campaign owned by the authenticated Shop
    """
    app.logger.info("Request to Create a Campaign")
    check_content_type("application/json")

    campaign = Campaign()
    try:
        data = request.get_json()
        app.logger.info("Processing: %s", data)
        campaign.deserialize(data)
        campaign.shop_id = g.shop.id
        campaign.create()
    except DataValidationError as error:
        abort(status.HTTP_400_BAD_REQUEST, str(error))

    location_url = url_for("get_campaigns", campaign_id=campaign.id, _external=True)
    return (
        jsonify(campaign.serialize()),
        status.HTTP_201_CREATED,
        {"Location": location_url},
    )


######################################################################
# UPDATE a Campaign
######################################################################
@app.route(f"{BASE_URL}/<campaign_id>", methods=["PUT"])
@require_session_token
def update_campaigns(campaign_id: str):
    """
    Update a Campaign
    Only the fields present in the payload are changed
    """
    app.logger.info("Request to update Campaign with id [%s]", campaign_id)
    check_content_type("application/json")

    campaign = _find_or_404(campaign_id)

    data = request.get_json()
    app.logger.info("Processing: %s", data)
    if isinstance(data, dict) and "id" in data and str(data["id"]) != campaign.id:
        abort(status.HTTP_400_BAD_REQUEST, "ID in body must match resource path")
    try:
        campaign.deserialize(data, partial=True)
        campaign.update()
    except DataValidationError as error:
        db.session.rollback()
        abort(status.HTTP_400_BAD_REQUEST, str(error))

    return jsonify(campaign.serialize()), status.HTTP_200_OK


######################################################################
# CHANGE the status of a Campaign (action)
######################################################################
@app.route(f"{BASE_URL}/<campaign_id>/status", methods=["PUT"])
@require_session_token
def change_campaign_status(campaign_id: str):
    """
    Action: move a Campaign to another status (draft, active, paused, completed)
    without touching its other fields.
    """
    app.logger.info("Request to change status of Campaign with id [%s]", campaign_id)
    check_content_type("application/json")

    campaign = _find_or_404(campaign_id)
    data = request.get_json()
    new_status = data.get("status") if isinstance(data, dict) else None
    if new_status not in CAMPAIGN_STATUSES:
        abort(
            status.HTTP_400_BAD_REQUEST,
            f"Field 'status' must be one of: {', '.join(CAMPAIGN_STATUSES)}",
        )

    app.logger.info("Campaign [%s] %s -> %s", campaign.id, campaign.status, new_status)
    campaign.status = new_status
    campaign.update()
    return jsonify(campaign.serialize()), status.HTTP_200_OK


######################################################################
# DELETE a Campaign
######################################################################
@app.route(f"{BASE_URL}/<campaign_id>", methods=["DELETE"])
@require_session_token
def delete_campaigns(campaign_id: str):
    """
    Delete a Campaign by id
    - If the campaign doesn't exist (for this Shop), return 404
    - If exists, delete and return 204
    """
    app.logger.info("Request to delete Campaign with id [%s]", campaign_id)
    campaign = _find_or_404(campaign_id)
    campaign.delete()
    return "", status.HTTP_204_NO_CONTENT


######################################################################
# BULK DELETE Campaigns
######################################################################
@app.route(BASE_URL, methods=["DELETE"])
@require_session_token
def bulk_delete_campaigns():
    """
    Delete several Campaigns at once: {"ids": [...]}
    Ids that don't exist or belong to another Shop are skipped.
    """
    app.logger.info("Request to bulk delete Campaigns")
    check_content_type("application/json")

    data = request.get_json()
    ids = data.get("ids") if isinstance(data, dict) else None
    if not isinstance(ids, list) or not ids:
        abort(status.HTTP_400_BAD_REQUEST, "Field 'ids' must be a non-empty list")

    deleted = Campaign.delete_many([str(campaign_id) for campaign_id in ids], g.shop.id)
    return jsonify(deleted=deleted), status.HTTP_200_OK


######################################################################
# CHECKOUT banner for a cart
######################################################################
@app.route(f"{BASE_URL}/checkout", methods=["POST"])
@require_session_token
def checkout_banner():
    """
    Returns the banner of the best running Campaign of this Shop for
    {"productIds": [...]}, or {"banner": null}
    """
    app.logger.info("Request for checkout banner")
    check_content_type("application/json")
    try:
        product_ids = parse_product_ids(request.get_json())
    except DataValidationError as error:
        abort(status.HTTP_400_BAD_REQUEST, str(error))

    return jsonify(find_checkout_banner(product_ids, shop_id=g.shop.id)), status.HTTP_200_OK


######################################################################
# Utility: shop-scoped lookup
######################################################################
def _find_or_404(campaign_id: str) -> Campaign:
    campaign = Campaign.find_for_shop(campaign_id, g.shop.id)
    if not campaign:
        abort(
            status.HTTP_404_NOT_FOUND,
            f"Campaign with id '{campaign_id}' was not found.",
        )
    return campaign


######################################################################
# Utility: Content-Type guard
######################################################################
def check_content_type(content_type: str):
    """Checks that the media type is correct (tolerates charset etc.)"""
    # Werkzeug exposes parsed mimetype; if header missing, this is None
    if request.mimetype != content_type:
        got = request.content_type or "none"
        abort(
            status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            f"Content-Type must be {content_type}; received {got}",
        )


######################################################################
# Endpoint: /health (K8s liveness/readiness)
######################################################################
@app.route("/health", methods=["GET"])
def health():
    """
    K8s health check endpoint
    Returns:
        JSON: {"status": "OK", "timestamp": ...} with HTTP 200
    Notes:
        - Independent of the database so that liveness/readiness probes are stable.
    """
    app.logger.info("Health check requested")
    return (
        jsonify(status="OK", timestamp=datetime.now(timezone.utc).isoformat()),
        status.HTTP_200_OK,
    )
