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
Checkout banner selection

Picks the banner the checkout extension shows for a cart: the highest
priority running Campaign that lists one of the cart's products.
"""

import logging
from datetime import datetime
from typing import List, Optional

from service.models import Campaign, DataValidationError

logger = logging.getLogger("flask.app")

NO_BANNER = {"banner": None}


def parse_product_ids(data) -> List[str]:
    """
    Validates a checkout request body of the form {"productIds": [...]}.

    Returns:
        the list of product id strings (at least one)
    """
    if not isinstance(data, dict):
        raise DataValidationError("Invalid request: body must be a JSON object")
    product_ids = data.get("productIds")
    if not isinstance(product_ids, list) or not all(isinstance(pid, str) for pid in product_ids):
        raise DataValidationError("Field 'productIds' must be a list of strings")
    if not product_ids:
        raise DataValidationError("At least one product ID is required")
    return product_ids


def find_checkout_banner(
    product_ids: List[str], shop_id: Optional[str] = None, now: Optional[datetime] = None
) -> dict:
    """
    Returns the banner of the first running Campaign that matches the cart.

    Campaigns are scanned by priority, highest first. A Campaign matches when
    any cart product id is a substring of one of its product ids (so a bare
    numeric id matches a gid://shopify/Product/<id>). An empty cart id
    is a substring of every id, so it matches any Campaign with products.

    Args:
        product_ids: product identifiers in the cart
        shop_id: limit the scan to one Shop's campaigns
        now: the moment to evaluate the date window at (defaults to utcnow)

    Returns:
        {"banner", "campaignId", "campaignName", "priority"} or {"banner": None}
    """
    for campaign in Campaign.find_active(shop_id=shop_id, now=now):
        if not campaign.checkout_banner:
            continue
        if campaign.matches_products(product_ids):
            logger.info(
                "Checkout banner from campaign %s (priority %s)", campaign.id, campaign.priority
            )
            return {
                "banner": campaign.checkout_banner,
                "campaignId": campaign.id,
                "campaignName": campaign.name,
                "priority": campaign.priority,
            }

    logger.info("No campaign matches products %s", product_ids)
    return dict(NO_BANNER)
