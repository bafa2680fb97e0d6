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
Models for Shops and Campaigns

A Shop is a merchant store that installed the app. A Campaign belongs to a
Shop and carries the banner text shown at checkout while the campaign is
active and the cart contains one of its products.

Query contract: single-item lookups return object|None; multi-item lookups
return list.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import or_

logger = logging.getLogger("flask.app")

# SQLAlchemy handle; initialized in service/__init__.py
db = SQLAlchemy()

CAMPAIGN_STATUSES = ("draft", "active", "paused", "completed")


class DataValidationError(Exception):
    """Used for data validation errors when deserializing or updating."""


class DatabaseError(Exception):
    """Used for database operation failures (commit/connection/constraint errors)."""


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value, field: str) -> datetime:
    """
    Parses an ISO-8601 datetime string into a naive UTC datetime.

    A trailing 'Z' is accepted and timezone-aware values are converted to UTC.
    Sub-millisecond digits are dropped so a value round-trips through
    format_datetime unchanged.
    """
    if not isinstance(value, str) or not value.strip():
        raise DataValidationError(f"Field '{field}' must be an ISO-8601 datetime")
    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as error:
        raise DataValidationError(
            f"Field '{field}' must be an ISO-8601 datetime"
        ) from error
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return truncate_to_millis(parsed)


def truncate_to_millis(value: Optional[datetime]) -> Optional[datetime]:
    """Drops sub-millisecond digits, the precision used on the wire"""
    if value is None:
        return None
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Formats a stored UTC datetime the way browsers do (2025-10-01T00:00:00.000Z)"""
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def _new_id() -> str:
    return str(uuid.uuid4())


def _valid_id(by_id) -> Optional[str]:
    try:
        return str(uuid.UUID(str(by_id)))
    except (TypeError, ValueError, AttributeError):
        return None


def _required_text(data: dict, field: str) -> str:
    value = data[field]
    if not isinstance(value, str) or not value.strip():
        raise DataValidationError(f"Field '{field}' must be a non-empty string")
    return value


######################################################################
#  P E R S I S T E N T   B A S E
######################################################################
class PersistentBase:
    """Persistence methods shared by all models"""

    def create(self):
        """Creates this record in the database."""
        logger.info("Creating %s", self)
        try:
            db.session.add(self)
            # flush assigns defaults (id, timestamps) even if commit() is mocked in tests
            db.session.flush()
            db.session.commit()
        except Exception as e:  # pragma: no cover - exercised via exception tests
            db.session.rollback()
            logger.error("Error creating record: %s", self)
            raise DatabaseError(e) from e

    def update(self):
        """Updates this record in the database."""
        logger.info("Saving %s", self)
        if not self.id:
            raise DataValidationError("Field 'id' is required for update")
        try:
            db.session.commit()
        except Exception as e:  # pragma: no cover - exercised via exception tests
            db.session.rollback()
            logger.error("Error updating record: %s", self)
            raise DatabaseError(e) from e

    def delete(self):
        """Removes this record from the data store."""
        logger.info("Deleting %s", self)
        try:
            db.session.delete(self)
            db.session.commit()
        except Exception as e:  # pragma: no cover - exercised via exception tests
            db.session.rollback()
            logger.error("Error deleting record: %s", self)
            raise DatabaseError(e) from e

    @classmethod
    def all(cls) -> list:
        """Returns all of the records in the database"""
        logger.info("Processing all %s records", cls.__name__)
        return list(cls.query.all())

    @classmethod
    def find(cls, by_id):
        """Finds a record by its ID (single object or None)."""
        logger.info("Processing %s lookup for id %s ...", cls.__name__, by_id)
        record_id = _valid_id(by_id)
        if record_id is None:
            return None
        return cls.query.session.get(cls, record_id)


######################################################################
#  S H O P
######################################################################
class Shop(db.Model, PersistentBase):
    """
    Class that represents a merchant Shop
    """

    __tablename__ = "shops"

    ##################################################
    # Table Schema
    ##################################################
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    shop_domain = db.Column(db.String(255), unique=True, nullable=False)
    access_token = db.Column(db.Text, nullable=False, default="")
    scope = db.Column(db.Text, nullable=False, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Auditing fields
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    campaigns = db.relationship(
        "Campaign", backref="shop", cascade="all, delete-orphan", lazy=True
    )

    def __repr__(self):
        return f"<Shop {self.shop_domain} id=[{self.id}]>"

    def serialize(self) -> dict:
        """Serializes a Shop into a dictionary (the access token is never exposed)"""
        return {
            "id": self.id,
            "shopDomain": self.shop_domain,
            "scope": self.scope,
            "isActive": self.is_active,
        }

    def deserialize(self, data: dict):
        """
        Deserializes a Shop registration from a dictionary.

        Args:
            data (dict): {"shopDomain", "accessToken", "scope"?}
        """
        if not isinstance(data, dict):
            raise DataValidationError(
                "Invalid shop: body of request contained bad or no data"
            )
        try:
            self.shop_domain = _required_text(data, "shopDomain").strip().lower()
            self.access_token = _required_text(data, "accessToken")
        except KeyError as error:
            raise DataValidationError(f"Invalid shop: missing '{error.args[0]}'") from error
        scope = data.get("scope") or ""
        if not isinstance(scope, str):
            raise DataValidationError("Field 'scope' must be a string")
        self.scope = scope
        return self

    @classmethod
    def find_by_domain(cls, shop_domain: str) -> Optional["Shop"]:
        """Returns the Shop with the given domain (or None)"""
        logger.info("Processing shop_domain query for %s ...", shop_domain)
        return cls.query.filter(cls.shop_domain == shop_domain.strip().lower()).first()

    @classmethod
    def register(cls, data: dict) -> Tuple["Shop", bool]:
        """
        Creates a Shop or refreshes the credentials of an existing one.

        Returns:
            (shop, is_new)
        """
        incoming = cls().deserialize(data)
        shop = cls.find_by_domain(incoming.shop_domain)
        if shop is None:
            incoming.create()
            return incoming, True
        shop.access_token = incoming.access_token
        shop.scope = incoming.scope
        shop.is_active = True
        shop.update()
        return shop, False

    @classmethod
    def find_or_create(cls, shop_domain: str) -> "Shop":
        """
        Returns the active Shop for a domain, creating or reactivating it.

        Credentials are filled in later by register().
        """
        shop = cls.find_by_domain(shop_domain)
        if shop is None:
            shop = cls(shop_domain=shop_domain.strip().lower(), access_token="", scope="")
            shop.create()
            logger.info("Auto-created shop %s", shop.shop_domain)
        elif not shop.is_active:
            logger.info("Reactivating shop %s", shop.shop_domain)
            shop.is_active = True
            shop.update()
        return shop

    def deactivate(self):
        """Marks the Shop as uninstalled without removing its campaigns"""
        self.is_active = False
        self.update()


######################################################################
#  C A M P A I G N
######################################################################
class Campaign(db.Model, PersistentBase):
    """
    Class that represents a checkout banner Campaign
    """

    __tablename__ = "campaigns"

    ##################################################
    # Table Schema
    ##################################################
    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    shop_id = db.Column(
        db.String(36), db.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    checkout_banner = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft")
    priority = db.Column(db.Integer, nullable=False, default=1)
    start_date = db.Column(db.DateTime, nullable=True)
    end_date = db.Column(db.DateTime, nullable=True)
    # JSON-encoded list of product ids or {"id": ...} objects
    products = db.Column(db.Text, nullable=True)
    # Auditing fields
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    ##################################################
    # INSTANCE METHODS
    ##################################################

    def __repr__(self):
        return f"<Campaign {self.name} id=[{self.id}]>"

    def serialize(self) -> dict:
        """Serializes a Campaign into a dictionary."""
        return {
            "id": self.id,
            "shopId": self.shop_id,
            "name": self.name,
            "description": self.description,
            "checkoutBanner": self.checkout_banner,
            "status": self.status,
            "priority": self.priority,
            "startDate": format_datetime(self.start_date),
            "endDate": format_datetime(self.end_date),
            "products": self.products,
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }

    def deserialize(self, data: dict, partial: bool = False):
        """
        Deserializes a Campaign from a dictionary.

        Every field is validated before any attribute is assigned, so a
        rejected payload leaves the Campaign untouched.

        Args:
            data (dict): a dictionary containing the campaign data
            partial (bool): True for updates, where every field is optional
        """
        if not isinstance(data, dict):
            raise DataValidationError(
                "Invalid campaign: body of request contained bad or no data"
            )
        try:
            values = self._validated(data, partial)
        except KeyError as error:
            raise DataValidationError(
                f"Invalid campaign: missing '{error.args[0]}'"
            ) from error

        for attr, value in values.items():
            setattr(self, attr, value)
        return self

    def _validated(self, data: dict, partial: bool) -> dict:
        values = {}
        if "name" in data or not partial:
            values["name"] = _required_text(data, "name")
        if "checkoutBanner" in data or not partial:
            values["checkout_banner"] = _required_text(data, "checkoutBanner")

        if data.get("description") is not None:
            if not isinstance(data["description"], str):
                raise DataValidationError("Field 'description' must be a string")
            values["description"] = data["description"]
        elif "description" in data:
            values["description"] = None

        if data.get("status") is not None:
            if data["status"] not in CAMPAIGN_STATUSES:
                raise DataValidationError(
                    f"Field 'status' must be one of: {', '.join(CAMPAIGN_STATUSES)}"
                )
            values["status"] = data["status"]
        elif not partial:
            values["status"] = "draft"

        if data.get("priority") is not None:
            priority = data["priority"]
            if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
                raise DataValidationError("Field 'priority' must be an integer of at least 1")
            values["priority"] = priority
        elif not partial:
            values["priority"] = 1

        today = utcnow().date()
        for field, attr in (("startDate", "start_date"), ("endDate", "end_date")):
            if field not in data and partial:
                continue
            raw = data[field]
            if raw is None:
                if not partial:
                    raise KeyError(field)
                values[attr] = None
                continue
            parsed = parse_datetime(raw, field)
            # editing other fields must not fail because an unchanged date is now past
            if parsed != truncate_to_millis(getattr(self, attr)) and parsed.date() < today:
                raise DataValidationError(
                    f"Field '{field}' cannot be in the past (today is allowed)"
                )
            values[attr] = parsed

        start = values.get("start_date", self.start_date)
        end = values.get("end_date", self.end_date)
        if start is not None and end is not None and end < start:
            raise DataValidationError("Field 'endDate' must be on or after 'startDate'")

        if "products" in data or not partial:
            if data["products"] is None and partial:
                values["products"] = None
            else:
                values["products"] = _encode_products(data["products"])
        return values

    def product_identifiers(self) -> List[str]:
        """
        Returns the product identifiers stored in the products column.

        Entries may be bare identifiers or objects carrying an "id" field.
        Anything that cannot be parsed yields an empty list.
        """
        if not self.products:
            return []
        try:
            entries = json.loads(self.products)
        except (TypeError, ValueError):
            logger.warning("Campaign %s has malformed products JSON", self.id)
            return []
        if not isinstance(entries, list):
            return []
        identifiers = []
        for entry in entries:
            if isinstance(entry, dict):
                entry = entry.get("id")
            if entry is None or isinstance(entry, (dict, list)):
                continue
            identifiers.append(str(entry))
        return identifiers

    def matches_products(self, product_ids: List[str]) -> bool:
        """True if any cart product id is a substring of any campaign product id"""
        identifiers = self.product_identifiers()
        return any(
            product_id in identifier
            for product_id in product_ids
            for identifier in identifiers
        )

    ##################################################
    # CLASS METHODS
    ##################################################

    @classmethod
    def find_by_shop(cls, shop_id: str) -> List["Campaign"]:
        """Returns all Campaigns of a Shop, newest first"""
        logger.info("Processing campaigns for shop %s ...", shop_id)
        return list(
            cls.query.filter(cls.shop_id == shop_id).order_by(cls.created_at.desc()).all()
        )

    @classmethod
    def find_for_shop(cls, by_id, shop_id: str) -> Optional["Campaign"]:
        """Finds a Campaign by ID only if it belongs to the given Shop"""
        campaign = cls.find(by_id)
        if campaign is None or campaign.shop_id != shop_id:
            return None
        return campaign

    @classmethod
    def find_by_status(cls, shop_id: str, status: str) -> List["Campaign"]:
        """Returns the Campaigns of a Shop that have the given status"""
        logger.info("Processing status query for %s ...", status)
        return list(
            cls.query.filter(cls.shop_id == shop_id, cls.status == status)
            .order_by(cls.created_at.desc())
            .all()
        )

    @classmethod
    def find_by_name(cls, shop_id: str, name: str) -> List["Campaign"]:
        """Returns the Campaigns of a Shop that match the given name exactly"""
        logger.info("Processing name query for %s ...", name)
        return list(
            cls.query.filter(cls.shop_id == shop_id, cls.name == name)
            .order_by(cls.created_at.desc())
            .all()
        )

    @classmethod
    def find_active(cls, shop_id: Optional[str] = None, now: Optional[datetime] = None) -> List["Campaign"]:
        """
        Returns the Campaigns that are running at the given moment.

        Running means: status is active and start_date <= now <= end_date.
        Results are ordered by priority (highest first); equal priorities
        keep creation order.
        """
        if now is None:
            now = utcnow()
        query = cls.query.filter(
            cls.status == "active",
            cls.start_date <= now,
            cls.end_date >= now,
        )
        if shop_id:
            query = query.filter(cls.shop_id == shop_id)
        return list(query.order_by(cls.priority.desc(), cls.created_at.asc()).all())

    @classmethod
    def find_inactive(cls, shop_id: str, now: Optional[datetime] = None) -> List["Campaign"]:
        """Returns the Campaigns of a Shop that are not running at the given moment"""
        if now is None:
            now = utcnow()
        return list(
            cls.query.filter(
                cls.shop_id == shop_id,
                or_(
                    cls.status != "active",
                    cls.start_date.is_(None),
                    cls.end_date.is_(None),
                    cls.start_date > now,
                    cls.end_date < now,
                ),
            )
            .order_by(cls.created_at.desc())
            .all()
        )

    @classmethod
    def delete_many(cls, ids: List[str], shop_id: str) -> int:
        """Deletes the listed Campaigns owned by a Shop and returns how many were removed"""
        valid_ids = [record_id for record_id in map(_valid_id, ids) if record_id]
        if not valid_ids:
            return 0
        logger.info("Bulk deleting %d campaigns for shop %s", len(valid_ids), shop_id)
        try:
            deleted = cls.query.filter(
                cls.id.in_(valid_ids), cls.shop_id == shop_id
            ).delete(synchronize_session=False)
            db.session.commit()
        except Exception as e:  # pragma: no cover - exercised via exception tests
            db.session.rollback()
            logger.error("Error bulk deleting campaigns for shop %s", shop_id)
            raise DatabaseError(e) from e
        return deleted


def _encode_products(value) -> str:
    """Normalizes the products field to a JSON-encoded, non-empty list"""
    entries = value
    if isinstance(value, str):
        try:
            entries = json.loads(value)
        except ValueError as error:
            raise DataValidationError("Field 'products' must be a JSON-encoded list") from error
    if not isinstance(entries, list):
        raise DataValidationError("Field 'products' must be a list of products")
    if not entries:
        raise DataValidationError("At least one product must be selected")
    return value if isinstance(value, str) else json.dumps(entries)
