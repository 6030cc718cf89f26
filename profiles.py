"""
User profiles

Users read and edit their own profile. What they may edit beyond the username
depends on the actor (``Actor.profile_fields``). Vendor profiles are public.
"""
import logging
from datetime import datetime, timezone

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from actors import Actor, VendorActor
from auth import check_business_free, check_hub_exists, check_username_free, public_user
from database import object_id
from errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def get_profile(db, actor: Actor) -> dict:
    user = db["user"].find_one({"_id": object_id(actor.user_id)})
    if not user:
        raise NotFoundError("User", actor.user_id)
    return public_user(user)


def _clean(changes: dict) -> dict:
    cleaned = {}
    for field, value in changes.items():
        if value is None:
            continue
        value = str(value).strip()
        if not value:
            raise ValidationError(f"{field} cannot be empty")
        cleaned[field] = value
    return cleaned


def update_profile(db, actor: Actor, changes: dict) -> dict:
    """Apply a partial profile edit. Only the given fields are written."""
    changes = _clean(changes)
    editable = ("username",) + actor.profile_fields
    refused = sorted(set(changes) - set(editable))
    if refused:
        raise ValidationError(f"Cannot update field(s): {', '.join(refused)}")
    if not changes:
        raise ValidationError("Nothing to update")

    oid = object_id(actor.user_id)
    if "username" in changes:
        check_username_free(db, changes["username"], exclude_id=oid)
    if "business_name" in changes or "business_address" in changes:
        check_business_free(db, changes.get("business_name"), changes.get("business_address"), exclude_id=oid)
    if "hub_id" in changes:
        check_hub_exists(db, changes["hub_id"])

    try:
        user = db["user"].find_one_and_update(
            {"_id": oid},
            {"$set": {**changes, "updated_at": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise ConflictError("Username already exists")
    if not user:
        raise NotFoundError("User", actor.user_id)
    logger.info("%r updated profile fields %s", actor, ", ".join(sorted(changes)))
    return public_user(user)


def get_vendor_profile(db, vendor_id) -> dict:
    oid = object_id(vendor_id)
    vendor = db["user"].find_one({"_id": oid, "role": VendorActor.role}) if oid else None
    if not vendor:
        raise NotFoundError("Vendor", vendor_id)
    return {
        "id": str(vendor["_id"]),
        "username": vendor["username"],
        "businessName": vendor.get("business_name"),
        "businessAddress": vendor.get("business_address"),
    }
