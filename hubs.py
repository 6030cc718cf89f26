"""Distribution hubs and the policy that assigns one to each new order."""
import logging
import random

from pymongo.errors import DuplicateKeyError

from config import HUB_POLICY
from database import create_document, object_id, with_id
from errors import ConflictError, InternalError, NotFoundError, ValidationError
from schemas import DistributionHub

logger = logging.getLogger(__name__)

DEFAULT_HUBS = [
    {"hub_name": "Ho Chi Minh", "hub_location": "District 7, Ho Chi Minh City"},
    {"hub_name": "Da Nang", "hub_location": "Hai Chau, Da Nang"},
    {"hub_name": "Hanoi", "hub_location": "Cau Giay, Hanoi"},
]


def list_hubs(db):
    return [with_id(h) for h in db["distributionhub"].find({}).sort("hub_name", 1)]


def get_hub(db, hub_id) -> dict:
    oid = object_id(hub_id)
    hub = db["distributionhub"].find_one({"_id": oid}) if oid else None
    if not hub:
        raise NotFoundError("Distribution hub", hub_id)
    return with_id(hub)


def create_hub(db, hub_name: str, hub_location: str) -> dict:
    hub_name = (hub_name or "").strip()
    hub_location = (hub_location or "").strip()
    if not hub_name or not hub_location:
        raise ValidationError("Hub name and location are required")
    if db["distributionhub"].find_one({"hub_name": hub_name}):
        raise ConflictError("Hub with this name already exists")
    doc = DistributionHub(hub_name=hub_name, hub_location=hub_location).model_dump()
    try:
        hub_id = create_document(db, "distributionhub", doc)
    except DuplicateKeyError:
        raise ConflictError("Hub with this name already exists")
    logger.info("Created distribution hub %s (%s)", hub_name, hub_id)
    return {"id": hub_id, **doc}


def seed_hubs(db) -> int:
    created = 0
    for hub in DEFAULT_HUBS:
        if not db["distributionhub"].find_one({"hub_name": hub["hub_name"]}):
            try:
                create_document(db, "distributionhub", hub)
            except DuplicateKeyError:
                continue
            created += 1
    return created


class HubPicker:
    """Chooses the hub an order is routed through."""

    def candidates(self, db, session=None):
        hubs = list(db["distributionhub"].find({}, {"_id": 1}, session=session).sort("_id", 1))
        if not hubs:
            raise InternalError("No distribution hub configured")
        return [str(h["_id"]) for h in hubs]

    def pick(self, db, vendor_id: str, session=None) -> str:
        raise NotImplementedError


class RandomHubPicker(HubPicker):
    def __init__(self, rng=None):
        self.rng = rng or random.Random()

    def pick(self, db, vendor_id: str, session=None) -> str:
        return self.rng.choice(self.candidates(db, session=session))


class FirstHubPicker(HubPicker):
    def pick(self, db, vendor_id: str, session=None) -> str:
        return self.candidates(db, session=session)[0]


def default_picker() -> HubPicker:
    if HUB_POLICY == "first":
        return FirstHubPicker()
    return RandomHubPicker()
