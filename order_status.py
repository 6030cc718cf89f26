"""
Order status state machine

    PENDING --vendor accept--> ACTIVE --shipper--> DELIVERED
    PENDING --vendor reject / customer cancel--> CANCELED
    ACTIVE --shipper cancel--> CANCELED

DELIVERED and CANCELED are terminal. Each change is a single conditional
update keyed on the expected current status and the actor's ownership scope,
so of two racing changes only the first one applies.
"""
import logging
from datetime import datetime, timezone

from pymongo import ReturnDocument

from actors import Actor
from catalog import restock
from database import object_id, run_in_transaction
from errors import ForbiddenError, InvalidTransitionError, NotFoundError, ValidationError
from schemas import OrderStatus

logger = logging.getLogger(__name__)


def parse_status(value) -> OrderStatus:
    raw = str(value or "").strip().upper()
    if not raw:
        raise ValidationError("Missing status in body")
    try:
        return OrderStatus(raw)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}")


def _cancel_reason(transition, reason: str):
    if transition.target != OrderStatus.CANCELED:
        return None
    if reason:
        return f"{transition.reason_prefix}: {reason}"
    return transition.reason_prefix


def _diagnose(db, actor: Actor, oid, order_id, target: OrderStatus):
    """Work out why a conditional update matched nothing."""
    order = db["order"].find_one({"_id": oid, **actor.lookup_scope()})
    if not order:
        return NotFoundError("Order", order_id)
    if not db["order"].find_one({"_id": oid, **actor.order_scope()}, {"_id": 1}):
        return ForbiddenError("Not allowed to update this order")
    return InvalidTransitionError(order["status"], target.value)


def restock_order(db, order_id: str, session=None):
    for item in db["orderitem"].find({"order_id": order_id}, session=session):
        restock(db, item["product_id"], int(item["quantity"]), session=session)


def change_status(db, actor: Actor, order_id, status, reason=None) -> dict:
    target = parse_status(status)
    transition = actor.transition_to(target)
    if transition is None:
        raise ForbiddenError(f"A {actor.role.lower()} cannot set an order to {target.value}")

    reason = str(reason or "").strip()
    if transition.reason_required and not reason:
        raise ValidationError(f"A reason is required to {transition.action} an order")

    oid = object_id(order_id)
    if oid is None:
        raise NotFoundError("Order", order_id)

    now = datetime.now(timezone.utc)
    changes = {"status": target.value, "updated_at": now}
    cancel_reason = _cancel_reason(transition, reason)
    if cancel_reason:
        changes["cancel_reason"] = cancel_reason

    def apply_change(session):
        updated = db["order"].find_one_and_update(
            {"_id": oid, "status": transition.source.value, **actor.order_scope()},
            {
                "$set": changes,
                "$push": {"status_history": {"status": target.value, "at": now, "actor": f"{actor.role}:{actor.user_id}"}},
            },
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if updated is None:
            error = _diagnose(db, actor, oid, order_id, target)
            logger.warning("%r could not %s order %s: %s", actor, transition.action, order_id, error)
            raise error

        if target == OrderStatus.CANCELED:
            restock_order(db, str(oid), session=session)
        return updated

    updated = run_in_transaction(db, apply_change)
    logger.info("%r moved order %s from %s to %s", actor, order_id, transition.source.value, target.value)
    return {
        "ok": True,
        "status": updated["status"],
        "cancelReason": updated.get("cancel_reason"),
    }
