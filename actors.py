"""
Request actors

Every authenticated request is resolved once into an Actor. The actor knows
its order scope and its allowed status changes, and it picks the role specific
fields of order views, so handlers never compare role strings themselves.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from schemas import OrderStatus


@dataclass(frozen=True)
class Transition:
    source: OrderStatus
    target: OrderStatus
    action: str
    reason_required: bool = False
    reason_prefix: Optional[str] = None


class Actor:
    role: str = ""
    transitions: Dict[OrderStatus, Transition] = {}
    # statuses shown in list views, None means all
    listed_statuses: Optional[tuple] = None
    # profile fields the user may edit besides the username
    profile_fields: tuple = ()

    def __init__(self, user_id: str):
        self.user_id = user_id

    def order_scope(self) -> dict:
        """Filter matching the orders this actor owns."""
        raise NotImplementedError

    def lookup_scope(self) -> dict:
        """Filter matching the orders this actor is told exist.

        An order inside lookup_scope but outside order_scope answers 403,
        anything outside lookup_scope answers 404.
        """
        return self.order_scope()

    def transition_to(self, target: OrderStatus) -> Optional[Transition]:
        return self.transitions.get(target)

    def actions_for(self, status: OrderStatus) -> list:
        return [t.action for t in self.transitions.values() if t.source == status]

    def summary_fields(self, view) -> dict:
        """Role specific fields of an order list entry, picked from an order view."""
        return {}

    def detail_fields(self, view) -> dict:
        return {}

    def __repr__(self):
        return f"{type(self).__name__}({self.user_id!r})"


class CustomerActor(Actor):
    role = "CUSTOMER"
    profile_fields = ("name", "address")
    transitions = {
        OrderStatus.CANCELED: Transition(
            OrderStatus.PENDING, OrderStatus.CANCELED, "cancel",
            reason_prefix="Customer Canceled",
        ),
    }

    def order_scope(self) -> dict:
        return {"customer_id": self.user_id}

    def summary_fields(self, view) -> dict:
        return {"vendorName": view.vendor_name}


class VendorActor(Actor):
    role = "VENDOR"
    profile_fields = ("business_name", "business_address")
    transitions = {
        OrderStatus.ACTIVE: Transition(OrderStatus.PENDING, OrderStatus.ACTIVE, "accept"),
        OrderStatus.CANCELED: Transition(
            OrderStatus.PENDING, OrderStatus.CANCELED, "reject",
            reason_required=True, reason_prefix="Vendor Rejected",
        ),
    }

    def order_scope(self) -> dict:
        return {"vendor_id": self.user_id}

    def summary_fields(self, view) -> dict:
        return {"customerName": view.customer_name, "vendorSubtotal": view.subtotal_for(self.user_id)}

    def detail_fields(self, view) -> dict:
        return {"vendorSubtotal": view.subtotal_for(self.user_id)}


class ShipperActor(Actor):
    role = "SHIPPER"
    profile_fields = ("hub_id",)
    transitions = {
        OrderStatus.DELIVERED: Transition(OrderStatus.ACTIVE, OrderStatus.DELIVERED, "deliver"),
        OrderStatus.CANCELED: Transition(
            OrderStatus.ACTIVE, OrderStatus.CANCELED, "cancel",
            reason_required=True, reason_prefix="Shipper Canceled",
        ),
    }
    listed_statuses = (OrderStatus.ACTIVE,)

    def __init__(self, user_id: str, hub_id: str):
        super().__init__(user_id)
        self.hub_id = hub_id

    def order_scope(self) -> dict:
        return {"hub_id": self.hub_id}

    def lookup_scope(self) -> dict:
        # shippers see that an order exists elsewhere and get a 403 for it
        return {}

    def summary_fields(self, view) -> dict:
        return {"customerName": view.customer_name, "customerAddress": view.customer_address}

    def __repr__(self):
        return f"ShipperActor({self.user_id!r}, hub={self.hub_id!r})"


def actor_for_user(user: dict) -> Optional[Actor]:
    user_id = str(user["_id"])
    role = user.get("role")
    if role == CustomerActor.role:
        return CustomerActor(user_id)
    if role == VendorActor.role:
        return VendorActor(user_id)
    if role == ShipperActor.role and user.get("hub_id"):
        return ShipperActor(user_id, str(user["hub_id"]))
    return None
