"""
Order editing walkthrough.

Run with the package installed:
    python examples/orders.py
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from changetracking import (
    ChangeStatus,
    do_not_track,
    track,
    track_collection,
    tracked_field,
    tracker_of,
)

logger = logging.getLogger(__name__)


@do_not_track
@dataclass
class Lead:
    id: int = 0


@dataclass
class Address:
    street: str = ""
    city: str = ""


@dataclass
class OrderDetail:
    item_no: str = ""
    quantity: int = 0


@dataclass
class Order:
    id: int = 0
    customer_number: str = ""
    address: Optional[Address] = None
    order_details: List[OrderDetail] = field(default_factory=list)
    lead: Optional[Lead] = None
    note: str = tracked_field(default="", track=False)


def edit_single_order() -> None:
    order = track(Order(
        id=1,
        customer_number="Test",
        address=Address(street="Main St", city="Springfield"),
        order_details=[OrderDetail("A", 1), OrderDetail("B", 2)],
    ))
    tracker = tracker_of(order)
    tracker.on_status_changed(lambda e: logger.info(f"Order status {e.old_status.name} -> {e.new_status.name}"))

    order.customer_number = "Test1"
    order.address.city = "Shelbyville"
    order.order_details[0].quantity = 5
    order.order_details.append(OrderDetail("C", 1))

    logger.info(f"Changed properties: {tracker.changed_property_names}")
    logger.info(f"Original customer: {tracker.get_original_value('customer_number')}")
    logger.info(f"Original snapshot: {tracker.get_original()}")

    tracker.reject_changes()
    assert tracker.status is ChangeStatus.UNCHANGED
    logger.info(f"After reject: {tracker.get_current()}")


def edit_order_list() -> None:
    orders = track_collection([Order(id=i, customer_number=f"C{i}") for i in range(1, 6)])
    removed = orders.pop(0)
    orders[0].customer_number = "Changed"
    orders.append(Order(id=99))

    logger.info(f"Added: {[o.id for o in orders.added_items]}")
    logger.info(f"Changed: {[o.id for o in orders.changed_items]}")
    logger.info(f"Deleted: {[o.id for o in orders.deleted_items]}")

    orders.reject_changes()
    assert orders[0] is removed
    logger.info(f"After reject: {[o.id for o in orders]}")


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO, format='%(levelname)s %(name)s: %(message)s')
    edit_single_order()
    edit_order_list()
