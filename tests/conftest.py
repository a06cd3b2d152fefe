"""Pytest configuration and shared fixtures."""
import pytest
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import List, Optional

import changetracking.config as config_module
from changetracking import do_not_track, tracked_field


@do_not_track
@dataclass
class Lead:
    """Reference data that is never tracked."""
    id: int = 0
    source: str = ""


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
    """Test order - exercises value, complex, collection and excluded properties."""
    id: int = 0
    customer_number: str = ""
    address: Optional[Address] = None
    order_details: List[OrderDetail] = field(default_factory=list)
    lead: Optional[Lead] = None
    internal_note: str = tracked_field(default="", track=False)

    def rename(self, customer_number: str) -> None:
        self.customer_number = customer_number


@dataclass(eq=False)
class InventoryUpdate:
    """Self-referencing type for cyclic graphs (eq=False: field equality would recurse)."""
    id: int = 0
    linked_inventory_update: Optional["InventoryUpdate"] = None


class Building(MutableMapping):
    """Mapping-style class: rooms are keyed items, name is a regular property."""
    name: str

    def __init__(self, name: str = "", **rooms):
        self.name = name
        self._rooms = dict(rooms)

    def __getitem__(self, key):
        return self._rooms[key]

    def __setitem__(self, key, value):
        self._rooms[key] = value

    def __delitem__(self, key):
        del self._rooms[key]

    def __iter__(self):
        return iter(self._rooms)

    def __len__(self):
        return len(self._rooms)


def make_orders(count: int = 10) -> List[Order]:
    return [
        Order(id=i, customer_number=f"Customer{i}", address=Address(street=f"{i} Main St", city="Springfield"))
        for i in range(1, count + 1)
    ]


@pytest.fixture(autouse=True)
def restore_default_settings():
    """Restore module-level default settings after each test."""
    original_settings = config_module._default_settings
    yield
    config_module._default_settings = original_settings


@pytest.fixture
def order():
    """Plain order with one nested address and two details."""
    return Order(
        id=1,
        customer_number="Test",
        address=Address(street="Main St", city="Springfield"),
        order_details=[OrderDetail(item_no="A", quantity=1), OrderDetail(item_no="B", quantity=2)],
    )


@pytest.fixture
def orders():
    return make_orders(10)
