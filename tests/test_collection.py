"""Tests for tracked collections: bucketing, delete bookkeeping and reconciliation."""
import copy

import pytest

from changetracking import (
    ChangeStatus,
    NotSupportedError,
    is_tracked,
    track,
    track_collection,
    tracker_of,
)

from conftest import Address, Order, OrderDetail, make_orders


def status_of(item):
    return tracker_of(item).status


def assert_disjoint(collection):
    live = {id(item) for item in collection}
    assert not any(id(item) in live for item in collection.deleted_items)


def test_items_are_wrapped_unchanged(orders):
    collection = track_collection(orders)
    assert len(collection) == 10
    assert all(is_tracked(item) for item in collection)
    assert all(status_of(item) is ChangeStatus.UNCHANGED for item in collection)
    assert not collection.is_changed
    assert len(collection.unchanged_items) == 10


def test_remove_and_reject_scenario(orders):
    """Test that a removed item comes back at its original index on reject."""
    collection = track_collection(orders)
    removed = collection[0]
    del collection[0]

    assert len(collection) == 9
    assert len(collection.deleted_items) == 1
    assert status_of(removed) is ChangeStatus.DELETED
    assert collection.is_changed
    assert_disjoint(collection)

    collection.reject_changes()
    assert len(collection) == 10
    assert collection[0] is removed
    assert len(collection.deleted_items) == 0
    assert status_of(removed) is ChangeStatus.UNCHANGED
    assert not collection.is_changed


def test_reinsert_at_same_index_restores_unchanged(orders):
    """Test that removing then re-inserting at the same index is a no-op."""
    collection = track_collection(orders)
    item = collection[3]
    del collection[3]
    collection.insert(3, item)
    assert status_of(item) is ChangeStatus.UNCHANGED
    assert collection.deleted_items == []
    assert not collection.is_changed


def test_reinsert_elsewhere_marks_changed(orders):
    collection = track_collection(orders)
    item = collection[0]
    collection.remove(item)
    collection.append(item)
    assert status_of(item) is ChangeStatus.CHANGED
    assert collection.deleted_items == []
    assert collection.changed_items == [item]

    collection.accept_changes()
    assert status_of(item) is ChangeStatus.UNCHANGED


def test_insert_from_other_collection_is_added():
    """Test that an item deleted from one collection is Added to another."""
    first = track_collection(make_orders(2))
    second = track_collection(make_orders(2))
    item = first.pop(0)
    second.append(item)
    assert status_of(item) is ChangeStatus.ADDED
    assert second.added_items == [item]


def test_append_plain_item_is_added(orders):
    collection = track_collection(orders)
    collection.append(Order(id=99))
    added = collection.added_items
    assert len(added) == 1
    assert added[0].id == 99
    assert collection.is_changed


def test_removing_added_item_discards_it(orders):
    collection = track_collection(orders)
    collection.append(Order(id=99))
    added = collection[-1]
    del collection[-1]
    assert collection.deleted_items == []
    assert status_of(added) is ChangeStatus.DELETED
    assert not collection.is_changed


def test_reject_drops_added_items(orders):
    collection = track_collection(orders)
    collection.insert(2, Order(id=99))
    collection.reject_changes()
    assert len(collection) == 10
    assert [item.id for item in collection] == list(range(1, 11))


def test_reject_restores_several_deletions_in_order(orders):
    """Test that multiple deletions restore the original order."""
    collection = track_collection(orders)
    del collection[5]
    del collection[0]
    del collection[0]
    collection.append(Order(id=99))
    collection.reject_changes()
    assert [item.id for item in collection] == list(range(1, 11))


def test_accept_clears_deleted_and_added(orders):
    collection = track_collection(orders)
    del collection[0]
    collection.append(Order(id=99))
    collection.accept_changes()
    assert collection.deleted_items == []
    assert collection.added_items == []
    assert all(status_of(item) is ChangeStatus.UNCHANGED for item in collection)
    assert not collection.is_changed


def test_accept_is_idempotent(orders):
    collection = track_collection(orders)
    collection[0].customer_number = "X"
    collection.accept_changes()
    events = []
    collection.on_collection_changed(events.append)
    collection.accept_changes()
    assert events == []
    assert not collection.is_changed


def test_partitions(orders):
    collection = track_collection(orders)
    collection[1].customer_number = "Changed"
    del collection[0]
    collection.append(Order(id=99))
    assert [item.id for item in collection.changed_items] == [2]
    assert [item.id for item in collection.added_items] == [99]
    assert [item.id for item in collection.deleted_items] == [1]
    assert len(collection.unchanged_items) == 8


def test_un_delete_appends_unchanged(orders):
    collection = track_collection(orders)
    item = collection[0]
    del collection[0]
    assert collection.un_delete(item) is True
    assert collection[-1] is item
    assert status_of(item) is ChangeStatus.UNCHANGED
    assert collection.deleted_items == []


def test_un_delete_unknown_item_returns_false(orders):
    collection = track_collection(orders)
    assert collection.un_delete(collection[0]) is False
    assert collection.un_delete(Order()) is False


def test_replace_item(orders):
    """Test that replacing an item deletes the old one and adds the new one."""
    collection = track_collection(orders)
    old = collection[0]
    collection[0] = Order(id=99)
    assert collection[0].id == 99
    assert status_of(collection[0]) is ChangeStatus.ADDED
    assert collection.deleted_items == [old]
    collection.reject_changes()
    assert collection[0] is old


def test_slice_delete_and_assign(orders):
    collection = track_collection(orders)
    del collection[0:3]
    assert len(collection.deleted_items) == 3
    collection[0:1] = [Order(id=50), Order(id=51)]
    assert [item.id for item in collection[:3]] == [50, 51, 5]
    collection.reject_changes()
    assert [item.id for item in collection] == list(range(1, 11))


def test_sort_and_reverse_are_reorders(orders):
    collection = track_collection(orders)
    collection.reverse()
    assert [item.id for item in collection] == list(range(10, 0, -1))
    collection.sort(key=lambda item: item.id)
    assert [item.id for item in collection] == list(range(1, 11))
    assert not collection.is_changed
    assert [item.id for item in orders] == list(range(1, 11))


def test_source_list_mirrors_collection(orders):
    collection = track_collection(orders)
    del collection[0]
    collection.append(Order(id=99))
    assert len(orders) == 10
    assert orders[-1] is collection[-1]
    assert orders[0] is collection[0]


class Box:
    """Minimal non-list collection."""

    def __init__(self, values):
        self._values = list(values)

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def __contains__(self, value):
        return value in self._values


def test_non_list_collection_is_copied():
    box = Box(make_orders(3))
    collection = track_collection(box)
    assert len(collection) == 3
    assert type(collection.target) is list
    collection.append(Order(id=99))
    assert len(box) == 3


def test_get_original_and_current(orders):
    """Test plain list reconstruction in both modes."""
    snapshot = copy.deepcopy(orders)
    collection = track_collection(orders)
    collection[2].customer_number = "Changed"
    del collection[0]
    collection.append(Order(id=99))

    original = collection.get_original()
    assert type(original) is list
    assert original == snapshot
    assert not any(is_tracked(item) for item in original)

    current = collection.get_current()
    assert [item.id for item in current] == list(range(2, 11)) + [99]
    assert current[1].customer_number == "Changed"


def test_collection_invariant_holds_through_edits(orders):
    collection = track_collection(orders)
    item = collection[4]
    del collection[4]
    assert_disjoint(collection)
    collection.insert(0, item)
    assert_disjoint(collection)
    collection.pop()
    assert_disjoint(collection)
    collection.reject_changes()
    assert_disjoint(collection)


def test_nested_collection_changes_parent(order):
    tracked = track(order)
    del tracked.order_details[0]
    tracker = tracker_of(tracked)
    assert tracker.status is ChangeStatus.CHANGED
    assert tracker.changed_property_names == ['order_details']
    tracker.reject_changes()
    assert [detail.item_no for detail in tracked.order_details] == ["A", "B"]
    assert tracker.status is ChangeStatus.UNCHANGED


def test_insert_collection_rejected(orders):
    collection = track_collection(orders)
    other = track_collection(make_orders(1))
    with pytest.raises(NotSupportedError):
        collection.append(other)


def test_insert_scalar_rejected(orders):
    collection = track_collection(orders)
    with pytest.raises(NotSupportedError):
        collection.append(5)


def test_insert_wrong_type_rejected(order):
    details = track(order).order_details
    with pytest.raises(TypeError):
        details.append(Address())


def test_insert_duplicate_rejected(orders):
    collection = track_collection(orders)
    with pytest.raises(ValueError):
        collection.append(collection[0])


def test_source_holds_plain_items_when_configured(orders):
    from changetracking import ChangeTrackingSettings

    settings = ChangeTrackingSettings(make_collection_items_in_source_as_proxies=False)
    collection = track_collection(orders, settings=settings)
    collection.append(Order(id=42))
    assert is_tracked(collection[0])
    assert not any(is_tracked(item) for item in orders)
    assert len(orders) == 11


def test_append_to_element_typed_list(order):
    details = track(order).order_details
    details.append(OrderDetail(item_no="C"))
    assert status_of(details[-1]) is ChangeStatus.ADDED
