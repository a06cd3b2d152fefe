"""Tests for the identity graph and wrapper idempotence."""
import gc
import threading
from concurrent.futures import ThreadPoolExecutor

from changetracking import track, track_collection, tracker_of
from changetracking.identity_graph import IdentityGraph

from conftest import Address, Order, make_orders


class Node:
    pass


class Wrapper:
    pass


def test_resolve_missing_returns_none():
    graph = IdentityGraph()
    assert graph.resolve(Node()) is None


def test_register_and_resolve():
    graph = IdentityGraph()
    target, wrapper = Node(), Wrapper()
    assert graph.register(target, wrapper) is wrapper
    assert graph.resolve(target) is wrapper


def test_register_keeps_existing_live_mapping():
    """Test that a second registration loses to the first."""
    graph = IdentityGraph()
    target, first, second = Node(), Wrapper(), Wrapper()
    graph.register(target, first)
    assert graph.register(target, second) is first
    assert graph.resolve(target) is first


def test_resolve_or_create_creates_once():
    graph = IdentityGraph()
    target = Node()
    created = []

    def create(t):
        created.append(t)
        return Wrapper()

    first = graph.resolve_or_create(target, create)
    second = graph.resolve_or_create(target, create)
    assert first is second
    assert created == [target]


def test_compact_removes_collected_wrappers():
    """Test that entries whose wrapper was collected are pruned."""
    graph = IdentityGraph()
    target = Node()
    graph.register(target, Wrapper())
    gc.collect()
    assert graph.resolve(target) is None
    assert graph.compact() == 1
    assert len(graph) == 0


def test_compact_keeps_live_entries():
    graph = IdentityGraph()
    target, wrapper = Node(), Wrapper()
    graph.register(target, wrapper)
    assert graph.compact() == 0
    assert graph.resolve(target) is wrapper


def test_periodic_compaction():
    """Test that compaction runs every compact_interval operations."""
    graph = IdentityGraph(compact_interval=3)
    keep = Node()
    graph.register(keep, Wrapper())
    gc.collect()
    graph.resolve(keep)
    graph.resolve(keep)
    assert len(graph) == 0


def test_unweakrefable_targets():
    graph = IdentityGraph()
    target = [1, 2]
    wrapper = Wrapper()
    graph.register(target, wrapper)
    assert graph.resolve(target) is wrapper
    assert graph.resolve([1, 2]) is None


def test_concurrent_resolve_or_create_returns_one_wrapper():
    """Test that racing creators all end up with the same wrapper."""
    graph = IdentityGraph(compact_interval=7)
    target = Node()
    barrier = threading.Barrier(8)

    def worker(_):
        barrier.wait()
        return graph.resolve_or_create(target, lambda t: Wrapper())

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(8)))
    assert all(result is results[0] for result in results)


def test_concurrent_child_reads_return_same_wrapper(order):
    """Test that threads racing on an unresolved child all get one wrapper."""
    tracked = track(order)
    barrier = threading.Barrier(8)

    def worker(_):
        barrier.wait()
        return tracked.address

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(8)))
    assert all(result is results[0] for result in results)


def test_shared_instance_gets_one_wrapper():
    """Test that a diamond reference resolves to a single wrapper."""
    shared = Address(street="Shared")
    first = Order(id=1, address=shared)
    second = Order(id=2, address=shared)
    orders = track_collection([first, second])
    assert orders[0].address is orders[1].address
    orders[0].address.city = "Paris"
    assert tracker_of(orders[1]).is_changed


def test_separate_track_calls_use_separate_graphs():
    shared = Address()
    first = track(Order(address=shared))
    second = track(Order(address=shared))
    assert first.address is not second.address


def test_source_holds_the_same_wrappers():
    """Test that the source list and the collection share item wrappers."""
    items = make_orders(3)
    originals = list(items)
    orders = track_collection(items)
    assert items[0] is orders[0]
    assert tracker_of(orders[0]).target is originals[0]


def test_resolve_or_create_discards_losing_wrapper(monkeypatch):
    """Test that a wrapper losing the registration race is discarded."""
    graph = IdentityGraph()
    target, winner = Node(), Wrapper()
    graph.register(target, winner)
    # Simulate a concurrent registration landing between resolve and register
    monkeypatch.setattr(graph, 'resolve', lambda t: None)
    discarded = []
    result = graph.resolve_or_create(target, lambda t: Wrapper(), discard=discarded.append)
    assert result is winner
    assert len(discarded) == 1 and discarded[0] is not winner


def test_duplicate_collection_drops_item_subscriptions(monkeypatch):
    from changetracking.config import get_default_settings
    from changetracking.factory import wrap_collection

    graph = IdentityGraph()
    source = make_orders(2)
    winner = wrap_collection(source, Order, get_default_settings(), graph)
    created = []
    original_release = type(winner)._release

    def record_release(collection):
        created.append(collection)
        original_release(collection)

    monkeypatch.setattr(graph, 'resolve', lambda t: None)
    monkeypatch.setattr(type(winner), '_release', record_release)
    assert wrap_collection(source, Order, get_default_settings(), graph) is winner

    loser = created[0]
    events = []
    loser.on_collection_changed(events.append)
    winner[0].customer_number = "Changed"
    assert events == []
    assert loser._item_handlers == {}
