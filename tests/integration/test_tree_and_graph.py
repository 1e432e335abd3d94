"""
Integration tests: stores, event bus, mutation logger and concurrency

Tests the components wired together:
- TreeStore and GraphReachability publishing to one bus
- MutationLogger recording what both stores did
- Readers never observing a half-applied mutation
"""
import random
import threading

import pytest

from core.errors import CycleError
from core.reachability import GraphReachability, ReachabilityState
from core.tree_store import TreeStore
from infrastructure.config import ArborConfig
from infrastructure.event_bus import EventType, get_event_bus
from infrastructure.logger import MutationLogger


# =============================================================================
# AUDIT TRAIL
# =============================================================================

def test_mutation_logger_records_both_stores(event_bus, arbor_config):
    mutation_log = MutationLogger()
    mutation_log.attach(event_bus)

    store = TreeStore(config=arbor_config, event_bus=event_bus)
    graph = GraphReachability(config=arbor_config, event_bus=event_bus)

    store.insert(1)
    store.insert(2, 1)
    store.reparent(2, None)
    graph.add_edge(1, 2, create_nodes=True)
    graph.rebuild()

    types = [e.mutation_type for e in mutation_log.get_recent_events()]
    assert types == [
        "node_inserted",
        "node_inserted",
        "node_moved",
        "edge_added",
        "reachability_rebuilt",
    ]
    assert [e.source for e in mutation_log.get_events_for_node(2)] == [
        "tree_store", "tree_store", "reachability",
    ]


def test_stores_default_to_global_bus():
    received = []
    get_event_bus().subscribe(EventType.NODE_INSERTED, received.append)

    TreeStore(config=ArborConfig()).insert("root")

    assert received[0].payload["node_id"] == "root"


def test_file_logging_from_config(tmp_path, event_bus):
    """
    Validate that [logging] mutation_log = true is enough to get a file log.

    Verifies:
    - Both stores attach one shared logger to their bus
    - Their events land in <log_path>/mutations_<date>.jsonl, once each
    """
    config = ArborConfig.from_dict({
        "logging": {"mutation_log": True, "log_path": str(tmp_path)},
    })

    store = TreeStore(config=config, event_bus=event_bus)
    graph = GraphReachability(config=config, event_bus=event_bus)
    assert store.mutation_log is graph.mutation_log

    with store.mutation_log as mutation_log:
        store.insert_many([(1, None), (2, 1)])
        graph.add_edge(1, 2, create_nodes=True)

    files = list(tmp_path.glob("mutations_*.jsonl"))
    assert len(files) == 1
    events = mutation_log.read_log(files[0].stem.removeprefix("mutations_"))
    assert [e.mutation_type for e in events] == ["tree_loaded", "edge_added"]


def test_no_mutation_log_by_default(event_bus, arbor_config):
    store = TreeStore(config=arbor_config, event_bus=event_bus)

    assert store.mutation_log is None
    assert event_bus.subscriber_count() == 0


# =============================================================================
# TREE AS GRAPH
# =============================================================================

def test_tree_edges_reachability_matches_descendants(article_store, arbor_config, event_bus):
    """
    A tree is a graph too: loading its parent -> child edges into
    GraphReachability must reproduce descendants_of and depth differences.
    """
    graph = GraphReachability(config=arbor_config, event_bus=event_bus)
    for row in article_store.rows():
        graph.add_node(row.id)
    for row in article_store.rows():
        if row.parent is not None:
            graph.add_edge(row.parent, row.id)
    graph.rebuild()

    for row in article_store.rows():
        reached = [e.arrive for e in graph.reachable_from(row.id)]
        assert sorted(reached) == sorted(article_store.descendants_of(row.id))
        for arrive in reached:
            entry = graph.query(row.id, arrive)
            assert entry.hops == article_store.depth_of(arrive) - row.depth
            assert list(entry.path) == article_store.path_of(arrive)[row.depth - 1:]


# =============================================================================
# CONCURRENCY
# =============================================================================

def test_readers_see_consistent_tree_during_moves(arbor_config, event_bus):
    """
    Readers running alongside a writer always see views that agree.

    Every snapshot read under the shared lock must validate; a reader that
    saw intervals from one version and breadcrumbs from another would fail.
    """
    rng = random.Random(7)
    store = TreeStore(config=arbor_config, event_bus=event_bus)
    store.insert_many([(n, None if n == 1 else rng.randint(1, n - 1)) for n in range(1, 80)])

    stop = threading.Event()
    failures = []

    def reader():
        while not stop.is_set():
            report = store.validate()
            if not report.valid:
                failures.append(report.violations)
            node_id = rng.randint(1, 79)
            if store.descendants_of(node_id) != store.descendants_by_breadcrumb(node_id):
                # The two reads may straddle a move; re-check under a stable version
                version = store.version
                a = store.descendants_of(node_id)
                b = store.descendants_by_breadcrumb(node_id)
                if store.version == version and a != b:
                    failures.append((node_id, a, b))

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()

    writer_rng = random.Random(11)
    for _ in range(200):
        try:
            store.reparent(writer_rng.randint(2, 79), writer_rng.randint(1, 79))
        except CycleError:
            pass

    stop.set()
    for thread in readers:
        thread.join(timeout=10)

    assert failures == []
    assert store.validate().valid


def test_queries_during_background_rebuilds(arbor_config, event_bus):
    """
    With background auto-rebuild and the "block" policy, queries issued while
    edges are being added always get an answer that matches the final graph
    once mutations stop.
    """
    graph = GraphReachability(
        config=arbor_config,
        stale_policy="block",
        auto_rebuild="background",
        event_bus=event_bus,
    )
    chain = [f"n{i}" for i in range(30)]
    errors = []

    def querier():
        for _ in range(50):
            try:
                graph.query(chain[0], chain[0])
            except Exception as e:
                errors.append(e)

    graph.add_node(chain[0])
    thread = threading.Thread(target=querier)
    thread.start()
    for depart, arrive in zip(chain, chain[1:]):
        graph.add_edge(depart, arrive, create_nodes=True)
    thread.join(timeout=30)

    assert errors == []
    assert graph.wait_until_ready(timeout=10)
    entry = graph.query(chain[0], chain[-1])
    assert entry.hops == len(chain) - 1
    assert graph.state == ReachabilityState.READY


@pytest.mark.parametrize("policy", ["raise", "block"])
def test_concurrent_reads_of_ready_table(policy, arbor_config, event_bus):
    graph = GraphReachability.from_edges(
        [(i, i + 1) for i in range(50)],
        config=arbor_config,
        stale_policy=policy,
        event_bus=event_bus,
    )
    results = []

    def reader():
        results.append(all(graph.query(0, n).hops == n for n in range(1, 51)))

    threads = [threading.Thread(target=reader) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert results == [True] * 8
