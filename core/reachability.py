"""
ARBOR GRAPH REACHABILITY - The Transitive Closure Table

A directed graph (cycles allowed, not tree-shaped) plus a precomputed table
answering "can I get from A to B, and how?" for every ordered pair:

    (depart, arrive) -> ReachabilityEntry(hops, path)

Absence of an entry means "not reachable"; a disconnected graph is not an
error.

State Machine:
    STALE ──rebuild()──> BUILDING ──publish──> READY
      ^                                          │
      └──────────── any mutation ────────────────┘

  - Every mutation marks the table STALE and bumps a generation counter.
  - rebuild() snapshots the graph under the shared lock, computes the table
    with no lock held, then publishes it under the exclusive lock only if
    the generation is unchanged. Readers see the whole old table or the
    whole new one. Rebuilding a READY table leaves it READY throughout.
  - Queries against a table that is not READY either raise NotBuiltError
    ("raise" policy) or wait for / trigger a rebuild ("block" policy).

Tie-break (shortest paths are not unique):
    BFS from each depart; departs in node insertion order, out-edges in edge
    insertion order. The first shortest path discovered is kept.
"""
import itertools
import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import polars as pl
import rustworkx as rx

from core.errors import (
    DuplicateEdgeError,
    DuplicateNodeError,
    EdgeNotFoundError,
    NodeNotFoundError,
    NotBuiltError,
    SelfLoopNotSupportedError,
)
from core.schemas import (
    GraphEdge,
    NodeId,
    ReachabilityEntry,
    deserialize_edges,
    serialize_edges,
    serialize_entries,
    validate_node_id,
)
from infrastructure.config import ArborConfig, AUTO_REBUILD_MODES, STALE_POLICIES, load_config
from infrastructure.event_bus import EventBus, EventType, get_event_bus
from infrastructure.logger import MutationLogger, get_mutation_logger
from infrastructure.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

Adjacency = Dict[NodeId, List[NodeId]]
Table = Dict[Tuple[NodeId, NodeId], ReachabilityEntry]


class ReachabilityState(str, Enum):
    """Lifecycle of the reachability table."""
    STALE = "stale"
    BUILDING = "building"
    READY = "ready"


# =============================================================================
# TABLE COMPUTATION
# =============================================================================

def compute_reachability(nodes: Sequence[NodeId], adjacency: Adjacency) -> Table:
    """
    All-pairs minimum-hop reachability by BFS from every node.

    O(V * (V + E)) time. A node that lies on a cycle reaches itself; that
    entry has depart == arrive and hops >= 2.

    Args:
        nodes: Departure order
        adjacency: depart -> successors, in the order they are explored

    Returns:
        (depart, arrive) -> ReachabilityEntry, grouped by depart in
        discovery order
    """
    table: Table = {}

    for depart in nodes:
        paths: Dict[NodeId, Tuple[NodeId, ...]] = {depart: (depart,)}
        queue = deque([depart])

        while queue:
            current = queue.popleft()
            base = paths[current]
            for nxt in adjacency.get(current, ()):
                if nxt == depart:
                    # First return to the start is the shortest cycle through it
                    if (depart, depart) not in table:
                        table[(depart, depart)] = ReachabilityEntry(
                            depart=depart, arrive=depart, hops=len(base), path=base + (depart,)
                        )
                    continue
                if nxt in paths:
                    continue
                path = base + (nxt,)
                paths[nxt] = path
                table[(depart, nxt)] = ReachabilityEntry(
                    depart=depart, arrive=nxt, hops=len(path) - 1, path=path
                )
                queue.append(nxt)

    return table


# =============================================================================
# GRAPH REACHABILITY
# =============================================================================

class GraphReachability:
    """
    Directed graph with a rebuildable reachability table.

    Usage:
        graph = GraphReachability()
        graph.add_edge("A", "B", create_nodes=True)
        graph.add_edge("B", "C", create_nodes=True)
        graph.rebuild()

        entry = graph.query("A", "C")   # hops=2, path=("A", "B", "C")
        graph.query("C", "A")           # None

    Thread Safety:
        Mutations and the table swap take the exclusive lock; queries and
        rebuild snapshots take the shared lock. The table computation
        itself runs with no lock held, so mutations may proceed while a
        background rebuild is computing (its result is then discarded).
    """

    SOURCE = "reachability"

    def __init__(
        self,
        config: Optional[ArborConfig] = None,
        stale_policy: Optional[str] = None,
        auto_rebuild: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Initialize an empty graph. Its (empty) table starts READY.

        Args:
            config: Engine configuration (default: config/arbor.toml)
            stale_policy: "raise" or "block", overrides the config
            auto_rebuild: "off", "sync" or "background", overrides the config
            event_bus: Where mutation events go (default: global bus)
        """
        self.config = config or load_config()
        self.stale_policy = stale_policy or self.config.reachability.stale_policy
        self.auto_rebuild = auto_rebuild or self.config.reachability.auto_rebuild

        if self.stale_policy not in STALE_POLICIES:
            raise ValueError(f"stale_policy must be one of {STALE_POLICIES}, got {self.stale_policy!r}")
        if self.auto_rebuild not in AUTO_REBUILD_MODES:
            raise ValueError(f"auto_rebuild must be one of {AUTO_REBUILD_MODES}, got {self.auto_rebuild!r}")

        self._lock = ReadWriteLock()
        self._state_cond = threading.Condition()
        self._event_bus = event_bus if event_bus is not None else get_event_bus()

        self.mutation_log: Optional[MutationLogger] = None
        if self.config.logging.mutation_log:
            self.mutation_log = get_mutation_logger(self._event_bus, self.config.logging.to_logger_config())

        # Graph: node payload = id, edge payload = insertion sequence number
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)
        self._node_map: Dict[NodeId, int] = {}    # insertion ordered
        self._inv_map: Dict[int, NodeId] = {}
        self._edge_seq = itertools.count()

        # Published table
        self._table: Table = {}
        self._by_depart: Dict[NodeId, List[ReachabilityEntry]] = {}
        self._by_arrive: Dict[NodeId, List[ReachabilityEntry]] = {}

        self._generation = 0
        self._state = ReachabilityState.READY
        self._building_generation: Optional[int] = None

    # =========================================================================
    # CONSTRUCTION HELPERS
    # =========================================================================

    @classmethod
    def from_edges(cls, edges: Sequence[Tuple[NodeId, NodeId]], build: bool = True, **kwargs) -> "GraphReachability":
        """Build a graph from (depart, arrive) pairs, creating nodes as needed."""
        graph = cls(**kwargs)
        for depart, arrive in edges:
            graph._load_edge(depart, arrive)
        if build:
            graph.rebuild()
        return graph

    @classmethod
    def from_json(cls, data: bytes, **kwargs) -> "GraphReachability":
        """Rebuild a graph from to_json() output."""
        return cls.from_edges([(e.depart, e.arrive) for e in deserialize_edges(data)], **kwargs)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def state(self) -> ReachabilityState:
        with self._state_cond:
            return self._state

    @property
    def generation(self) -> int:
        """Incremented by every successful mutation."""
        with self._lock.read_locked():
            return self._generation

    @property
    def node_count(self) -> int:
        with self._lock.read_locked():
            return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        with self._lock.read_locked():
            return self._graph.num_edges()

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def add_node(self, node_id: NodeId) -> None:
        """
        Add an isolated node.

        Raises:
            InvalidNodeIdError: If the id is not an int or non-empty str
            DuplicateNodeError: If the node exists
        """
        validate_node_id(node_id, delimiter="")
        with self._lock.write_locked():
            if node_id in self._node_map:
                raise DuplicateNodeError(node_id)
            self._insert_node(node_id)
            self._mark_stale()

        self._after_mutation(EventType.GRAPH_NODE_ADDED, {"node_id": node_id})

    def remove_node(self, node_id: NodeId) -> List[GraphEdge]:
        """
        Remove a node and every edge touching it.

        Returns:
            The removed edges
        """
        with self._lock.write_locked():
            idx = self._require(node_id)
            dropped = [
                GraphEdge(depart=self._inv_map[s], arrive=self._inv_map[t])
                for s, t, _ in sorted(
                    list(self._graph.in_edges(idx)) + list(self._graph.out_edges(idx)),
                    key=lambda e: e[2],
                )
            ]
            self._graph.remove_node(idx)
            del self._node_map[node_id]
            del self._inv_map[idx]
            self._mark_stale()

        self._after_mutation(EventType.GRAPH_NODE_REMOVED, {
            "node_id": node_id,
            "edges_removed": len(dropped),
        })
        return dropped

    def add_edge(self, depart: NodeId, arrive: NodeId, create_nodes: bool = False) -> GraphEdge:
        """
        Add a directed edge depart -> arrive.

        Args:
            create_nodes: Add missing endpoints instead of raising

        Raises:
            NodeNotFoundError: If an endpoint is missing and create_nodes is False
            SelfLoopNotSupportedError: If depart == arrive
            DuplicateEdgeError: If the edge already exists
        """
        if depart == arrive:
            raise SelfLoopNotSupportedError(depart)
        if create_nodes:
            validate_node_id(depart, delimiter="")
            validate_node_id(arrive, delimiter="")

        with self._lock.write_locked():
            if not create_nodes:
                self._require(depart)
                self._require(arrive)
            d_idx = self._node_map.get(depart)
            a_idx = self._node_map.get(arrive)
            if d_idx is not None and a_idx is not None and self._graph.has_edge(d_idx, a_idx):
                raise DuplicateEdgeError(depart, arrive)

            if d_idx is None:
                d_idx = self._insert_node(depart)
            if a_idx is None:
                a_idx = self._insert_node(arrive)
            self._graph.add_edge(d_idx, a_idx, next(self._edge_seq))
            self._mark_stale()

        self._after_mutation(EventType.EDGE_ADDED, {"depart": depart, "arrive": arrive})
        return GraphEdge(depart=depart, arrive=arrive)

    def remove_edge(self, depart: NodeId, arrive: NodeId) -> None:
        """
        Remove the edge depart -> arrive.

        Raises:
            EdgeNotFoundError: If there is no such edge
        """
        with self._lock.write_locked():
            d_idx = self._node_map.get(depart)
            a_idx = self._node_map.get(arrive)
            if d_idx is None or a_idx is None or not self._graph.has_edge(d_idx, a_idx):
                raise EdgeNotFoundError(depart, arrive)
            self._graph.remove_edge(d_idx, a_idx)
            self._mark_stale()

        self._after_mutation(EventType.EDGE_REMOVED, {"depart": depart, "arrive": arrive})

    # =========================================================================
    # REBUILD
    # =========================================================================

    def rebuild(self) -> bool:
        """
        Recompute the whole table and publish it.

        Returns:
            True if the new table was published; False if the graph changed
            while it was being computed (the state is then left STALE)

        A READY table stays READY, and keeps answering queries, while an
        identical one is recomputed.
        """
        with self._lock.read_locked():
            generation = self._generation
            nodes, adjacency = self._snapshot()
            with self._state_cond:
                if self._state != ReachabilityState.READY:
                    self._state = ReachabilityState.BUILDING
                    self._building_generation = generation

        start = time.perf_counter()
        try:
            table = compute_reachability(nodes, adjacency)
        except Exception:
            self._abandon_build(generation)
            raise
        elapsed = time.perf_counter() - start

        with self._lock.write_locked():
            published = generation == self._generation
            if published:
                self._publish(table)
            with self._state_cond:
                if published:
                    self._state = ReachabilityState.READY
                else:
                    self._leave_building(generation)
                self._state_cond.notify_all()

        if not published:
            logger.debug(f"Discarded reachability table for generation {generation}: graph changed")
            return False

        logger.info(
            f"Reachability rebuilt: {len(nodes)} nodes, {len(table)} entries "
            f"in {elapsed * 1000:.1f}ms"
        )
        self._event_bus.emit(EventType.REACHABILITY_REBUILT, {
            "generation": generation,
            "entries": len(table),
            "duration_ms": round(elapsed * 1000, 3),
        }, self.SOURCE)
        return True

    def rebuild_in_background(self) -> threading.Thread:
        """Run rebuild() on a daemon worker thread and return the thread."""
        worker = threading.Thread(
            target=self._background_rebuild,
            name="ReachabilityRebuild",
            daemon=True,
        )
        worker.start()
        return worker

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the table is READY. Returns False on timeout."""
        with self._state_cond:
            return self._state_cond.wait_for(
                lambda: self._state == ReachabilityState.READY,
                timeout=timeout,
            )

    def _background_rebuild(self) -> None:
        try:
            self.rebuild()
        except Exception:
            logger.exception("Background reachability rebuild failed")

    def _abandon_build(self, generation: int) -> None:
        with self._state_cond:
            self._leave_building(generation)
            self._state_cond.notify_all()

    def _leave_building(self, generation: int) -> None:
        """Drop back to STALE if this build still owns the BUILDING state. Caller holds the condition."""
        if (
            self._state == ReachabilityState.BUILDING
            and self._building_generation == generation
        ):
            self._state = ReachabilityState.STALE

    # =========================================================================
    # QUERIES
    # =========================================================================

    def query(self, depart: NodeId, arrive: NodeId) -> Optional[ReachabilityEntry]:
        """
        Minimum-hop path from depart to arrive.

        Returns:
            The ReachabilityEntry, or None if arrive is not reachable

        Raises:
            NodeNotFoundError: If either node is missing
            NotBuiltError: If the table is not READY and stale_policy is "raise"
        """
        return self._read_table(lambda: self._lookup(depart, arrive), depart, arrive)

    def is_reachable(self, depart: NodeId, arrive: NodeId) -> bool:
        return self.query(depart, arrive) is not None

    def reachable_from(self, depart: NodeId) -> List[ReachabilityEntry]:
        """Every entry starting at depart, in discovery (BFS) order."""
        return self._read_table(lambda: list(self._by_depart.get(depart, ())), depart)

    def reaching(self, arrive: NodeId) -> List[ReachabilityEntry]:
        """Every entry ending at arrive, departs in node insertion order."""
        return self._read_table(lambda: list(self._by_arrive.get(arrive, ())), arrive)

    def entries(self) -> List[ReachabilityEntry]:
        """The whole table, grouped by depart."""
        return self._read_table(lambda: list(self._table.values()))

    def has_node(self, node_id: NodeId) -> bool:
        with self._lock.read_locked():
            return node_id in self._node_map

    def has_edge(self, depart: NodeId, arrive: NodeId) -> bool:
        with self._lock.read_locked():
            d_idx = self._node_map.get(depart)
            a_idx = self._node_map.get(arrive)
            return d_idx is not None and a_idx is not None and self._graph.has_edge(d_idx, a_idx)

    def nodes(self) -> List[NodeId]:
        """Node ids in insertion order."""
        with self._lock.read_locked():
            return list(self._node_map)

    def edges(self) -> List[GraphEdge]:
        """Edges in insertion order."""
        with self._lock.read_locked():
            return [
                GraphEdge(depart=self._inv_map[s], arrive=self._inv_map[t])
                for s, t, _ in sorted(self._graph.weighted_edge_list(), key=lambda e: e[2])
            ]

    def successors(self, node_id: NodeId) -> List[NodeId]:
        """Direct successors in edge insertion order."""
        with self._lock.read_locked():
            return self._ordered_successors(self._require(node_id))

    def live_descendants(self, node_id: NodeId) -> Set[NodeId]:
        """
        Nodes reachable from node_id, computed on the live graph.

        Ignores the table and its state; node_id itself is excluded even
        when it lies on a cycle.
        """
        with self._lock.read_locked():
            idx = self._require(node_id)
            return {self._inv_map[i] for i in rx.descendants(self._graph, idx)}

    def has_cycle(self) -> bool:
        with self._lock.read_locked():
            return not rx.is_directed_acyclic_graph(self._graph)

    # =========================================================================
    # EXPORT (Polars-Compatible)
    # =========================================================================

    def to_polars(self) -> pl.DataFrame:
        """
        Export the table, one row per reachable pair.

        Columns: depart, arrive, hops, path (list of ids).
        """
        entries = self.entries()
        if not entries:
            return pl.DataFrame({"depart": [], "arrive": [], "hops": [], "path": []})

        return pl.DataFrame({
            "depart": [e.depart for e in entries],
            "arrive": [e.arrive for e in entries],
            "hops": [e.hops for e in entries],
            "path": [list(e.path) for e in entries],
        })

    def to_json(self) -> bytes:
        """Serialize the edge list (the authoritative data) to JSON bytes."""
        return serialize_edges(self.edges())

    def table_to_json(self) -> bytes:
        """Serialize the published table to JSON bytes."""
        return serialize_entries(self.entries())

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def _read_table(self, read, *node_ids: NodeId) -> Any:
        """
        Run `read` against a READY table, applying the stale policy.

        Under "block", waits for a running build or starts one, then retries.
        """
        while True:
            with self._lock.read_locked():
                for node_id in node_ids:
                    self._require(node_id)
                with self._state_cond:
                    state = self._state
                if state == ReachabilityState.READY:
                    return read()

            if self.stale_policy == "raise":
                raise NotBuiltError(state.value)

            with self._state_cond:
                self._state_cond.wait_for(lambda: self._state != ReachabilityState.BUILDING)
                state = self._state
            if state == ReachabilityState.STALE:
                self.rebuild()

    def _lookup(self, depart: NodeId, arrive: NodeId) -> Optional[ReachabilityEntry]:
        return self._table.get((depart, arrive))

    def _publish(self, table: Table) -> None:
        """Swap in a computed table. Caller holds the write lock."""
        by_depart: Dict[NodeId, List[ReachabilityEntry]] = {}
        by_arrive: Dict[NodeId, List[ReachabilityEntry]] = {}
        for entry in table.values():
            by_depart.setdefault(entry.depart, []).append(entry)
            by_arrive.setdefault(entry.arrive, []).append(entry)

        self._table = table
        self._by_depart = by_depart
        self._by_arrive = by_arrive

    def _snapshot(self) -> Tuple[List[NodeId], Adjacency]:
        """Nodes and ordered successor lists. Caller holds a lock."""
        nodes = list(self._node_map)
        adjacency = {n: self._ordered_successors(idx) for n, idx in self._node_map.items()}
        return nodes, adjacency

    def _ordered_successors(self, idx: int) -> List[NodeId]:
        out = sorted(self._graph.out_edges(idx), key=lambda e: e[2])
        return [self._inv_map[t] for _, t, _ in out]

    def _insert_node(self, node_id: NodeId) -> int:
        idx = self._graph.add_node(node_id)
        self._node_map[node_id] = idx
        self._inv_map[idx] = node_id
        return idx

    def _load_edge(self, depart: NodeId, arrive: NodeId) -> None:
        """Bulk-load helper for from_edges: no events, no auto rebuild."""
        if depart == arrive:
            raise SelfLoopNotSupportedError(depart)
        validate_node_id(depart, delimiter="")
        validate_node_id(arrive, delimiter="")
        with self._lock.write_locked():
            d_idx = self._node_map.get(depart)
            if d_idx is None:
                d_idx = self._insert_node(depart)
            a_idx = self._node_map.get(arrive)
            if a_idx is None:
                a_idx = self._insert_node(arrive)
            if self._graph.has_edge(d_idx, a_idx):
                raise DuplicateEdgeError(depart, arrive)
            self._graph.add_edge(d_idx, a_idx, next(self._edge_seq))
            self._mark_stale()

    def _mark_stale(self) -> None:
        """Record a mutation. Caller holds the write lock."""
        self._generation += 1
        with self._state_cond:
            self._state = ReachabilityState.STALE
            self._state_cond.notify_all()

    def _after_mutation(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        """Publish the event, then apply auto_rebuild. No lock held."""
        self._event_bus.emit(event_type, payload, self.SOURCE)
        if self.auto_rebuild == "sync":
            self.rebuild()
        elif self.auto_rebuild == "background":
            self.rebuild_in_background()

    def _require(self, node_id: NodeId) -> int:
        idx = self._node_map.get(node_id)
        if idx is None:
            raise NodeNotFoundError(node_id)
        return idx

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: NodeId) -> bool:
        return self.has_node(node_id)

    def __repr__(self) -> str:
        return (
            f"GraphReachability(nodes={self.node_count}, edges={self.edge_count}, "
            f"state={self.state.value})"
        )
