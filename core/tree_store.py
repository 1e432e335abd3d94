"""
ARBOR TREE STORE - One Hierarchy, Three Representations

The TreeStore keeps a single hierarchy under three mutually consistent
representations and answers queries from whichever is cheapest:

  Adjacency list (authoritative)
  - parent pointers, stored on a rustworkx PyDiGraph (parent -> child)
  - bridge maps: id -> rustworkx index, index -> id

  Breadcrumbs (derived)
  - ancestor path per node, "1/2/4"
  - a move rewrites only the moved subtree

  Nested sets (derived)
  - (left, right) interval per node
  - any structural change renumbers the whole tree
  - a left-sorted index answers descendant queries in O(log n + k)

Mutation Protocol (all-or-nothing):
  1. Validate against current state (no writes)
  2. Derive the new parent/children maps and every derived view into
     fresh dicts
  3. Swap them in and patch the rustworkx graph
  4. Publish an event after the write lock is released

Concurrency:
  Readers share a ReadWriteLock; mutations hold it exclusively, so a
  reader never sees intervals from one version and paths from another.
"""
import logging
from bisect import bisect_left, bisect_right
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import polars as pl
import rustworkx as rx

from core.adjacency import ChildrenMap, build_children, compute_depths, find_roots, iter_subtree
from core.breadcrumb_indexer import BreadcrumbIndexer, Path as NodePath
from core.errors import (
    CycleError,
    DanglingParentError,
    DuplicateNodeError,
    HasChildrenError,
    NoRootError,
    NodeNotFoundError,
)
from core.nested_set_indexer import NestedSetIndexer
from core.schemas import (
    NestedSetBounds,
    NodeId,
    TreeNode,
    TreeRow,
    deserialize_rows,
    id_sort_key,
    serialize_rows,
    validate_node_id,
)
from core.tree_invariants import IncrementalValidator, InvariantReport, TreeInvariants
from infrastructure.config import ArborConfig, load_config
from infrastructure.event_bus import EventBus, EventType, get_event_bus
from infrastructure.logger import MutationLogger, get_mutation_logger
from infrastructure.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)


class TreeStore:
    """
    In-memory hierarchy with adjacency, breadcrumb and nested-set views.

    Usage:
        store = TreeStore()
        store.insert(1)
        store.insert(2, 1)
        store.insert(3, 1)

        store.breadcrumb_of(2)      # "1/2"
        store.bounds_of(1)          # NestedSetBounds(left=1, right=6)
        store.descendants_of(1)     # [2, 3]

        store.reparent(3, 2)
        store.breadcrumb_of(3)      # "1/2/3"

    Thread Safety:
        Queries run concurrently under a shared lock; mutations are
        exclusive. Event handlers run after the lock is released and may
        query the store.
    """

    SOURCE = "tree_store"

    def __init__(
        self,
        config: Optional[ArborConfig] = None,
        delimiter: Optional[str] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Initialize an empty tree.

        Args:
            config: Engine configuration (default: config/arbor.toml)
            delimiter: Breadcrumb delimiter, overrides config.tree.delimiter
            event_bus: Where mutation events go (default: global bus)
        """
        self.config = config or load_config()
        self.delimiter = delimiter or self.config.tree.delimiter

        self._breadcrumbs = BreadcrumbIndexer(self.delimiter)
        self._nested_sets = NestedSetIndexer()
        self._lock = ReadWriteLock()
        self._event_bus = event_bus if event_bus is not None else get_event_bus()

        self.mutation_log: Optional[MutationLogger] = None
        if self.config.logging.mutation_log:
            self.mutation_log = get_mutation_logger(self._event_bus, self.config.logging.to_logger_config())

        # Authoritative storage: parent -> child edges
        self._graph: rx.PyDiGraph = rx.PyDiGraph(multigraph=False)
        self._node_map: Dict[NodeId, int] = {}
        self._inv_map: Dict[int, NodeId] = {}

        # Plain-dict mirror of the adjacency list, fed to the indexers
        self._parents: Dict[NodeId, Optional[NodeId]] = {}
        self._children: ChildrenMap = {}

        # Derived views
        self._depths: Dict[NodeId, int] = {}
        self._paths: Dict[NodeId, NodePath] = {}
        self._crumbs: Dict[NodeId, str] = {}
        self._bounds: Dict[NodeId, NestedSetBounds] = {}

        # Nested-set index: ids in pre-order and their left values
        self._preorder: List[NodeId] = []
        self._lefts: List[int] = []

        # str(id) -> id; 1 and "1" would render the same breadcrumb
        self._id_texts: Dict[str, NodeId] = {}

        self._version = 0

    # =========================================================================
    # CONSTRUCTION HELPERS
    # =========================================================================

    @classmethod
    def from_pairs(cls, pairs: Iterable[Tuple[NodeId, Optional[NodeId]]], **kwargs) -> "TreeStore":
        """Build a store from (id, parent) pairs in any order."""
        store = cls(**kwargs)
        store.insert_many(pairs)
        return store

    @classmethod
    def from_polars(cls, frame: pl.DataFrame, **kwargs) -> "TreeStore":
        """
        Build a store from an adjacency-list frame.

        Args:
            frame: DataFrame with `id` and `parent` columns (null = root)
        """
        missing = {"id", "parent"} - set(frame.columns)
        if missing:
            raise ValueError(f"Adjacency frame is missing column(s): {sorted(missing)}")
        pairs = zip(frame["id"].to_list(), frame["parent"].to_list())
        return cls.from_pairs(pairs, **kwargs)

    @classmethod
    def from_json(cls, data: bytes, **kwargs) -> "TreeStore":
        """Rebuild a store from to_json() output. Derived columns are recomputed."""
        rows = deserialize_rows(data)
        return cls.from_pairs(((r.id, r.parent) for r in rows), **kwargs)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def node_count(self) -> int:
        with self._lock.read_locked():
            return len(self._parents)

    @property
    def is_empty(self) -> bool:
        return self.node_count == 0

    @property
    def version(self) -> int:
        """Incremented by every successful mutation."""
        with self._lock.read_locked():
            return self._version

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    def insert(self, node_id: NodeId, parent_id: Optional[NodeId] = None) -> TreeRow:
        """
        Add a node under `parent_id` (or as a new root).

        The new node's depth and breadcrumb are derived locally from its
        parent; the nested sets of the whole tree are renumbered.

        Args:
            node_id: New, unique id
            parent_id: Existing parent, or None for a root

        Returns:
            The new node's TreeRow

        Raises:
            InvalidNodeIdError: If the id is unusable
            DuplicateNodeError: If node_id, or an id with the same text
                (1 vs "1"), already exists
            DanglingParentError: If parent_id does not exist
        """
        validate_node_id(node_id, self.delimiter)

        with self._lock.write_locked():
            if str(node_id) in self._id_texts:
                raise DuplicateNodeError(node_id)
            if parent_id is not None and parent_id not in self._parents:
                raise DanglingParentError(node_id, parent_id)

            parents = dict(self._parents)
            parents[node_id] = parent_id
            children = self._copy_children()
            children[node_id] = []
            if parent_id is not None:
                self._attach_child(children, parent_id, node_id)

            path = (self._paths[parent_id] if parent_id is not None else ()) + (node_id,)
            bounds = self._nested_sets.build(parents, children)

            self._commit(
                parents, children, bounds,
                changed_paths={node_id: path},
            )
            idx = self._graph.add_node(TreeNode(id=node_id, parent=parent_id))
            self._node_map[node_id] = idx
            self._inv_map[idx] = node_id
            if parent_id is not None:
                self._graph.add_edge(self._node_map[parent_id], idx, None)

            row = self._row(node_id)

        logger.debug(f"Inserted {node_id!r} under {parent_id!r}")
        self._emit(EventType.NODE_INSERTED, {
            "node_id": node_id,
            "parent_id": parent_id,
            "depth": row.depth,
            "breadcrumb": row.breadcrumb,
        })
        return row

    def insert_many(self, pairs: Iterable[Tuple[NodeId, Optional[NodeId]]]) -> int:
        """
        Add many nodes in one mutation.

        Pairs may come in any order: a parent may be listed after its
        children, as long as it is listed somewhere (or already stored).
        Everything is derived once at the end.

        Returns:
            Number of nodes added

        Raises:
            InvalidNodeIdError: If an id is unusable
            DuplicateNodeError: If an id (or its text) repeats or already exists
            DanglingParentError: If a parent exists neither here nor in the batch
            CycleOrOrphanError: If the new parent pointers form a cycle
        """
        batch: Dict[NodeId, Optional[NodeId]] = {}
        texts = set()
        for node_id, parent_id in pairs:
            validate_node_id(node_id, self.delimiter)
            if str(node_id) in texts:
                raise DuplicateNodeError(node_id)
            texts.add(str(node_id))
            batch[node_id] = parent_id

        if not batch:
            return 0

        with self._lock.write_locked():
            for node_id in batch:
                if str(node_id) in self._id_texts:
                    raise DuplicateNodeError(node_id)

            parents = dict(self._parents)
            parents.update(batch)
            for node_id, parent_id in batch.items():
                if parent_id is not None and parent_id not in parents:
                    raise DanglingParentError(node_id, parent_id)

            children = build_children(parents)
            depths = compute_depths(parents, children)
            paths = self._breadcrumbs.build(parents, depths=depths)
            bounds = self._nested_sets.build(parents, children)

            self._commit(parents, children, bounds, all_paths=paths)

            ordered = sorted(batch, key=lambda n: (depths[n], id_sort_key(n)))
            indices = self._graph.add_nodes_from([TreeNode(id=n, parent=batch[n]) for n in ordered])
            for node_id, idx in zip(ordered, indices):
                self._node_map[node_id] = idx
                self._inv_map[idx] = node_id
            self._graph.add_edges_from([
                (self._node_map[batch[n]], self._node_map[n], None)
                for n in ordered if batch[n] is not None
            ])

        logger.debug(f"Loaded {len(batch)} nodes")
        self._emit(EventType.TREE_LOADED, {"count": len(batch)})
        return len(batch)

    def reparent(self, node_id: NodeId, new_parent_id: Optional[NodeId]) -> TreeRow:
        """
        Move a node (with its subtree) under a new parent.

        Breadcrumbs and depths of the moved subtree are rewritten; nested
        sets of the whole tree are renumbered. Moving a node to its current
        parent changes nothing.

        Args:
            node_id: Node to move
            new_parent_id: New parent, or None to promote node_id to a root

        Returns:
            The moved node's TreeRow

        Raises:
            NodeNotFoundError: If node_id does not exist
            DanglingParentError: If new_parent_id does not exist
            CycleError: If new_parent_id is node_id or one of its descendants
            NoRootError: If the move would leave the tree without a root
        """
        with self._lock.write_locked():
            if node_id not in self._parents:
                raise NodeNotFoundError(node_id)
            if new_parent_id is not None and new_parent_id not in self._parents:
                raise DanglingParentError(node_id, new_parent_id)

            old_parent_id = self._parents[node_id]
            if old_parent_id == new_parent_id:
                return self._row(node_id)

            idx = self._node_map[node_id]
            if new_parent_id is not None and IncrementalValidator.would_create_cycle(
                self._graph, idx, self._node_map[new_parent_id]
            ):
                raise CycleError(node_id, new_parent_id)

            parents = dict(self._parents)
            parents[node_id] = new_parent_id
            if not find_roots(parents):
                raise NoRootError(node_id)

            children = self._copy_children()
            if old_parent_id is not None:
                children[old_parent_id].remove(node_id)
            if new_parent_id is not None:
                self._attach_child(children, new_parent_id, node_id)

            parent_path = self._paths[new_parent_id] if new_parent_id is not None else ()
            moved = self._breadcrumbs.rebuild_subtree(children, node_id, parent_path)
            bounds = self._nested_sets.build(parents, children)

            self._commit(parents, children, bounds, changed_paths=moved)
            if old_parent_id is not None:
                self._graph.remove_edge(self._node_map[old_parent_id], idx)
            if new_parent_id is not None:
                self._graph.add_edge(self._node_map[new_parent_id], idx, None)
            self._graph[idx] = TreeNode(id=node_id, parent=new_parent_id)

            row = self._row(node_id)

        logger.debug(
            f"Moved {node_id!r} from {old_parent_id!r} to {new_parent_id!r} "
            f"({len(moved)} breadcrumb(s) rewritten)"
        )
        self._emit(EventType.NODE_MOVED, {
            "node_id": node_id,
            "old_parent_id": old_parent_id,
            "parent_id": new_parent_id,
            "subtree_size": len(moved),
        })
        return row

    def remove(self, node_id: NodeId, cascade: bool = False) -> List[NodeId]:
        """
        Delete a node, or with cascade=True its whole subtree.

        Remaining breadcrumbs are unaffected; nested sets are renumbered.

        Returns:
            Removed ids in pre-order

        Raises:
            NodeNotFoundError: If node_id does not exist
            HasChildrenError: If the node has children and cascade is False
        """
        with self._lock.write_locked():
            if node_id not in self._parents:
                raise NodeNotFoundError(node_id)
            kids = self._children[node_id]
            if kids and not cascade:
                raise HasChildrenError(node_id, kids)

            removed = list(iter_subtree(self._children, node_id))
            gone = set(removed)

            parents = {n: p for n, p in self._parents.items() if n not in gone}

            children = {n: list(c) for n, c in self._children.items() if n not in gone}
            parent_id = self._parents[node_id]
            if parent_id is not None:
                children[parent_id].remove(node_id)

            bounds = self._nested_sets.build(parents, children)

            self._commit(parents, children, bounds, removed=gone)
            self._graph.remove_nodes_from([self._node_map[n] for n in removed])
            for n in removed:
                del self._inv_map[self._node_map.pop(n)]

        logger.debug(f"Removed {len(removed)} node(s) starting at {node_id!r}")
        self._emit(EventType.NODE_REMOVED, {
            "node_id": node_id,
            "parent_id": parent_id,
            "removed": list(removed),
            "cascade": cascade,
        })
        return removed

    # =========================================================================
    # QUERIES
    # =========================================================================

    def has_node(self, node_id: NodeId) -> bool:
        with self._lock.read_locked():
            return node_id in self._parents

    def descendants_of(self, node_id: NodeId) -> List[NodeId]:
        """
        All descendants of a node, in pre-order.

        Nested-set containment: descendants are the nodes whose left lies
        strictly between the node's left and right. The left-sorted index
        makes that a bisection plus a slice.
        """
        with self._lock.read_locked():
            b = self._get_bounds(node_id)
            start = bisect_right(self._lefts, b.left)
            end = bisect_left(self._lefts, b.right)
            return self._preorder[start:end]

    def descendants_by_breadcrumb(self, node_id: NodeId) -> List[NodeId]:
        """Same set as descendants_of, found by breadcrumb prefix match."""
        with self._lock.read_locked():
            self._require(node_id)
            prefix = self._crumbs[node_id]
            return [
                n for n in self._preorder
                if self._breadcrumbs.is_prefix(prefix, self._crumbs[n])
            ]

    def ancestors_of(self, node_id: NodeId) -> List[NodeId]:
        """Ancestors from the root down to the parent."""
        with self._lock.read_locked():
            self._require(node_id)
            return list(self._paths[node_id][:-1])

    def is_ancestor(self, ancestor_id: NodeId, node_id: NodeId) -> bool:
        """True if ancestor_id is a proper ancestor of node_id."""
        with self._lock.read_locked():
            return self._get_bounds(ancestor_id).contains(self._get_bounds(node_id))

    def children_of(self, node_id: NodeId) -> List[NodeId]:
        """Direct children, ascending by id."""
        with self._lock.read_locked():
            self._require(node_id)
            return list(self._children[node_id])

    def parent_of(self, node_id: NodeId) -> Optional[NodeId]:
        with self._lock.read_locked():
            self._require(node_id)
            return self._parents[node_id]

    def depth_of(self, node_id: NodeId) -> int:
        with self._lock.read_locked():
            self._require(node_id)
            return self._depths[node_id]

    def breadcrumb_of(self, node_id: NodeId) -> str:
        with self._lock.read_locked():
            self._require(node_id)
            return self._crumbs[node_id]

    def path_of(self, node_id: NodeId) -> List[NodeId]:
        """Ancestor ids from the root down to the node itself."""
        with self._lock.read_locked():
            self._require(node_id)
            return list(self._paths[node_id])

    def bounds_of(self, node_id: NodeId) -> NestedSetBounds:
        with self._lock.read_locked():
            return self._get_bounds(node_id)

    def subtree_size(self, node_id: NodeId) -> int:
        """Node count of the subtree rooted here, the node included."""
        with self._lock.read_locked():
            return self._get_bounds(node_id).subtree_size

    def roots(self) -> List[NodeId]:
        with self._lock.read_locked():
            return find_roots(self._parents)

    def leaves(self) -> List[NodeId]:
        """Nodes without children, in pre-order."""
        with self._lock.read_locked():
            return [n for n in self._preorder if self._bounds[n].is_leaf]

    def row(self, node_id: NodeId) -> TreeRow:
        with self._lock.read_locked():
            self._require(node_id)
            return self._row(node_id)

    def rows(self) -> List[TreeRow]:
        """Every node's TreeRow, in pre-order."""
        with self._lock.read_locked():
            return [self._row(n) for n in self._preorder]

    def validate(self, raise_on_error: bool = False) -> InvariantReport:
        """Check every derived view against the parent pointers."""
        with self._lock.read_locked():
            return TreeInvariants.validate_all(
                self._parents,
                self._depths,
                self._crumbs,
                self._bounds,
                delimiter=self.delimiter,
                graph=self._graph,
                raise_on_error=raise_on_error,
            )

    # =========================================================================
    # EXPORT (Polars-Compatible)
    # =========================================================================

    def to_polars(self) -> pl.DataFrame:
        """
        Export the tree as one row per node, in pre-order.

        Columns: id, parent, depth, breadcrumb, lft, rgt. Ids must share
        one type (all int or all str) to fit a single column.
        """
        rows = self.rows()
        if not rows:
            return pl.DataFrame({
                "id": [],
                "parent": [],
                "depth": [],
                "breadcrumb": [],
                "lft": [],
                "rgt": [],
            })

        return pl.DataFrame({
            "id": [r.id for r in rows],
            "parent": [r.parent for r in rows],
            "depth": [r.depth for r in rows],
            "breadcrumb": [r.breadcrumb for r in rows],
            "lft": [r.left for r in rows],
            "rgt": [r.right for r in rows],
        })

    def save_parquet(self, path: Path) -> None:
        """Save the tree table to a parquet file."""
        self.to_polars().write_parquet(Path(path))

    def to_json(self) -> bytes:
        """Serialize every row (pre-order) to JSON bytes."""
        return serialize_rows(self.rows())

    # =========================================================================
    # INTERNAL UTILITIES
    # =========================================================================

    def _commit(
        self,
        parents: Dict[NodeId, Optional[NodeId]],
        children: ChildrenMap,
        bounds: Dict[NodeId, NestedSetBounds],
        changed_paths: Optional[Dict[NodeId, NodePath]] = None,
        all_paths: Optional[Dict[NodeId, NodePath]] = None,
        removed: Optional[set] = None,
    ) -> None:
        """Swap in a fully derived new state. Caller holds the write lock."""
        if all_paths is not None:
            paths = all_paths
            crumbs = self._breadcrumbs.breadcrumbs(paths)
        else:
            paths = dict(self._paths)
            crumbs = dict(self._crumbs)
            for n in removed or ():
                del paths[n]
                del crumbs[n]
            for n, path in (changed_paths or {}).items():
                paths[n] = path
                crumbs[n] = self._breadcrumbs.breadcrumb(path)

        preorder = sorted(bounds, key=lambda n: bounds[n].left)

        self._parents = parents
        self._children = children
        self._paths = paths
        self._crumbs = crumbs
        self._depths = {n: len(path) for n, path in paths.items()}
        self._bounds = bounds
        self._preorder = preorder
        self._lefts = [bounds[n].left for n in preorder]
        self._id_texts = {str(n): n for n in parents}
        self._version += 1

    def _copy_children(self) -> ChildrenMap:
        return {n: list(c) for n, c in self._children.items()}

    @staticmethod
    def _attach_child(children: ChildrenMap, parent_id: NodeId, node_id: NodeId) -> None:
        kids = children[parent_id]
        kids.append(node_id)
        kids.sort(key=id_sort_key)

    def _require(self, node_id: NodeId) -> None:
        if node_id not in self._parents:
            raise NodeNotFoundError(node_id)

    def _get_bounds(self, node_id: NodeId) -> NestedSetBounds:
        self._require(node_id)
        return self._bounds[node_id]

    def _row(self, node_id: NodeId) -> TreeRow:
        b = self._bounds[node_id]
        return TreeRow(
            id=node_id,
            parent=self._parents[node_id],
            depth=self._depths[node_id],
            breadcrumb=self._crumbs[node_id],
            path=list(self._paths[node_id]),
            left=b.left,
            right=b.right,
        )

    def _emit(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self._event_bus.emit(event_type, payload, self.SOURCE)

    def __len__(self) -> int:
        return self.node_count

    def __contains__(self, node_id: NodeId) -> bool:
        return self.has_node(node_id)

    def __repr__(self) -> str:
        return f"TreeStore(nodes={self.node_count}, roots={len(self.roots())})"
