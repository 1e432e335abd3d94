"""
ARBOR CORE - Central exports for the hierarchy engine.

This module provides access to:
- TreeStore: one hierarchy kept as adjacency list, breadcrumbs and nested sets
- BreadcrumbIndexer / NestedSetIndexer: the derived-view builders
- GraphReachability: directed graph with a shortest-hop reachability table
- TreeInvariants: validation of the derived views
- The exception taxonomy rooted at HierarchyError
"""

from core.schemas import (
    NodeId,
    TreeNode,
    TreeRow,
    NestedSetBounds,
    GraphEdge,
    ReachabilityEntry,
)
from core.errors import (
    HierarchyError,
    NodeNotFoundError,
    DuplicateNodeError,
    InvalidNodeIdError,
    TreeError,
    DanglingParentError,
    CycleError,
    NoRootError,
    HasChildrenError,
    CycleOrOrphanError,
    TreeInvariantError,
    ReachabilityError,
    EdgeNotFoundError,
    DuplicateEdgeError,
    SelfLoopNotSupportedError,
    NotBuiltError,
)
from core.breadcrumb_indexer import BreadcrumbIndexer
from core.nested_set_indexer import NestedSetIndexer
from core.tree_invariants import TreeInvariants, InvariantReport
from core.tree_store import TreeStore
from core.reachability import GraphReachability, ReachabilityState, compute_reachability

__all__ = [
    # Records
    "NodeId",
    "TreeNode",
    "TreeRow",
    "NestedSetBounds",
    "GraphEdge",
    "ReachabilityEntry",
    # Errors
    "HierarchyError",
    "NodeNotFoundError",
    "DuplicateNodeError",
    "InvalidNodeIdError",
    "TreeError",
    "DanglingParentError",
    "CycleError",
    "NoRootError",
    "HasChildrenError",
    "CycleOrOrphanError",
    "TreeInvariantError",
    "ReachabilityError",
    "EdgeNotFoundError",
    "DuplicateEdgeError",
    "SelfLoopNotSupportedError",
    "NotBuiltError",
    # Tree
    "BreadcrumbIndexer",
    "NestedSetIndexer",
    "TreeInvariants",
    "InvariantReport",
    "TreeStore",
    # Graph
    "GraphReachability",
    "ReachabilityState",
    "compute_reachability",
]
