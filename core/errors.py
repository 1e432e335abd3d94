"""
ARBOR ERRORS - The Exception Taxonomy

Every failure in the hierarchy engine is a local validation failure raised
synchronously to the caller of the offending operation. Nothing is retried.

Hierarchy:
  HierarchyError
  - NodeNotFoundError, DuplicateNodeError, InvalidNodeIdError
  - TreeError
      DanglingParentError, CycleError, NoRootError, HasChildrenError,
      CycleOrOrphanError, TreeInvariantError
  - ReachabilityError
      EdgeNotFoundError, DuplicateEdgeError, SelfLoopNotSupportedError,
      NotBuiltError
"""
from typing import Any, Iterable, List


class HierarchyError(Exception):
    """Base exception for all hierarchy operations."""
    pass


class NodeNotFoundError(HierarchyError):
    """Raised when a node id is not in the structure."""
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Node not found: {node_id!r}")


class DuplicateNodeError(HierarchyError):
    """Raised when attempting to add a node with an existing id."""
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Node already exists: {node_id!r}")


class InvalidNodeIdError(HierarchyError, ValueError):
    """Raised when an id is of the wrong type or collides with the delimiter."""
    def __init__(self, node_id: Any, reason: str):
        self.node_id = node_id
        self.reason = reason
        super().__init__(f"Invalid node id {node_id!r}: {reason}")


# =============================================================================
# TREE ERRORS
# =============================================================================

class TreeError(HierarchyError):
    """Base exception for tree mutations and derivations."""
    pass


class DanglingParentError(TreeError):
    """Raised when a node references a parent that does not exist."""
    def __init__(self, node_id: Any, parent_id: Any):
        self.node_id = node_id
        self.parent_id = parent_id
        super().__init__(
            f"Parent {parent_id!r} of node {node_id!r} does not exist"
        )


class CycleError(TreeError):
    """Raised when a mutation would make a node its own ancestor."""
    def __init__(self, node_id: Any, parent_id: Any):
        self.node_id = node_id
        self.parent_id = parent_id
        super().__init__(
            f"Cannot move {node_id!r} under {parent_id!r}: "
            f"{parent_id!r} is {node_id!r} or one of its descendants"
        )


class NoRootError(TreeError):
    """Raised when a mutation would leave a non-empty tree without roots."""
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(
            f"Mutation of {node_id!r} would leave the tree with no root"
        )


class HasChildrenError(TreeError):
    """Raised when deleting a node with children without cascade."""
    def __init__(self, node_id: Any, children: Iterable[Any]):
        self.node_id = node_id
        self.children: List[Any] = list(children)
        super().__init__(
            f"Node {node_id!r} has {len(self.children)} child(ren); "
            f"pass cascade=True to remove the subtree"
        )


class CycleOrOrphanError(TreeError):
    """
    Raised when the depth pass cannot resolve every node.

    The unresolved nodes either sit on a parent cycle or hang off a
    parent that exists nowhere in the input.
    """
    def __init__(self, unresolved: Iterable[Any]):
        self.unresolved: List[Any] = list(unresolved)
        preview = ", ".join(repr(n) for n in self.unresolved[:10])
        super().__init__(
            f"{len(self.unresolved)} node(s) not connected to any root: {preview}"
        )


class TreeInvariantError(TreeError):
    """Raised when a derived representation violates its invariants."""
    pass


# =============================================================================
# REACHABILITY ERRORS
# =============================================================================

class ReachabilityError(HierarchyError):
    """Base exception for the directed graph and its reachability table."""
    pass


class EdgeNotFoundError(ReachabilityError):
    """Raised when an edge is not in the graph."""
    def __init__(self, depart: Any, arrive: Any):
        self.depart = depart
        self.arrive = arrive
        super().__init__(f"Edge not found: {depart!r} -> {arrive!r}")


class DuplicateEdgeError(ReachabilityError):
    """Raised when an edge between the same ordered pair already exists."""
    def __init__(self, depart: Any, arrive: Any):
        self.depart = depart
        self.arrive = arrive
        super().__init__(f"Edge already exists: {depart!r} -> {arrive!r}")


class SelfLoopNotSupportedError(ReachabilityError):
    """Raised when an edge departs from and arrives at the same node."""
    def __init__(self, node_id: Any):
        self.node_id = node_id
        super().__init__(f"Self-loop edges are not supported: {node_id!r}")


class NotBuiltError(ReachabilityError):
    """Raised when querying a reachability table that is not READY."""
    def __init__(self, state: str):
        self.state = state
        super().__init__(
            f"Reachability table is {state}; call rebuild() before querying"
        )
