"""
ARBOR SCHEMAS - The Shapes That Flow Through the Engine

This module defines the data structures shared by the tree and graph layers:
- TreeNode: the authoritative adjacency-list record (id + parent pointer)
- NestedSetBounds: the (left, right) interval of a node
- TreeRow: every derived view of a node in one record
- GraphEdge: a directed edge of the reachability graph
- ReachabilityEntry: the minimum-hop path between two nodes
- Id validation and deterministic ordering helpers
- Serialization helpers for persistence and IPC

Design Principles:
1. STRICT TYPING: msgspec.Struct, ids are int or str and nothing else
2. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
3. IMMUTABLE IDS: Node ids are set once and never change
4. DETERMINISM: one total order over ids drives every traversal
"""
import msgspec
from typing import Any, Iterable, List, Optional, Tuple, Union


NodeId = Union[int, str]

DEFAULT_DELIMITER = "/"


# =============================================================================
# ID HELPERS
# =============================================================================

def validate_node_id(node_id: Any, delimiter: str = DEFAULT_DELIMITER) -> NodeId:
    """
    Check that a value can serve as a node id.

    Ids must be ints or non-empty strings, and their string form must not
    contain the breadcrumb delimiter (otherwise breadcrumbs stop being
    unambiguous).

    Returns:
        The id unchanged

    Raises:
        InvalidNodeIdError: If the id is unusable
    """
    from core.errors import InvalidNodeIdError

    # bool is an int subclass but True/1 would collide as dict keys
    if isinstance(node_id, bool) or not isinstance(node_id, (int, str)):
        raise InvalidNodeIdError(node_id, "ids must be int or str")
    text = str(node_id)
    if not text:
        raise InvalidNodeIdError(node_id, "ids must not be empty")
    if delimiter and delimiter in text:
        raise InvalidNodeIdError(node_id, f"ids must not contain {delimiter!r}")
    return node_id


def id_sort_key(node_id: NodeId) -> Tuple[int, Any]:
    """Total order over ids: ints numerically first, then strings."""
    if isinstance(node_id, int):
        return (0, node_id)
    return (1, node_id)


def sorted_ids(ids: Iterable[NodeId]) -> List[NodeId]:
    """Return ids in ascending deterministic order."""
    return sorted(ids, key=id_sort_key)


def format_breadcrumb(path: Iterable[NodeId], delimiter: str = DEFAULT_DELIMITER) -> str:
    """Join an ancestor path (root..self) into its breadcrumb string."""
    return delimiter.join(str(node_id) for node_id in path)


# =============================================================================
# TREE RECORDS
# =============================================================================

class TreeNode(msgspec.Struct, kw_only=True, frozen=True):
    """
    The authoritative adjacency-list record.

    This is the payload stored in the rustworkx graph behind a TreeStore.
    `parent` is None for roots.
    """
    id: NodeId
    parent: Optional[NodeId] = None

    @property
    def is_root(self) -> bool:
        return self.parent is None


class NestedSetBounds(msgspec.Struct, frozen=True):
    """Left/right interval of a node. Descendants nest strictly inside."""
    left: int
    right: int

    @property
    def width(self) -> int:
        return self.right - self.left + 1

    @property
    def subtree_size(self) -> int:
        """Number of nodes in the subtree, the node itself included."""
        return self.width // 2

    @property
    def is_leaf(self) -> bool:
        return self.right == self.left + 1

    def contains(self, other: "NestedSetBounds") -> bool:
        """True if `other` lies strictly inside this interval."""
        return self.left < other.left and other.right < self.right

    def overlaps(self, other: "NestedSetBounds") -> bool:
        return not (self.right < other.left or other.right < self.left)


class TreeRow(msgspec.Struct, kw_only=True):
    """
    Every derived view of one node.

    Mirrors a row of the classic hierarchy tables: adjacency (parent),
    depth, breadcrumb and nested-set bounds side by side.
    """
    id: NodeId
    parent: Optional[NodeId]
    depth: int
    breadcrumb: str
    path: List[NodeId]
    left: int
    right: int

    @property
    def bounds(self) -> NestedSetBounds:
        return NestedSetBounds(self.left, self.right)


# =============================================================================
# GRAPH RECORDS
# =============================================================================

class GraphEdge(msgspec.Struct, frozen=True):
    """A directed edge: one hop from `depart` to `arrive`."""
    depart: NodeId
    arrive: NodeId


class ReachabilityEntry(msgspec.Struct, kw_only=True, frozen=True):
    """
    Minimum-hop path between two nodes.

    Present only when `arrive` is reachable from `depart`.
    `path` includes both endpoints, so len(path) == hops + 1.
    """
    depart: NodeId
    arrive: NodeId
    hops: int
    path: Tuple[NodeId, ...]


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Reuse encoder/decoder instances to avoid recompilation costs
_json_encoder = msgspec.json.Encoder()
_row_list_decoder = msgspec.json.Decoder(type=List[TreeRow])
_entry_list_decoder = msgspec.json.Decoder(type=List[ReachabilityEntry])
_edge_list_decoder = msgspec.json.Decoder(type=List[GraphEdge])


def serialize_rows(rows: List[TreeRow]) -> bytes:
    """Serialize tree rows to JSON bytes."""
    return _json_encoder.encode(rows)


def deserialize_rows(data: bytes) -> List[TreeRow]:
    """Deserialize JSON bytes to a list of TreeRow."""
    return _row_list_decoder.decode(data)


def serialize_entries(entries: List[ReachabilityEntry]) -> bytes:
    """Serialize reachability entries to JSON bytes."""
    return _json_encoder.encode(entries)


def deserialize_entries(data: bytes) -> List[ReachabilityEntry]:
    """Deserialize JSON bytes to a list of ReachabilityEntry."""
    return _entry_list_decoder.decode(data)


def serialize_edges(edges: List[GraphEdge]) -> bytes:
    """Serialize graph edges to JSON bytes."""
    return _json_encoder.encode(edges)


def deserialize_edges(data: bytes) -> List[GraphEdge]:
    """Deserialize JSON bytes to a list of GraphEdge."""
    return _edge_list_decoder.decode(data)
