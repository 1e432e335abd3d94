"""
ARBOR ADJACENCY LIST - Parent Pointers and the Depth Pass

The adjacency list is the authoritative representation: each node stores
only its direct parent. Everything else (depth, breadcrumbs, nested sets)
is derived from it.

The depth pass doubles as the structural validator. Depths are assigned
level by level starting from the roots; a node whose parent chain never
reaches a root (a cycle, or a parent that exists nowhere) is never
assigned a depth, and the pass reports it.
"""
from typing import Dict, Iterator, List, Mapping, Optional

from core.errors import CycleOrOrphanError
from core.schemas import NodeId, id_sort_key, sorted_ids


ParentMap = Mapping[NodeId, Optional[NodeId]]
ChildrenMap = Dict[NodeId, List[NodeId]]


def build_children(parents: ParentMap) -> ChildrenMap:
    """
    Invert parent pointers into a children map.

    Every node gets an entry (leaves map to an empty list). Children are
    sorted ascending by id. Parents missing from `parents` are ignored here;
    the depth pass reports the nodes that reference them.
    """
    children: ChildrenMap = {node_id: [] for node_id in parents}
    for node_id, parent_id in parents.items():
        if parent_id is not None and parent_id in children:
            children[parent_id].append(node_id)
    for kids in children.values():
        kids.sort(key=id_sort_key)
    return children


def find_roots(parents: ParentMap) -> List[NodeId]:
    """Nodes without a parent, ascending by id."""
    return sorted_ids(n for n, p in parents.items() if p is None)


def compute_depths(
    parents: ParentMap,
    children: Optional[ChildrenMap] = None,
) -> Dict[NodeId, int]:
    """
    Assign depth = parent's depth + 1, roots = 1.

    Breadth pass: each iteration resolves exactly one level. The loop ends
    when a level adds no node, which happens once every node reachable from
    a root has a depth.

    Args:
        parents: id -> parent id (None for roots)
        children: Precomputed children map (built if omitted)

    Returns:
        id -> depth for every node

    Raises:
        CycleOrOrphanError: If some nodes never got a depth
    """
    if children is None:
        children = build_children(parents)

    depths: Dict[NodeId, int] = {}
    frontier = find_roots(parents)
    level = 1

    while frontier:
        next_frontier: List[NodeId] = []
        for node_id in frontier:
            depths[node_id] = level
            next_frontier.extend(children[node_id])
        frontier = next_frontier
        level += 1

    if len(depths) != len(parents):
        raise CycleOrOrphanError(sorted_ids(n for n in parents if n not in depths))

    return depths


def iter_subtree(children: ChildrenMap, node_id: NodeId) -> Iterator[NodeId]:
    """Yield `node_id` and its descendants in pre-order (children ascending)."""
    stack = [node_id]
    while stack:
        current = stack.pop()
        yield current
        # Reversed so the smallest child is popped first
        stack.extend(reversed(children.get(current, ())))


def walk_ancestors(parents: ParentMap, node_id: NodeId) -> List[NodeId]:
    """
    Ancestors of a node from its parent up to the root.

    Stops early if it meets a node twice, so it is safe on malformed input.
    """
    chain: List[NodeId] = []
    seen = {node_id}
    current = parents.get(node_id)
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = parents.get(current)
    return chain
