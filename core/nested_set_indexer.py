"""
ARBOR NESTED SET INDEXER - Trees as Nested Intervals

Every node gets a (left, right) interval from a single depth-first counter:
`left` when the node is entered, `right` after its last child is left.

    1 (1,14)
    ├── 2 (2,9)
    │   └── 4 (3,8)
    │       ├── 6 (4,5)
    │       └── 7 (6,7)
    └── 3 (10,13)
        └── 5 (11,12)

Containment implies ancestry: a node's descendants are exactly the nodes
whose interval lies strictly inside its own. The price is that any
structural change renumbers the whole tree.

Traversal order is deterministic: roots ascending by id, then children
ascending by id. Roots receive consecutive disjoint ranges.
"""
import logging
import time
from typing import Dict, List, Optional

from core.adjacency import ChildrenMap, ParentMap, build_children, find_roots
from core.errors import CycleOrOrphanError, TreeInvariantError
from core.schemas import NestedSetBounds, NodeId, sorted_ids

logger = logging.getLogger(__name__)


class NestedSetIndexer:
    """
    Computes nested-set bounds from parent pointers.

    Usage:
        bounds = NestedSetIndexer().build({1: None, 2: 1, 3: 1})
        bounds[1]   # NestedSetBounds(left=1, right=6)
    """

    START = 1

    def build(
        self,
        parents: ParentMap,
        children: Optional[ChildrenMap] = None,
        verify: bool = True,
    ) -> Dict[NodeId, NestedSetBounds]:
        """
        Number every node with a depth-first pre/post counter.

        Args:
            parents: id -> parent id (None for roots)
            children: Precomputed children map (built if omitted)
            verify: Run the post-check (default True)

        Returns:
            id -> NestedSetBounds

        Raises:
            CycleOrOrphanError: If some nodes are not reachable from a root
            TreeInvariantError: If the post-check fails
        """
        started = time.perf_counter()
        if children is None:
            children = build_children(parents)

        bounds: Dict[NodeId, NestedSetBounds] = {}
        lefts: Dict[NodeId, int] = {}
        counter = self.START

        for root in find_roots(parents):
            # (node, exiting) pairs: the exit marker is pushed under the children
            stack = [(root, False)]
            while stack:
                node_id, exiting = stack.pop()
                if exiting:
                    bounds[node_id] = NestedSetBounds(lefts.pop(node_id), counter)
                    counter += 1
                    continue
                lefts[node_id] = counter
                counter += 1
                stack.append((node_id, True))
                for child in reversed(children[node_id]):
                    stack.append((child, False))

        if len(bounds) != len(parents):
            raise CycleOrOrphanError(sorted_ids(n for n in parents if n not in bounds))

        if verify:
            violations = self.find_violations(bounds, parents, children)
            if violations:
                raise TreeInvariantError(
                    f"Nested-set numbering failed its post-check: {violations[:5]}"
                )

        logger.debug(
            "Numbered %d nested sets in %.3fms",
            len(bounds), (time.perf_counter() - started) * 1000,
        )
        return bounds

    @staticmethod
    def find_violations(
        bounds: Dict[NodeId, NestedSetBounds],
        parents: ParentMap,
        children: Optional[ChildrenMap] = None,
    ) -> List[str]:
        """
        Check the nested-set invariants.

        - left < right for every node
        - every node strictly inside its parent
        - siblings (and roots) pairwise disjoint, in traversal order
        - right - left + 1 == 2 * subtree_size
        - the whole numbering spans exactly 2 * n values

        Returns:
            Human-readable violations (empty if valid)
        """
        if children is None:
            children = build_children(parents)

        violations: List[str] = []
        missing = [n for n in parents if n not in bounds]
        if missing:
            return [f"no bounds for {sorted_ids(missing)[:10]}"]

        for node_id, b in bounds.items():
            if b.left >= b.right:
                violations.append(f"{node_id!r}: left {b.left} >= right {b.right}")
            parent_id = parents.get(node_id)
            if parent_id is not None and not bounds[parent_id].contains(b):
                violations.append(f"{node_id!r}: {b} not inside parent {parent_id!r}")

        sibling_groups = [find_roots(parents)] + [kids for kids in children.values() if kids]
        for group in sibling_groups:
            for prev, nxt in zip(group, group[1:]):
                if not bounds[prev].right < bounds[nxt].left:
                    violations.append(f"siblings {prev!r} and {nxt!r} overlap or are out of order")

        # Post-order (ascending right) sees children before their parent
        sizes: Dict[NodeId, int] = {}
        for node_id in sorted(bounds, key=lambda n: bounds[n].right):
            sizes[node_id] = 1 + sum(sizes.get(c, 0) for c in children.get(node_id, ()))
            if bounds[node_id].width != 2 * sizes[node_id]:
                violations.append(
                    f"{node_id!r}: width {bounds[node_id].width} != 2 * subtree size {sizes[node_id]}"
                )

        if bounds:
            lowest = min(b.left for b in bounds.values())
            highest = max(b.right for b in bounds.values())
            if highest - lowest + 1 != 2 * len(bounds):
                violations.append(f"span {lowest}..{highest} != 2 * {len(bounds)} nodes")

        return violations
