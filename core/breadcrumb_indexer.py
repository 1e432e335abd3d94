"""
ARBOR BREADCRUMB INDEXER - Ancestor Paths as Strings

A breadcrumb is the ordered list of ancestor ids from the root down to the
node itself, joined with a delimiter that ids may not contain:

    1        -> "1"
    1 > 2    -> "1/2"
    1 > 2 > 4 -> "1/2/4"

Invariant: breadcrumb(node) == breadcrumb(parent) + delimiter + node.id

Paths are computed top-down in non-decreasing depth order, so a parent's
path always exists before any of its children ask for it. The depth pass
(core.adjacency.compute_depths) runs first and rejects cycles and orphans.
"""
import logging
from typing import Dict, List, Mapping, Optional, Tuple

from core.adjacency import ChildrenMap, ParentMap, build_children, compute_depths, iter_subtree
from core.schemas import DEFAULT_DELIMITER, NodeId, format_breadcrumb, id_sort_key, validate_node_id

logger = logging.getLogger(__name__)

Path = Tuple[NodeId, ...]


class BreadcrumbIndexer:
    """
    Computes ancestor paths and their breadcrumb strings from parent pointers.

    Usage:
        indexer = BreadcrumbIndexer(delimiter="/")
        paths = indexer.build({1: None, 2: 1, 4: 2})
        indexer.breadcrumb(paths[4])   # "1/2/4"
    """

    def __init__(self, delimiter: str = DEFAULT_DELIMITER):
        if not delimiter:
            raise ValueError("Breadcrumb delimiter must be a non-empty string")
        self.delimiter = delimiter

    def build(
        self,
        parents: ParentMap,
        depths: Optional[Mapping[NodeId, int]] = None,
        children: Optional[ChildrenMap] = None,
    ) -> Dict[NodeId, Path]:
        """
        Compute the path of every node.

        Args:
            parents: id -> parent id (None for roots)
            depths: Precomputed depths; the depth pass runs if omitted
            children: Precomputed children map, reused by the depth pass

        Returns:
            id -> (root, ..., id)

        Raises:
            InvalidNodeIdError: If an id contains the delimiter
            CycleOrOrphanError: If the depth pass cannot resolve every node
        """
        for node_id in parents:
            validate_node_id(node_id, self.delimiter)

        if depths is None:
            if children is None:
                children = build_children(parents)
            depths = compute_depths(parents, children)

        order = sorted(parents, key=lambda n: (depths[n], id_sort_key(n)))

        paths: Dict[NodeId, Path] = {}
        for node_id in order:
            parent_id = parents[node_id]
            if parent_id is None:
                paths[node_id] = (node_id,)
            else:
                paths[node_id] = paths[parent_id] + (node_id,)

        logger.debug("Built %d breadcrumb paths", len(paths))
        return paths

    def rebuild_subtree(
        self,
        children: ChildrenMap,
        node_id: NodeId,
        parent_path: Path,
    ) -> Dict[NodeId, Path]:
        """
        Recompute paths for one subtree after its root moved.

        Only the subtree is touched; every other path stays valid.

        Args:
            children: Children map of the tree after the move
            node_id: Root of the moved subtree
            parent_path: New path of its parent (empty tuple for a new root)

        Returns:
            New paths for node_id and all of its descendants
        """
        updated: Dict[NodeId, Path] = {node_id: parent_path + (node_id,)}
        for current in iter_subtree(children, node_id):
            base = updated[current]
            for child in children.get(current, ()):
                updated[child] = base + (child,)
        return updated

    def breadcrumb(self, path: Path) -> str:
        """Render a path as its breadcrumb string."""
        return format_breadcrumb(path, self.delimiter)

    def breadcrumbs(self, paths: Mapping[NodeId, Path]) -> Dict[NodeId, str]:
        """Render every path."""
        return {node_id: self.breadcrumb(path) for node_id, path in paths.items()}

    def split(self, breadcrumb: str) -> List[str]:
        """Split a breadcrumb back into its id strings."""
        return breadcrumb.split(self.delimiter) if breadcrumb else []

    def is_prefix(self, ancestor: str, breadcrumb: str) -> bool:
        """
        True if `ancestor` is a proper breadcrumb prefix of `breadcrumb`.

        The trailing delimiter keeps "1/2" from matching "1/20".
        """
        return breadcrumb.startswith(ancestor + self.delimiter)
