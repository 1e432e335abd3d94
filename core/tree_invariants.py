"""
ARBOR TREE INVARIANTS - Keeping the Representations Honest

The adjacency list is authoritative; depths, breadcrumbs and nested sets
are derived. This module checks that every derived view still agrees with
the parent pointers, and that the parent pointers still form a forest.

Invariants Implemented:
1. Forest shape: in_degree <= 1 everywhere and no directed cycle
2. Depth rule: depth(root) == 1, depth(child) == depth(parent) + 1
3. Breadcrumb rule: breadcrumb(child) == breadcrumb(parent) + delim + id
4. Nested sets: containment, sibling disjointness, 2 * size width

Checks are O(V + E) (nested sets O(V log V)) using rustworkx primitives
where a graph is involved.
"""
import rustworkx as rx
from typing import Any, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum

from core.adjacency import ParentMap, build_children, find_roots
from core.errors import TreeInvariantError
from core.nested_set_indexer import NestedSetIndexer
from core.schemas import DEFAULT_DELIMITER, NestedSetBounds, NodeId, format_breadcrumb


# =============================================================================
# INVARIANT RESULTS
# =============================================================================

class InvariantSeverity(Enum):
    """Severity levels for invariant violations."""
    ERROR = "error"      # Derived state is wrong
    WARNING = "warning"  # Suspicious but usable
    INFO = "info"        # For metrics/diagnostics


@dataclass
class InvariantViolation:
    """A specific invariant violation."""
    invariant: str
    severity: InvariantSeverity
    message: str
    nodes_involved: List[Any] = field(default_factory=list)


@dataclass
class InvariantReport:
    """Complete invariant validation report."""
    valid: bool
    violations: List[InvariantViolation]
    metrics: Dict[str, Any]

    @property
    def errors(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.ERROR]

    @property
    def warnings(self) -> List[InvariantViolation]:
        return [v for v in self.violations if v.severity == InvariantSeverity.WARNING]


# =============================================================================
# TREE INVARIANTS
# =============================================================================

class TreeInvariants:
    """
    Validators for the derived tree representations.

    All methods are static. TreeStore wraps them in validate().
    """

    @staticmethod
    def validate_forest(graph: rx.PyDiGraph) -> Tuple[bool, Optional[InvariantViolation]]:
        """
        Forest shape: every node has at most one parent and there is no cycle.

        Args:
            graph: parent -> child PyDiGraph whose payloads carry `.id`
        """
        multi_parent = [
            getattr(graph[idx], "id", idx)
            for idx in graph.node_indices()
            if graph.in_degree(idx) > 1
        ]
        if multi_parent:
            return False, InvariantViolation(
                invariant="forest_shape",
                severity=InvariantSeverity.ERROR,
                message=f"{len(multi_parent)} node(s) with more than one parent",
                nodes_involved=multi_parent[:10],
            )

        if not rx.is_directed_acyclic_graph(graph):
            return False, InvariantViolation(
                invariant="forest_shape",
                severity=InvariantSeverity.ERROR,
                message="Parent pointers contain a cycle",
            )

        return True, None

    @staticmethod
    def validate_depths(
        parents: ParentMap,
        depths: Mapping[NodeId, int],
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """Depth rule: roots are 1, every child is its parent + 1."""
        bad = []
        for node_id, parent_id in parents.items():
            expected = 1 if parent_id is None else depths.get(parent_id, 0) + 1
            if depths.get(node_id) != expected:
                bad.append(node_id)

        if bad:
            return False, InvariantViolation(
                invariant="depth_rule",
                severity=InvariantSeverity.ERROR,
                message=f"{len(bad)} node(s) with a wrong depth",
                nodes_involved=bad[:10],
            )
        return True, None

    @staticmethod
    def validate_breadcrumbs(
        parents: ParentMap,
        breadcrumbs: Mapping[NodeId, str],
        delimiter: str = DEFAULT_DELIMITER,
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """Breadcrumb rule: child == parent + delimiter + id, root == id."""
        bad = []
        for node_id, parent_id in parents.items():
            if parent_id is None:
                expected = format_breadcrumb((node_id,), delimiter)
            else:
                expected = breadcrumbs.get(parent_id, "") + delimiter + str(node_id)
            if breadcrumbs.get(node_id) != expected:
                bad.append(node_id)

        if bad:
            return False, InvariantViolation(
                invariant="breadcrumb_rule",
                severity=InvariantSeverity.ERROR,
                message=f"{len(bad)} node(s) with a wrong breadcrumb",
                nodes_involved=bad[:10],
            )
        return True, None

    @staticmethod
    def validate_nested_sets(
        parents: ParentMap,
        bounds: Mapping[NodeId, NestedSetBounds],
    ) -> Tuple[bool, Optional[InvariantViolation]]:
        """Nested-set containment, disjointness and width rules."""
        problems = NestedSetIndexer.find_violations(dict(bounds), parents)
        if problems:
            return False, InvariantViolation(
                invariant="nested_sets",
                severity=InvariantSeverity.ERROR,
                message=f"{len(problems)} nested-set violation(s): {problems[:3]}",
            )
        return True, None

    @staticmethod
    def validate_all(
        parents: ParentMap,
        depths: Mapping[NodeId, int],
        breadcrumbs: Mapping[NodeId, str],
        bounds: Mapping[NodeId, NestedSetBounds],
        delimiter: str = DEFAULT_DELIMITER,
        graph: Optional[rx.PyDiGraph] = None,
        raise_on_error: bool = False,
    ) -> InvariantReport:
        """
        Run all tree validations and return a comprehensive report.

        Args:
            parents: Authoritative parent pointers
            depths, breadcrumbs, bounds: Derived views to check
            delimiter: Breadcrumb delimiter in use
            graph: Optional parent -> child graph for the forest check
            raise_on_error: If True, raise TreeInvariantError on first ERROR

        Returns:
            InvariantReport with all results and metrics
        """
        checks = []
        if graph is not None:
            checks.append(lambda: TreeInvariants.validate_forest(graph))
        checks.extend([
            lambda: TreeInvariants.validate_depths(parents, depths),
            lambda: TreeInvariants.validate_breadcrumbs(parents, breadcrumbs, delimiter),
            lambda: TreeInvariants.validate_nested_sets(parents, bounds),
        ])

        violations: List[InvariantViolation] = []
        for check in checks:
            _, violation = check()
            if violation:
                violations.append(violation)
                if raise_on_error and violation.severity == InvariantSeverity.ERROR:
                    raise TreeInvariantError(violation.message)

        children = build_children(parents)
        metrics = {
            "node_count": len(parents),
            "root_count": len(find_roots(parents)),
            "leaf_count": sum(1 for kids in children.values() if not kids),
            "max_depth": max(depths.values(), default=0),
        }

        return InvariantReport(
            valid=all(v.severity != InvariantSeverity.ERROR for v in violations),
            violations=violations,
            metrics=metrics,
        )


# =============================================================================
# INCREMENTAL VALIDATORS (For Pre-Mutation Checks)
# =============================================================================

class IncrementalValidator:
    """
    Checks run BEFORE a mutation touches the store.

    Cheaper than full validation because they only look at the affected
    subtree.
    """

    @staticmethod
    def would_create_cycle(graph: rx.PyDiGraph, node_idx: int, new_parent_idx: int) -> bool:
        """
        Check if moving node under new_parent would create a cycle.

        It would exactly when new_parent is the node itself or one of its
        descendants.
        """
        if node_idx == new_parent_idx:
            return True
        return new_parent_idx in rx.descendants(graph, node_idx)


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def is_forest(graph: rx.PyDiGraph) -> bool:
    """Quick check if a parent -> child graph is a valid forest."""
    valid, _ = TreeInvariants.validate_forest(graph)
    return valid
