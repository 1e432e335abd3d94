"""
Unit tests for core/adjacency.py - parent pointers and the depth pass
"""
import pytest

from core.adjacency import build_children, compute_depths, find_roots, iter_subtree, walk_ancestors
from core.errors import CycleOrOrphanError

PARENTS = {1: None, 2: 1, 3: 1, 4: 2, 5: 3, 6: 4, 7: 4}


def test_build_children_sorted_with_leaf_entries():
    children = build_children({3: 1, 1: None, 2: 1, 9: None})

    assert children == {1: [2, 3], 2: [], 3: [], 9: []}


def test_find_roots_ascending():
    assert find_roots({5: None, 2: None, 3: 2}) == [2, 5]


def test_compute_depths_article_tree():
    depths = compute_depths(PARENTS)

    assert depths == {1: 1, 2: 2, 3: 2, 4: 3, 5: 3, 6: 4, 7: 4}


def test_compute_depths_detects_cycle():
    """
    Validate that a parent cycle is reported by the depth pass.

    Verifies:
    - CycleOrOrphanError is raised
    - Only the nodes on (or hanging off) the cycle are unresolved
    """
    parents = {1: None, 2: 1, 10: 11, 11: 12, 12: 10, 13: 12}

    with pytest.raises(CycleOrOrphanError) as exc_info:
        compute_depths(parents)

    assert exc_info.value.unresolved == [10, 11, 12, 13]


def test_compute_depths_detects_orphan():
    with pytest.raises(CycleOrOrphanError) as exc_info:
        compute_depths({1: None, 2: 99})

    assert exc_info.value.unresolved == [2]


def test_compute_depths_with_no_roots():
    with pytest.raises(CycleOrOrphanError):
        compute_depths({1: 2, 2: 1})


def test_compute_depths_empty():
    assert compute_depths({}) == {}


def test_iter_subtree_preorder():
    children = build_children(PARENTS)

    assert list(iter_subtree(children, 1)) == [1, 2, 4, 6, 7, 3, 5]
    assert list(iter_subtree(children, 6)) == [6]


def test_walk_ancestors():
    assert walk_ancestors(PARENTS, 6) == [4, 2, 1]
    assert walk_ancestors(PARENTS, 1) == []


def test_walk_ancestors_stops_on_cycle():
    assert walk_ancestors({1: 2, 2: 3, 3: 1}, 1) == [2, 3]
