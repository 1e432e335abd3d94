"""
Unit tests for core/breadcrumb_indexer.py - BreadcrumbIndexer

Tests:
- Path construction in depth order
- Subtree rewrites after a move
- Delimiter handling and prefix matching
"""
import pytest

from core.adjacency import build_children
from core.breadcrumb_indexer import BreadcrumbIndexer
from core.errors import CycleOrOrphanError, InvalidNodeIdError

PARENTS = {1: None, 2: 1, 3: 1, 4: 2, 5: 3, 6: 4, 7: 4}


@pytest.fixture
def indexer():
    return BreadcrumbIndexer()


def test_build_article_breadcrumbs(indexer):
    """
    Validate the breadcrumbs of the article tree.

    Verifies:
    - Root breadcrumb is the id alone
    - Every other breadcrumb extends its parent's
    """
    crumbs = indexer.breadcrumbs(indexer.build(PARENTS))

    assert crumbs[1] == "1"
    assert crumbs[2] == "1/2"
    assert crumbs[4] == "1/2/4"
    assert crumbs[6] == "1/2/4/6"
    assert crumbs[5] == "1/3/5"


def test_build_accepts_any_input_order(indexer):
    shuffled = dict(reversed(list(PARENTS.items())))
    assert indexer.build(shuffled) == indexer.build(PARENTS)


def test_build_uses_given_depths(indexer):
    depths = {1: 1, 2: 2}
    assert indexer.build({2: 1, 1: None}, depths=depths) == {1: (1,), 2: (1, 2)}


def test_build_rejects_cycle(indexer):
    with pytest.raises(CycleOrOrphanError):
        indexer.build({1: None, 2: 3, 3: 2})


def test_build_rejects_delimiter_in_id(indexer):
    with pytest.raises(InvalidNodeIdError):
        indexer.build({"a": None, "a/b": "a"})


def test_custom_delimiter():
    indexer = BreadcrumbIndexer(delimiter=".")
    paths = indexer.build({"root": None, "a/b": "root"})

    assert indexer.breadcrumb(paths["a/b"]) == "root.a/b"


def test_empty_delimiter_rejected():
    with pytest.raises(ValueError):
        BreadcrumbIndexer(delimiter="")


def test_rebuild_subtree_touches_only_subtree(indexer):
    """
    Validate that rebuild_subtree rewrites exactly the moved subtree.

    Moving 4 (with 6 and 7) under 3 yields three new paths.
    """
    parents = dict(PARENTS)
    parents[4] = 3
    children = build_children(parents)

    updated = indexer.rebuild_subtree(children, 4, (1, 3))

    assert updated == {4: (1, 3, 4), 6: (1, 3, 4, 6), 7: (1, 3, 4, 7)}


def test_rebuild_subtree_to_root(indexer):
    children = build_children(PARENTS)
    assert indexer.rebuild_subtree(children, 5, ()) == {5: (5,)}


def test_is_prefix_respects_boundaries(indexer):
    assert indexer.is_prefix("1/2", "1/2/4")
    assert not indexer.is_prefix("1/2", "1/20")
    assert not indexer.is_prefix("1/2", "1/2")


def test_split(indexer):
    assert indexer.split("1/2/4") == ["1", "2", "4"]
    assert indexer.split("") == []
