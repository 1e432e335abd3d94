"""
Pytest configuration and shared fixtures for the Arbor test suite.
"""
import random
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


# The tree from the classic hierarchy article:
#
#     1
#     ├── 2
#     │   └── 4
#     │       ├── 6
#     │       └── 7
#     └── 3
#         └── 5
ARTICLE_TREE = [(1, None), (2, 1), (3, 1), (4, 2), (5, 3), (6, 4), (7, 4)]


@pytest.fixture(autouse=True)
def reset_global_state():
    """Reset the global event bus before each test to ensure isolation."""
    from infrastructure.event_bus import reset_event_bus

    reset_event_bus()

    yield

    reset_event_bus()


@pytest.fixture
def event_bus():
    """Provide a private EventBus."""
    from infrastructure.event_bus import EventBus
    return EventBus()


@pytest.fixture
def arbor_config():
    """Default configuration, independent of config/arbor.toml."""
    from infrastructure.config import ArborConfig
    return ArborConfig()


@pytest.fixture
def fresh_store(arbor_config, event_bus):
    """Provide an empty TreeStore."""
    from core.tree_store import TreeStore
    return TreeStore(config=arbor_config, event_bus=event_bus)


@pytest.fixture
def article_store(fresh_store):
    """Provide a TreeStore holding the 7-node article tree."""
    for node_id, parent_id in ARTICLE_TREE:
        fresh_store.insert(node_id, parent_id)
    return fresh_store


@pytest.fixture
def fresh_graph(arbor_config, event_bus):
    """Provide an empty GraphReachability with the "raise" policy."""
    from core.reachability import GraphReachability
    return GraphReachability(config=arbor_config, event_bus=event_bus)


@pytest.fixture
def chain_graph(fresh_graph):
    """A -> B -> C, built."""
    fresh_graph.add_edge("A", "B", create_nodes=True)
    fresh_graph.add_edge("B", "C", create_nodes=True)
    fresh_graph.rebuild()
    return fresh_graph


def random_tree(seed: int, size: int):
    """
    Generate (id, parent) pairs for a random forest.

    Each node picks a parent among the nodes before it, or becomes a root
    with small probability. Pairs are shuffled so parents may follow
    their children.
    """
    rng = random.Random(seed)
    pairs = []
    for node_id in range(1, size + 1):
        if node_id == 1 or rng.random() < 0.05:
            pairs.append((node_id, None))
        else:
            pairs.append((node_id, rng.randint(1, node_id - 1)))
    rng.shuffle(pairs)
    return pairs


@pytest.fixture
def make_random_tree():
    return random_tree
