import pytest

from scalargraph.engine import Graph


@pytest.fixture
def graph():
    return Graph(seed=0)


@pytest.fixture
def diamond(graph):
    """A feeds B (w=2) and C (w=3); B and C both feed D (w=1)."""
    a = graph.create_input("A", 1.0)
    b = graph.create_sum("B")
    c = graph.create_sum("C")
    d = graph.create_sum("D")
    graph.connect(a, b, 2.0)
    graph.connect(a, c, 3.0)
    graph.connect(b, d, 1.0)
    graph.connect(c, d, 1.0)
    return graph
