import math

import pytest

from scalargraph.engine import Graph, connect, logistic
from scalargraph.errors import (
    CycleDetectedError,
    DuplicateNameError,
    NoInputsError,
    NotAnInputError,
    UnknownNodeError,
    UnsupportedOperationError,
)


def test_sum_forward(graph):
    a = graph.create_input("a", 2.0)
    b = graph.create_input("b", 4.0)
    s = graph.create_sum("s")
    graph.connect(a, s, 0.5)
    graph.connect(b, s, 1.0)

    assert s.activation() == 5.0
    assert s.last_activation() == 5.0


def test_sigmoid_forward_at_zero(graph):
    x = graph.create_input("x", 3.0)
    y = graph.create_sigmoid("y")
    graph.connect(x, y, 0.0)

    assert y.activation() == 0.5


def test_sigmoid_saturates_without_overflow(graph):
    x = graph.create_input("x", 1.0)
    hi = graph.create_sigmoid("hi")
    lo = graph.create_sigmoid("lo")
    graph.connect(x, hi, 1e6)
    graph.connect(x, lo, -1e6)

    assert hi.activation() == 1.0
    assert lo.activation() == 0.0


def test_logistic_matches_closed_form():
    for z in (-3.0, -0.5, 0.25, 2.0):
        assert logistic(z) == pytest.approx(1.0 / (1.0 + math.exp(-z)))


def test_forward_is_idempotent(graph):
    x = graph.create_input("x", 0.7)
    c = graph.create_constant("bias", 1.0)
    h = graph.create_sigmoid("h")
    o = graph.create_sum("o")
    graph.connect(x, h)
    graph.connect(c, h)
    graph.connect(h, o)
    graph.connect(x, o)

    first = o.activation()
    second = o.activation()
    assert first == second


def test_input_value_can_be_reassigned(graph):
    x = graph.create_input("x", 1.0)
    s = graph.create_sum("s")
    graph.connect(x, s, 2.0)
    assert s.activation() == 2.0

    x.value = 4.0
    assert x.last_activation() == 4.0
    assert s.activation() == 8.0


def test_constant_value_is_read_only(graph):
    c = graph.create_constant("c", 1.0)
    with pytest.raises(AttributeError):
        c.value = 2.0
    assert c.activation() == 1.0


def test_unevaluated_weighted_node_reports_zero(graph):
    s = graph.create_sum("s")
    assert s.last_activation() == 0.0


def test_duplicate_name_rejected(graph):
    graph.create_input("x", 1.0)
    with pytest.raises(DuplicateNameError):
        graph.create_sum("x")
    assert len(graph) == 1


def test_lookup(graph):
    x = graph.create_input("x", 1.0)
    assert graph.lookup("x") is x
    assert "x" in graph
    assert "y" not in graph
    with pytest.raises(UnknownNodeError):
        graph.lookup("y")
    with pytest.raises(KeyError):
        graph.lookup("y")


def test_sum_derivative_is_edge_weight(graph):
    x = graph.create_input("x", 1.0)
    s = graph.create_sum("s")
    graph.connect(x, s, -0.3)

    assert s.derivative_against(x) == -0.3
    assert s.derivative_against("x") == -0.3
    assert s.derivative_against(x.handle) == -0.3


def test_sigmoid_derivative(graph):
    x = graph.create_input("x", 2.0)
    y = graph.create_sigmoid("y")
    graph.connect(x, y, 0.5)
    a = y.activation()

    assert y.derivative_against(x) == pytest.approx(a * (1 - a) * 0.5)


def test_derivative_against_unwired_node(graph):
    x = graph.create_input("x", 1.0)
    other = graph.create_input("other", 1.0)
    s = graph.create_sum("s")
    graph.connect(x, s, 1.0)

    with pytest.raises(NotAnInputError):
        s.derivative_against(other)


def test_source_nodes_have_no_derivatives(graph):
    x = graph.create_input("x", 1.0)
    c = graph.create_constant("c", 1.0)
    for node in (x, c):
        with pytest.raises(NoInputsError):
            node.derivative_against(x)


def test_source_nodes_reject_add_input(graph):
    x = graph.create_input("x", 1.0)
    c = graph.create_constant("c", 1.0)
    with pytest.raises(UnsupportedOperationError):
        c.add_input(x, 1.0)


def test_wiring_into_input_leaves_graph_unmodified(graph):
    x = graph.create_input("x", 1.0)
    target = graph.create_input("target", 1.0)

    with pytest.raises(UnsupportedOperationError):
        connect(x, target)

    assert target.inputs == {}
    assert x.outputs == []


def test_connect_keeps_both_directions_in_sync(graph):
    x = graph.create_input("x", 1.0)
    s = graph.create_sum("s")
    graph.connect(x, s, 0.5)
    graph.connect(x, s, 2.0)

    assert s.inputs == {x.handle: 2.0}
    assert x.outputs == [s.handle]
    assert s.weight_of(x) == 2.0


def test_add_output_does_not_deduplicate(graph):
    x = graph.create_input("x", 1.0)
    s = graph.create_sum("s")
    x.add_output(s)
    x.add_output(s)
    assert x.outputs == [s.handle, s.handle]
    assert x.consumers() == [s]


def test_random_weights_come_from_seeded_generator():
    weights = []
    for _ in range(2):
        g = Graph(seed=42)
        x = g.create_input("x", 1.0)
        s = g.create_sum("s")
        weights.append(g.connect(x, s))

    assert weights[0] == weights[1]
    assert -1.0 <= weights[0] <= 1.0


def test_connect_rejects_cycles(graph):
    s1 = graph.create_sum("s1")
    s2 = graph.create_sum("s2")
    s3 = graph.create_sum("s3")
    graph.connect(s1, s2, 1.0)
    graph.connect(s2, s3, 1.0)

    with pytest.raises(CycleDetectedError):
        graph.connect(s3, s1, 1.0)
    with pytest.raises(CycleDetectedError):
        graph.connect(s2, s2, 1.0)

    assert s1.inputs == {}
    assert s3.outputs == []


def test_connect_across_graphs_fails():
    g1, g2 = Graph(seed=0), Graph(seed=0)
    x = g1.create_input("x", 1.0)
    s = g2.create_sum("s")

    with pytest.raises(ValueError):
        connect(x, s)
    with pytest.raises(ValueError):
        g2.connect(x, s)
    assert x.outputs == []


def test_evaluate_returns_activations_in_order(graph):
    x = graph.create_input("x", 2.0)
    s1 = graph.create_sum("s1")
    s2 = graph.create_sum("s2")
    graph.connect(x, s1, 1.0)
    graph.connect(x, s2, -1.0)

    assert graph.evaluate([s1, "s2"]) == [2.0, -2.0]


def test_node_listings(graph):
    x = graph.create_input("x", 1.0)
    c = graph.create_constant("c", 1.0)
    s = graph.create_sum("s")
    graph.connect(x, s)
    graph.connect(c, s)

    assert graph.inputs() == [x]
    assert graph.sources() == [x, c]
    assert graph.sinks() == [s]
    assert list(graph) == [x, c, s]
