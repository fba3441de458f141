"""
Scalargraph: a minimal computational-graph engine.

This package provides a graph of scalar nodes (input, constant, weighted sum,
sigmoid) with forward evaluation, reverse-mode differentiation of a loss with
respect to every node and weight, and gradient descent weight updates.
"""

from scalargraph.engine import (
    ConstantNode,
    Graph,
    InputNode,
    Node,
    Seed,
    SigmoidNode,
    SumNode,
    connect,
)
from scalargraph.errors import (
    CycleDetectedError,
    DuplicateNameError,
    GraphError,
    NoInputsError,
    NotAnInputError,
    StaleGradientWarning,
    UnknownNodeError,
    UnsupportedOperationError,
)
from scalargraph import nn
from scalargraph.utils import draw_dot, get_logger

__version__ = "0.1.0"
__all__ = [
    "Graph", "Node", "InputNode", "ConstantNode", "SumNode", "SigmoidNode",
    "Seed", "connect", "nn", "draw_dot", "get_logger",
    "GraphError", "DuplicateNameError", "UnknownNodeError", "UnsupportedOperationError",
    "NotAnInputError", "NoInputsError", "CycleDetectedError", "StaleGradientWarning",
]
