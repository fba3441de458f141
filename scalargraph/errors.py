"""
Exceptions and warnings raised by the scalargraph engine.

Structural mistakes (duplicate names, illegal wiring, cycles, asking for an
edge that does not exist) raise immediately. A terminal node without a
seeded loss derivative only warns, and contributes a zero gradient.
"""


class GraphError(Exception):
    """Base class for every error raised by the graph engine."""


class DuplicateNameError(GraphError):
    """A node with the same id already exists in the graph."""


class UnknownNodeError(GraphError, KeyError):
    """No node with the requested name or handle exists in the graph."""


class UnsupportedOperationError(GraphError):
    """Input and Constant nodes cannot be given inputs."""


class NotAnInputError(GraphError):
    """A derivative was requested against a node that is not wired as an input."""


class NoInputsError(GraphError):
    """A derivative was requested on a node kind that has no inputs."""


class CycleDetectedError(GraphError):
    """The wiring would close (or already contains) a cycle."""


class StaleGradientWarning(UserWarning):
    """A terminal node had no seeded loss derivative for the current pass."""
