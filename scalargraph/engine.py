import warnings

import numpy as np

from scalargraph.errors import (
    CycleDetectedError,
    DuplicateNameError,
    NoInputsError,
    NotAnInputError,
    StaleGradientWarning,
    UnknownNodeError,
    UnsupportedOperationError,
)
from scalargraph.utils import get_logger

logger = get_logger(__name__, stream=False)

DEFAULT_LEARNING_RATE = 0.0001


def logistic(z):
    """
    Sigmoid logistic function: σ(z) = 1 / (1 + e^(-z))

    For z >= 0 uses 1 / (1 + e^(-z)), for z < 0 uses e^z / (1 + e^z), so
    the exponent never overflows.
    """
    if z >= 0:
        return float(1.0 / (1.0 + np.exp(-z)))
    e = np.exp(z)
    return float(e / (1.0 + e))


class TrainingState:
    """Per-node backward pass bookkeeping: memo token and cached d(loss)/d(activation)."""

    def __init__(self):
        self.last_derivative_iteration = -1
        self.dloss = 0.0

    def __repr__(self):
        return f"TrainingState(iteration={self.last_derivative_iteration}, dloss={self.dloss})"


class Node:
    """
    A scalar unit in a computational graph.

    Nodes are created through a Graph, which owns them and hands out an
    integer handle for each one. Edges are stored as handles: ``inputs``
    maps producer handle -> weight, ``outputs`` lists consumer handles.

    The set of node kinds is closed: InputNode, ConstantNode, SumNode and
    SigmoidNode. The derivative engine relies on exactly these.
    """

    kind = None
    accepts_inputs = False

    def __init__(self, graph, node_id, handle):
        self.graph = graph
        self.id = node_id
        self.handle = handle

        self.inputs = {}    # producer handle -> weight
        self.outputs = []   # consumer handles, back-links for the backward pass

        self.cached_activation = 0.0
        self.training_state = TrainingState()

    def activation(self):
        """Compute, cache and return this node's output value."""
        raise NotImplementedError

    def last_activation(self):
        """Return the value cached by the last activation() call, without recomputing."""
        return self.cached_activation

    def derivative_against(self, node):
        """
        Local partial derivative of this node's activation with respect to
        the activation of one wired input.

        Args:
            node: The input, as a Node, handle or node id
        """
        raise NotImplementedError

    def local_gradient(self):
        """Derivative of the activation with respect to the weighted sum of inputs."""
        raise NotImplementedError

    def add_input(self, producer, weight):
        raise NotImplementedError

    def add_output(self, consumer):
        """Append a back-link to ``consumer``. Never deduplicates."""
        self.outputs.append(self.graph.handle_of(consumer))

    def weight_of(self, producer):
        """Return the weight of the edge from ``producer`` into this node."""
        handle = self.graph.handle_of(producer)
        if handle not in self.inputs:
            raise NotAnInputError(f"{self.graph.node(handle).id!r} is not an input of {self.id!r}")
        return self.inputs[handle]

    def producers(self):
        """Yield (producer node, weight) pairs in wiring order."""
        for handle, weight in self.inputs.items():
            yield self.graph.node(handle), weight

    def consumers(self):
        """Return the distinct consumer nodes, in wiring order."""
        return [self.graph.node(handle) for handle in dict.fromkeys(self.outputs)]

    def __repr__(self):
        return f"{type(self).__name__}({self.id!r}, activation={self.cached_activation})"


class SourceNode(Node):
    """A node without inputs: its activation is a stored value."""

    def __init__(self, graph, node_id, handle, value):
        super().__init__(graph, node_id, handle)
        self._value = float(value)
        self.cached_activation = self._value

    @property
    def value(self):
        return self._value

    def activation(self):
        """Return the stored value (and cache it as the last activation)."""
        self.cached_activation = self._value
        return self.cached_activation

    def derivative_against(self, node):
        raise NoInputsError(f"{self.kind} node {self.id!r} has no inputs")

    def local_gradient(self):
        raise NoInputsError(f"{self.kind} node {self.id!r} has no inputs")

    def add_input(self, producer, weight):
        """Always fails: sources have no inputs."""
        raise UnsupportedOperationError(f"cannot add inputs to {self.kind} node {self.id!r}")


class InputNode(SourceNode):
    """Holds one value of the current training row. The value can be reassigned."""

    kind = "input"

    @SourceNode.value.setter
    def value(self, value):
        self._value = float(value)
        self.cached_activation = self._value


class ConstantNode(SourceNode):
    """
    A source with a fixed value.

    Wire a ConstantNode with value 1.0 into any node that needs a bias; the
    edge weight then acts as the bias term.
    """

    kind = "constant"


class WeightedNode(Node):
    """A node whose activation is a function of the weighted sum of its inputs."""

    accepts_inputs = True

    def weighted_sum(self):
        """Σ producer.activation() * weight, recomputing every producer."""
        total = 0.0
        for producer, weight in self.producers():
            total += producer.activation() * weight
        return total

    def add_input(self, producer, weight):
        """
        Register an input edge, overwriting the weight if it already exists.

        Only the forward link is stored; use Graph.connect to keep the
        producer's back-link in sync.

        Args:
            producer: Node, handle or node id
            weight: Edge weight
        """
        self.inputs[self.graph.handle_of(producer)] = float(weight)

    def derivative_against(self, node):
        handle = self.graph.handle_of(node)
        if handle not in self.inputs:
            raise NotAnInputError(f"{self.graph.node(handle).id!r} is not an input of {self.id!r}")
        return self.local_gradient() * self.inputs[handle]


class SumNode(WeightedNode):
    """Linear unit: activation = Σ input activation * weight."""

    kind = "sum"

    def activation(self):
        """
        Weighted sum of the inputs, recomputed from every producer.

        Example:
            >>> g = Graph()
            >>> a, b = g.create_input("a", 2.0), g.create_input("b", 4.0)
            >>> s = g.create_sum("s")
            >>> _ = g.connect(a, s, 0.5), g.connect(b, s, 1.0)
            >>> s.activation()
            5.0
        """
        self.cached_activation = float(self.weighted_sum())
        return self.cached_activation

    def local_gradient(self):
        """Identity transfer function: d(activation)/d(weighted sum) = 1."""
        return 1.0


class SigmoidNode(WeightedNode):
    """Logistic unit: activation = σ(Σ input activation * weight)."""

    kind = "sigmoid"

    def activation(self):
        """σ of the weighted sum of the inputs; 0.5 when the sum is 0."""
        self.cached_activation = logistic(self.weighted_sum())
        return self.cached_activation

    def local_gradient(self):
        """
        Sigmoid derivative: σ'(z) = σ(z) * (1 - σ(z))

        Uses the cached activation, so activation() must have run first.
        """
        a = self.last_activation()
        return a * (1.0 - a)


class Seed:
    """
    Boundary condition of one backward pass.

    Args:
        iteration: Token identifying the pass. Must differ from the token of
                   every earlier pass over the same graph (see
                   Graph.next_iteration)
        output_nodes_loss_fn_derivative: Mapping node id -> d(loss)/d(activation)
                                         for the terminal nodes
    """

    def __init__(self, iteration, output_nodes_loss_fn_derivative):
        self.iteration = iteration
        self.output_nodes_loss_fn_derivative = dict(output_nodes_loss_fn_derivative)

    @classmethod
    def from_callback(cls, iteration, output_ids, derivative_fn):
        """Build a seed by calling ``derivative_fn(node_id)`` for each output id."""
        return cls(iteration, {node_id: float(derivative_fn(node_id)) for node_id in output_ids})

    def derivative_for(self, node_id):
        return self.output_nodes_loss_fn_derivative.get(node_id)

    def __repr__(self):
        return f"Seed(iteration={self.iteration}, {self.output_nodes_loss_fn_derivative})"


class Graph:
    """
    Owns the nodes of one computational graph.

    Nodes live in an append-only table and are referred to by integer
    handle; ``lookup`` resolves names. All wiring, backward passes and
    weight updates go through the graph.

    Args:
        seed: Seed for the default random generator used for initial weights
        rng: A numpy Generator to use instead of seeding a new one

    Example:
        >>> g = Graph(seed=0)
        >>> a = g.create_input("a", 2.0)
        >>> b = g.create_input("b", 4.0)
        >>> s = g.create_sum("s")
        >>> g.connect(a, s, 0.5)
        0.5
        >>> g.connect(b, s, 1.0)
        1.0
        >>> s.activation()
        5.0
        >>> seed = Seed(g.next_iteration(), {"s": 1.0})
        >>> g.backward(seed)["a"]
        0.5
    """

    def __init__(self, seed=None, rng=None):
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self._nodes = []
        self._index = {}
        self._iteration = -1

    # ---- construction and lookup -------------------------------------

    def _add(self, cls, node_id, *args):
        if node_id in self._index:
            raise DuplicateNameError(f"node {node_id!r} already exists")
        node = cls(self, node_id, len(self._nodes), *args)
        self._nodes.append(node)
        self._index[node_id] = node.handle
        logger.debug("created %s node %r (handle %d)", node.kind, node_id, node.handle)
        return node

    def create_input(self, node_id, initial_value=0.0):
        """
        Add an InputNode.

        Args:
            node_id: Unique name of the node
            initial_value: Value until the training driver assigns a row

        Raises:
            DuplicateNameError: if ``node_id`` is taken
        """
        return self._add(InputNode, node_id, initial_value)

    def create_constant(self, node_id, value):
        """Add a ConstantNode holding ``value`` (use 1.0 for a bias source)."""
        return self._add(ConstantNode, node_id, value)

    def create_sum(self, node_id):
        """Add a SumNode with no inputs yet."""
        return self._add(SumNode, node_id)

    def create_sigmoid(self, node_id):
        """Add a SigmoidNode with no inputs yet."""
        return self._add(SigmoidNode, node_id)

    def lookup(self, name):
        """Return the node called ``name``."""
        try:
            return self._nodes[self._index[name]]
        except KeyError:
            raise UnknownNodeError(f"no node named {name!r}") from None

    def node(self, handle):
        """Return the node stored at ``handle``."""
        if isinstance(handle, bool) or not 0 <= handle < len(self._nodes):
            raise UnknownNodeError(f"no node with handle {handle!r}")
        return self._nodes[handle]

    def handle_of(self, node):
        """Resolve a Node, handle or node id to a handle of this graph."""
        if isinstance(node, Node):
            if node.graph is not self:
                raise ValueError(f"node {node.id!r} belongs to a different graph")
            return node.handle
        if isinstance(node, str):
            return self.lookup(node).handle
        return self.node(node).handle

    def resolve(self, node):
        """Resolve a Node, handle or node id to a node of this graph."""
        return self._nodes[self.handle_of(node)]

    @property
    def nodes(self):
        return list(self._nodes)

    def inputs(self):
        return [n for n in self._nodes if isinstance(n, InputNode)]

    def sources(self):
        """Input and Constant nodes: the starting points of a backward pass."""
        return [n for n in self._nodes if isinstance(n, SourceNode)]

    def sinks(self):
        """Nodes without consumers."""
        return [n for n in self._nodes if not n.outputs]

    def __contains__(self, name):
        return name in self._index

    def __len__(self):
        return len(self._nodes)

    def __iter__(self):
        return iter(list(self._nodes))

    def __repr__(self):
        lines = ["Graph:"]
        for n in self._nodes:
            wiring = ", ".join(f"{p.id}@{w:.4f}" for p, w in n.producers())
            lines.append(f"  {n.handle}: {n.kind} {n.id!r} <- [{wiring}]")
        return "\n".join(lines)

    # ---- wiring -------------------------------------------------------

    def _reaches(self, start, target):
        # True if target is reachable from start by following outputs
        seen = set()
        stack = [start]
        while stack:
            handle = stack.pop()
            if handle == target:
                return True
            if handle in seen:
                continue
            seen.add(handle)
            stack.extend(self._nodes[handle].outputs)
        return False

    def connect(self, producer, consumer, weight=None):
        """
        Wire ``producer``'s activation into ``consumer``'s weighted sum.

        Re-wiring an existing edge overwrites its weight. Nothing is
        modified when the call fails.

        Args:
            producer: Node, handle or node id
            consumer: Node, handle or node id; must be a Sum or Sigmoid node
            weight: Edge weight; drawn uniformly from [-1, 1] when omitted

        Returns:
            The weight stored on the edge
        """
        producer = self.resolve(producer)
        consumer = self.resolve(consumer)

        if not consumer.accepts_inputs:
            raise UnsupportedOperationError(
                f"cannot wire {producer.id!r} into {consumer.kind} node {consumer.id!r}")
        if producer.handle == consumer.handle or self._reaches(consumer.handle, producer.handle):
            raise CycleDetectedError(f"edge {producer.id!r} -> {consumer.id!r} would close a cycle")

        if weight is None:
            weight = float(self.rng.uniform(-1.0, 1.0))

        if producer.handle not in consumer.inputs:
            producer.add_output(consumer)
        consumer.add_input(producer, weight)

        logger.debug("connected %r -> %r (weight %.6f)", producer.id, consumer.id, weight)
        return consumer.inputs[producer.handle]

    # ---- forward ------------------------------------------------------

    def evaluate(self, nodes):
        """Run activation() on each node and return the values, in order."""
        return [self.resolve(n).activation() for n in nodes]

    # ---- backward -----------------------------------------------------

    def next_iteration(self):
        """Return a fresh backward pass token, larger than any handed out before."""
        self._iteration += 1
        return self._iteration

    def _accumulate(self, node, seed):
        if node.outputs:
            # multivariate chain rule: Σ_c d(loss)/d(c) * d(c)/d(node)
            total = 0.0
            for consumer in node.consumers():
                total += consumer.training_state.dloss * consumer.derivative_against(node.handle)
            return total

        derivative = seed.derivative_for(node.id)
        if derivative is None:
            warnings.warn(
                f"terminal node {node.id!r} has no seeded loss derivative for iteration {seed.iteration}",
                StaleGradientWarning, stacklevel=3)
            return 0.0
        return float(derivative)

    def propagate(self, node, seed):
        """
        Compute d(loss)/d(activation) of ``node`` for the pass identified by ``seed``.

        Consumers are finalized before the nodes that feed them, using an
        explicit worklist. Every node reached is computed once per
        iteration token; a repeated call returns the cached value.

        Returns:
            The node's d(loss)/d(activation)
        """
        root = self.resolve(node)
        iteration = seed.iteration
        # tokens from next_iteration() must stay ahead of caller-chosen ones
        self._iteration = max(self._iteration, iteration)
        if root.training_state.last_derivative_iteration == iteration:
            return root.training_state.dloss

        visiting = set()
        visited = 0
        stack = [(root.handle, False)]
        while stack:
            handle, expanded = stack.pop()
            current = self._nodes[handle]
            state = current.training_state

            if expanded:
                visiting.discard(handle)
                state.dloss = self._accumulate(current, seed)
                state.last_derivative_iteration = iteration
                visited += 1
                continue

            if state.last_derivative_iteration == iteration:
                continue
            if handle in visiting:
                raise CycleDetectedError(f"cycle through node {current.id!r}")

            visiting.add(handle)
            stack.append((handle, True))
            for consumer in dict.fromkeys(current.outputs):
                if self._nodes[consumer].training_state.last_derivative_iteration != iteration:
                    stack.append((consumer, False))

        logger.debug("iteration %s: propagated from %r, %d nodes computed", iteration, root.id, visited)
        return root.training_state.dloss

    def propagate_all(self, nodes, seed):
        """Propagate from each node; returns node id -> d(loss)/d(activation)."""
        return {self.resolve(n).id: self.propagate(n, seed) for n in nodes}

    def backward(self, seed):
        """Propagate from every Input and Constant node, covering the whole graph."""
        return self.propagate_all(self.sources(), seed)

    # ---- weight update ------------------------------------------------

    def weight_gradient(self, consumer, producer):
        """
        d(loss)/d(weight) for the edge producer -> consumer, from the cached
        backward pass state: dloss * σ'(z) (or 1) * producer activation.
        """
        consumer = self.resolve(consumer)
        producer = self.resolve(producer)
        consumer.weight_of(producer)
        return consumer.training_state.dloss * consumer.local_gradient() * producer.last_activation()

    def apply_updates(self, nodes=None, learning_rate=DEFAULT_LEARNING_RATE):
        """
        One gradient descent step on every input edge of ``nodes``:
        weight <- weight - learning_rate * d(loss)/d(weight).

        Must follow a backward pass of the same iteration; stale derivatives
        are not detected.

        Args:
            nodes: Nodes whose input edges are updated (default: every node)
            learning_rate: Step size (default: 0.0001)

        Returns:
            The number of weights updated
        """
        if nodes is None:
            nodes = self.nodes
        updated = 0
        for node in nodes:
            node = self.resolve(node)
            if not node.inputs:
                continue
            scale = node.training_state.dloss * node.local_gradient()
            for handle in list(node.inputs):
                gradient = scale * self._nodes[handle].last_activation()
                node.inputs[handle] -= learning_rate * gradient
                updated += 1
        logger.debug("applied updates to %d weights (lr %g)", updated, learning_rate)
        return updated


def connect(producer, consumer, weight=None):
    """
    Wire two nodes of the same graph. See Graph.connect.

    Example:
        >>> g = Graph(seed=0)
        >>> x = g.create_input("x", 1.0)
        >>> y = g.create_sigmoid("y")
        >>> connect(x, y, 0.0)
        0.0
    """
    if producer.graph is not consumer.graph:
        raise ValueError(f"{producer.id!r} and {consumer.id!r} belong to different graphs")
    return producer.graph.connect(producer, consumer, weight)
