"""
Training layer for scalargraph.

This module binds a node graph to training data: input rows assigned to
Input nodes, ground truths compared against output nodes, a loss function
and its derivative, and a gradient descent loop.
"""

import numpy as np

from scalargraph.engine import DEFAULT_LEARNING_RATE, InputNode, Seed
from scalargraph.errors import UnsupportedOperationError
from scalargraph.utils import get_logger

logger = get_logger(__name__, stream=False)


def mse(activations, ground_truths):
    """
    Mean Squared Error: MSE = 1/n * sum((activation - ground_truth)²)

    Example:
        >>> mse([1.0, 2.0], [1.0, 4.0])
        2.0
    """
    activations = np.asarray(activations, dtype=float)
    ground_truths = np.asarray(ground_truths, dtype=float)
    return float(np.mean((activations - ground_truths) ** 2))


def mse_derivative(activation, ground_truth, count):
    """
    Derivative of MSE with respect to one output node's activation:
    d(MSE)/d(activation) = 2 * (activation - ground_truth) / n
    """
    return 2.0 * (activation - ground_truth) / count


def _as_rows(values, width, what):
    values = np.asarray(values, dtype=float).ravel()
    if width == 0:
        raise ValueError(f"{what} needs at least one node")
    if values.size == 0 or values.size % width != 0:
        raise ValueError(f"{what}: {values.size} values is not a multiple of {width} nodes")
    return values.reshape(-1, width)


class InputLayer:
    """
    Feeds rows of training data into Input nodes.

    Args:
        nodes: The Input nodes, in column order
        training_vals: Flat sequence of training inputs. Values
                       ``[k * len(nodes) : (k + 1) * len(nodes)]`` form row k,
                       one value per node in the same order as ``nodes``
    """

    def __init__(self, nodes, training_vals):
        self.input_nodes = list(nodes)
        for node in self.input_nodes:
            if not isinstance(node, InputNode):
                raise UnsupportedOperationError(f"cannot feed training values into {node.kind} node {node.id!r}")
        self.training_inputs = _as_rows(training_vals, len(self.input_nodes), "training inputs")

    @property
    def rows(self):
        return len(self.training_inputs)

    def set_iteration(self, iteration):
        """
        Assign the row for ``iteration`` to the input nodes.

        The iteration wraps around the number of rows: with 3 rows,
        iteration 5 uses row 2.
        """
        idx = iteration % self.rows
        logger.debug("setting input iteration %d (row %d)", iteration, idx)
        for node, val in zip(self.input_nodes, self.training_inputs[idx]):
            node.value = val


class OutputLayer:
    """
    Compares output nodes against ground truths and seeds the backward pass.

    Args:
        nodes: The output nodes, in column order
        ground_truths: Flat sequence of expected activations, laid out like
                       InputLayer's training values
        loss_function: ``fn(activations, ground_truths) -> float``
        loss_derivative: ``fn(activation, ground_truth, count) -> float``,
                         d(loss)/d(activation) of one output node

    The seeded derivative is only used for output nodes without consumers.
    An output node that also feeds other nodes gets its d(loss)/d(activation)
    from the chain rule over those consumers, and its seed is ignored.
    """

    def __init__(self, nodes, ground_truths, loss_function=mse, loss_derivative=mse_derivative):
        self.output_nodes = list(nodes)
        self.training_ground_truths = _as_rows(ground_truths, len(self.output_nodes), "ground truths")
        self.loss_function = loss_function
        self.loss_derivative = loss_derivative

    @property
    def rows(self):
        return len(self.training_ground_truths)

    def ground_truths(self, iteration):
        """Return node id -> expected activation for ``iteration`` (wrapping like InputLayer)."""
        row = self.training_ground_truths[iteration % self.rows]
        return {node.id: float(val) for node, val in zip(self.output_nodes, row)}

    def calculate_iter_loss(self, iteration):
        """
        Evaluate the output nodes and return the loss for one iteration.

        InputLayer.set_iteration must have been called with the same
        iteration first.
        """
        truths = self.ground_truths(iteration)
        activations = [node.activation() for node in self.output_nodes]
        for node, activation in zip(self.output_nodes, activations):
            logger.debug("%s activation %.6f ground truth %.6f", node.id, activation, truths[node.id])
        return self.loss_function(activations, [truths[node.id] for node in self.output_nodes])

    def seed(self, iteration, token):
        """
        Build the backward pass seed from the last computed activations.

        Args:
            iteration: Training iteration, selects the ground truth row
            token: Backward pass token (see Graph.next_iteration)
        """
        truths = self.ground_truths(iteration)
        count = len(self.output_nodes)
        nodes = {node.id: node for node in self.output_nodes}
        return Seed.from_callback(
            token, truths,
            lambda node_id: self.loss_derivative(nodes[node_id].last_activation(), truths[node_id], count),
        )


class NetworkConfig:
    """
    Training hyperparameters.

    Args:
        learning_rate: Gradient descent step size (default: 0.0001)
    """

    def __init__(self, learning_rate=DEFAULT_LEARNING_RATE):
        self.learning_rate = learning_rate

    def __repr__(self):
        return f"NetworkConfig(learning_rate={self.learning_rate})"


class Network:
    """
    A node graph together with its training data.

    Example:
        >>> from scalargraph.engine import Graph
        >>> g = Graph(seed=0)
        >>> a, b = g.create_input("a"), g.create_input("b")
        >>> s = g.create_sum("s")
        >>> g.connect(a, s, 0.0)
        0.0
        >>> g.connect(b, s, 0.0)
        0.0
        >>> net = Network(g,
        ...               InputLayer([a, b], [1.0, 2.0, 3.0, 1.0]),
        ...               OutputLayer([s], [5.0, 5.0]),
        ...               NetworkConfig(learning_rate=0.01))
        >>> losses = net.train(epochs=200)
    """

    def __init__(self, graph, input_layer, output_layer, config=None):
        if input_layer.rows != output_layer.rows:
            raise ValueError(f"{input_layer.rows} input rows but {output_layer.rows} ground truth rows")
        self.graph = graph
        self.input_layer = input_layer
        self.output_layer = output_layer
        self.network_config = config if config is not None else NetworkConfig()

    def set_network_config(self, config):
        self.network_config = config

    def train_iteration(self, iteration):
        """
        One gradient descent step on training row ``iteration``.

        Sets the inputs, runs the forward pass and loss, the backward pass
        from every source node, then updates every weight.

        Returns:
            The loss before the update
        """
        self.input_layer.set_iteration(iteration)
        loss = self.output_layer.calculate_iter_loss(iteration)

        seed = self.output_layer.seed(iteration, self.graph.next_iteration())
        self.graph.backward(seed)
        self.graph.apply_updates(learning_rate=self.network_config.learning_rate)

        logger.debug("iteration %d: loss = %.6f", iteration, loss)
        return loss

    def train_one_epoch(self):
        """Go through every training row once; returns the mean loss."""
        losses = [self.train_iteration(i) for i in range(self.input_layer.rows)]
        return float(np.mean(losses))

    def train(self, epochs=1):
        """Run ``epochs`` epochs; returns the mean loss of each."""
        history = []
        for epoch in range(epochs):
            loss = self.train_one_epoch()
            logger.info("epoch %d: mean loss = %.6f", epoch, loss)
            history.append(loss)
        return history

    def calc_avg_training_loss(self):
        """Mean loss over the whole training set, without updating weights."""
        losses = []
        for i in range(self.input_layer.rows):
            self.input_layer.set_iteration(i)
            losses.append(self.output_layer.calculate_iter_loss(i))
        return float(np.mean(losses))

    def __repr__(self):
        inputs = ", ".join(n.id for n in self.input_layer.input_nodes)
        outputs = ", ".join(n.id for n in self.output_layer.output_nodes)
        return f"Network[{inputs}] → [{outputs}] ({self.network_config})"
