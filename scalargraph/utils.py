"""
Logging and visualization utilities for scalargraph.

This module provides the logger factory used across the package, and
functions to visualize a node graph, showing activations, cached loss
derivatives and edge weights.
"""

import logging
import sys
from pathlib import Path

from graphviz import Digraph


def get_logger(name=__name__, level=logging.INFO, logfile=None, stream=True):
    """
    Return a named logger writing to stdout (and optionally to a file).

    Handlers are attached only once per logger name, so calling this at the
    top of every module is safe.

    Args:
        name: Logger name, usually the module's ``__name__``
        level: Logging level for the logger
        logfile: Optional path of a log file; parent directories are created
        stream: If False and no logfile is given, attach only a NullHandler
                and leave the level unset, so the application's logging
                configuration decides what is shown (used by the library
                modules themselves)

    Example:
        >>> logger = get_logger("train", logfile="logs/train.log")
        >>> logger.info("epoch %d loss %.4f", 1, 0.25)
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # already configured

    if not stream and not logfile:
        logger.addHandler(logging.NullHandler())
        return logger

    logger.setLevel(level)
    fmt = logging.Formatter(fmt="%(asctime)s | %(levelname)7s | %(name)s | %(message)s",
                            datefmt="%Y-%m-%d %H:%M:%S")

    if stream:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(fmt)
        logger.addHandler(sh)

    if logfile:
        log_dir = Path(logfile).parent
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def _roots(root):
    # A single node exposes producers(); anything else (a Graph, a list of
    # nodes) is iterated.
    if hasattr(root, "producers"):
        return [root]
    return list(root)


def trace(root):
    """
    Collect the nodes and weighted edges feeding into ``root``.

    Walks backwards through each node's inputs, so every producer that
    contributes to ``root`` is included.

    Args:
        root: A node, or an iterable of nodes (a Graph works too)

    Returns:
        tuple: (nodes, edges) where:
            - nodes: set of nodes in the traced subgraph
            - edges: set of (producer, consumer, weight) tuples

    Example:
        >>> from scalargraph.engine import Graph
        >>> g = Graph(seed=0)
        >>> x = g.create_input("x", 2.0)
        >>> s = g.create_sum("s")
        >>> g.connect(x, s, 0.5)
        0.5
        >>> nodes, edges = trace(s)
        >>> len(nodes), len(edges)
        (2, 1)
    """
    nodes, edges = set(), set()
    stack = _roots(root)

    while stack:
        node = stack.pop()
        if node in nodes:
            continue
        nodes.add(node)
        for producer, weight in node.producers():
            edges.add((producer, node, weight))
            stack.append(producer)

    return nodes, edges


def draw_dot(root, format='svg', rankdir='LR'):
    """
    Visualize a node graph as a Graphviz directed graph.

    Each node is drawn as a record holding its id, kind, last activation
    and cached d(loss)/d(activation); each edge is labelled with its weight.

    Args:
        root: A node (draws everything feeding into it), or an iterable of
              nodes such as a whole Graph
        format: Output format ('svg', 'png', 'pdf', etc.)
        rankdir: Graph direction - 'LR' (left-right) or 'TB' (top-bottom)

    Returns:
        Digraph: A graphviz Digraph object that can be rendered or displayed

    Note:
        Rendering to a file requires the Graphviz system binaries; building
        the Digraph and reading ``dot.source`` does not.
    """
    assert rankdir in ['LR', 'TB'], "rankdir must be 'LR' (left-right) or 'TB' (top-bottom)"

    nodes, edges = trace(root)

    dot = Digraph(format=format, graph_attr={'rankdir': rankdir})

    for n in sorted(nodes, key=lambda n: n.handle):
        label = (f'{{ {n.id} | {n.kind} | {{ act {n.last_activation():.4f} '
                 f'| dloss {n.training_state.dloss:.4f} }} }}')
        dot.node(name=str(n.handle), label=label, shape='record')

    for producer, consumer, weight in sorted(edges, key=lambda e: (e[0].handle, e[1].handle)):
        dot.edge(str(producer.handle), str(consumer.handle), label=f'{weight:.4f}')

    return dot
