# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Symbolic Reverse Mode

Expands a graph with the nodes that compute gradients, so that the tape
machine can evaluate them as ordinary instructions.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ..core.graph import Graph
from ..core.node import Node
from ..core.types import dtype_to_numpy
from ..errors import DisconnectedGradientError, ShapeMismatchError
from ..ops.math_ops import Add
from .engine import ReverseAccumulator


def _rule(graph: Graph):
    def rule(node: Node, grad: Node) -> list[Node]:
        contributions = node.op.symbolic_backward(graph, node, grad)
        for operand, contribution in zip(node.operands, contributions):
            if contribution.shape != operand.shape:
                raise ShapeMismatchError(operand.shape.dims, contribution.shape.dims, contribution.name)
        return contributions

    return rule


def grad(
    graph: Graph,
    cost: Node,
    *wrt: Node,
    manual: Optional[dict[Any, Any]] = None,
) -> list[Node]:
    """
    Add gradient nodes for ``d cost / d wrt`` to the graph.

    Args:
        graph: Graph holding the cost; gradient nodes are appended to it.
        cost: Node to differentiate. Seeded with ones of its shape.
        *wrt: Target nodes.
        manual: Optional node (or node id) -> gradient value. Each entry is
            bound as a constant and replaces that node's derived gradient.

    Returns:
        One gradient node per target, in the order given. The nodes are
        marked as graph outputs.

    Raises:
        DisconnectedGradientError: If a target does not reach the cost.
        MissingGradientRuleError: If a non-differentiable operation lies on
            a path from a target to the cost.

    Both errors are raised before any node is added to the graph.
    """
    manual_nodes = [
        (key if isinstance(key, Node) else _by_id(graph, key), value)
        for key, value in (manual or {}).items()
    ]

    engine = ReverseAccumulator(
        graph,
        _rule(graph),
        lambda a, b: graph.apply(Add(), a, b),
    )
    manual_ids = {node.id for node, _ in manual_nodes}
    reachable = engine.subgraph([cost] + [node for node, _ in manual_nodes], wrt)
    for target in wrt:
        if target.id not in reachable:
            raise DisconnectedGradientError(target.name, cost.name)
    by_id = {n.id: n for n in graph.nodes if n.id in reachable}
    for node_id in sorted(reachable, reverse=True):
        engine.check(by_id[node_id], node_id in manual_ids, reachable)

    seed = graph.constant(
        np.ones(cost.shape.dims, dtype=dtype_to_numpy(cost.dtype)),
        dtype=cost.dtype,
        name=f"d{cost.name}",
    )
    supplied: dict[int, Node] = {}
    for node, value in manual_nodes:
        supplied[node.id] = graph.constant(
            np.asarray(value, dtype=dtype_to_numpy(node.dtype)),
            dtype=node.dtype,
            name=f"d{node.name}_manual",
        )

    gradients = engine.run(cost=cost, seed=seed, supplied=supplied, wrt=wrt)
    result = [gradients[target.id] for target in wrt]
    graph.mark_output(*result)
    return result


def _by_id(graph: Graph, node_id: int) -> Node:
    for node in graph.nodes:
        if node.id == node_id:
            return node
    raise KeyError(f"No node with id {node_id} in graph '{graph.name}'")
