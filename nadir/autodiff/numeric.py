# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Numeric Reverse Mode

Value-level gradients over host arrays, used by the direct machine after
its forward pass.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import numpy as np

from ..core.graph import Graph
from ..core.node import Node
from ..core.types import Device, dtype_to_numpy
from ..errors import OperationFailedError, ShapeMismatchError
from .engine import ReverseAccumulator


def seed_for(cost: Node) -> np.ndarray:
    """Multiplicative identity of the cost's shape."""
    return np.ones(cost.shape.dims, dtype=dtype_to_numpy(cost.dtype))


def as_gradient(node: Node, value: Any) -> np.ndarray:
    """Coerce a gradient to the node's dtype and check it against its shape."""
    grad = np.asarray(value, dtype=dtype_to_numpy(node.dtype))
    if grad.shape != node.shape.dims:
        raise ShapeMismatchError(node.shape.dims, grad.shape, node.name)
    return grad


def make_rule(value_of: Callable[[Node], np.ndarray]) -> Callable:
    """
    Derivative rule over host values.

    ``value_of`` returns the host value of a node computed by the forward
    pass. Errors raised by an operation's backward routine surface as
    OperationFailedError.
    """

    def rule(node: Node, grad: np.ndarray) -> list[np.ndarray]:
        inputs = [value_of(o) for o in node.operands]
        try:
            contributions = node.op.backward(inputs, value_of(node), grad)
        except Exception as e:
            raise OperationFailedError(
                f"backward: {e}",
                op_name=node.op_name,
                device=str(Device.CPU),
                node_name=node.name,
                input_shapes=[np.shape(x) for x in inputs],
            ) from e
        return [as_gradient(o, c) for o, c in zip(node.operands, contributions)]

    return rule


def gradients(
    graph: Graph,
    value_of: Callable[[Node], np.ndarray],
    cost: Optional[Node] = None,
    supplied: Optional[dict[int, np.ndarray]] = None,
    wrt: Optional[list[Node]] = None,
    on_final: Optional[Callable[[Node, np.ndarray], None]] = None,
) -> ReverseAccumulator:
    """
    Run a numeric reverse pass.

    Returns the accumulator; its ``gradients`` map node ids to final host
    gradients and ``reachable`` holds the ids the pass went through.
    With ``wrt``, only paths that start at one of those nodes are
    differentiated.
    """
    engine = ReverseAccumulator(graph, make_rule(value_of), np.add, on_final=on_final)
    seed = seed_for(cost) if cost is not None else None
    engine.run(cost=cost, seed=seed, supplied=supplied, wrt=wrt)
    return engine
