# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Reduction Operators

- Sum: Reduce every element to a scalar
- Expand: Broadcast a scalar to a fixed shape (the gradient of Sum)

Both run on the host only.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..core.types import Shape, ShapeLike
from .base import Operation
from .registry import OperatorRegistry


@OperatorRegistry.register("Sum")
class Sum(Operation):
    """Full reduction to a scalar."""

    arity = 1

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return Shape(())

    def compute(self, x):
        return np.asarray(np.sum(x), dtype=np.asarray(x).dtype)

    def backward(self, inputs, output, grad):
        (x,) = inputs
        return [np.broadcast_to(grad, np.shape(x)).astype(np.asarray(x).dtype)]

    def symbolic_backward(self, graph, node, grad):
        (x,) = node.operands
        if x.is_scalar():
            return [grad]
        return [graph.apply(Expand(x.shape), grad)]


@OperatorRegistry.register("Expand")
class Expand(Operation):
    """Broadcast a scalar operand to ``shape``."""

    arity = 1

    def __init__(self, shape: ShapeLike = ()):
        self.shape = Shape.of(shape)

    def params(self) -> tuple:
        return (self.shape.dims,)

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        if shapes[0] is not None and not shapes[0].is_scalar():
            raise ValueError(f"Expand needs a scalar operand, got {shapes[0]}")
        return self.shape

    def compute(self, x):
        return np.broadcast_to(x, self.shape.dims).copy()

    def backward(self, inputs, output, grad):
        return [np.asarray(np.sum(grad), dtype=grad.dtype)]

    def symbolic_backward(self, graph, node, grad):
        return [graph.apply(Sum(), grad)]
