# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Shape and Linear-Algebra Operators

- Slice: Select one index along the first axis
- SliceGrad: Scatter a slice back into a zero tensor (gradient of Slice)
- Transpose: Swap the axes of a matrix
- MatMul: Matrix product

None of these have accelerator kernels; inside an accelerated graph they run
on the host and the runtime moves their operands as needed.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from ..core.types import Shape, ShapeLike
from .base import Operation
from .registry import OperatorRegistry


@OperatorRegistry.register("Slice")
class Slice(Operation):
    """x[index] along the first axis."""

    arity = 1

    def __init__(self, index: int = 0):
        self.index = int(index)

    def params(self) -> tuple:
        return (self.index,)

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        shape = shapes[0]
        if shape is None:
            return None
        if shape.is_scalar():
            raise ValueError("Cannot slice a scalar")
        if not -shape[0] <= self.index < shape[0]:
            raise ValueError(f"Slice index {self.index} out of range for {shape}")
        return Shape(shape.dims[1:])

    def compute(self, x):
        return np.array(x[self.index])

    def backward(self, inputs, output, grad):
        (x,) = inputs
        out = np.zeros_like(x)
        out[self.index] = grad
        return [out]

    def symbolic_backward(self, graph, node, grad):
        (x,) = node.operands
        return [graph.apply(SliceGrad(self.index, x.shape), grad)]


@OperatorRegistry.register("SliceGrad")
class SliceGrad(Operation):
    """Embed the operand at ``index`` of a zero tensor of ``shape``."""

    arity = 1

    def __init__(self, index: int = 0, shape: ShapeLike = ()):
        self.index = int(index)
        self.shape = Shape.of(shape)

    def params(self) -> tuple:
        return (self.index, self.shape.dims)

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return self.shape

    def compute(self, x):
        out = np.zeros(self.shape.dims, dtype=np.asarray(x).dtype)
        out[self.index] = x
        return out

    def backward(self, inputs, output, grad):
        return [np.array(grad[self.index])]

    def symbolic_backward(self, graph, node, grad):
        return [graph.apply(Slice(self.index), grad)]


@OperatorRegistry.register("Transpose")
class Transpose(Operation):
    arity = 1

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        shape = shapes[0]
        if shape is None:
            return None
        if shape.rank() != 2:
            raise ValueError(f"Transpose expects a matrix, got {shape}")
        return Shape((shape[1], shape[0]))

    def compute(self, x):
        return np.ascontiguousarray(np.transpose(x))

    def backward(self, inputs, output, grad):
        return [np.ascontiguousarray(np.transpose(grad))]

    def symbolic_backward(self, graph, node, grad):
        return [graph.apply(Transpose(), grad)]


@OperatorRegistry.register("MatMul")
class MatMul(Operation):
    arity = 2

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        a, b = shapes
        if a is None or b is None:
            return None
        if a.rank() != 2 or b.rank() != 2 or a[1] != b[0]:
            raise ValueError(f"MatMul: incompatible shapes {a} and {b}")
        return Shape((a[0], b[1]))

    def compute(self, a, b):
        return np.matmul(a, b)

    def backward(self, inputs, output, grad):
        a, b = inputs
        return [np.matmul(grad, np.transpose(b)), np.matmul(np.transpose(a), grad)]

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        return [
            graph.apply(MatMul(), grad, graph.apply(Transpose(), b)),
            graph.apply(MatMul(), graph.apply(Transpose(), a), grad),
        ]
