# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Mathematical Operators

Elementwise operations, all of which have accelerator kernels:
- Add, Sub, Mul, Div, Pow: binary, same shape or scalar broadcast
- Neg, Square, Cube, Exp, Log, Floor: unary
"""

from __future__ import annotations

from typing import Sequence, TYPE_CHECKING

import numpy as np

from ..core.types import Shape, dtype_to_numpy
from .base import Operation, elementwise_shape, unbroadcast
from .registry import OperatorRegistry
from .reduction_ops import Sum

if TYPE_CHECKING:
    from ..core.graph import Graph
    from ..core.node import Node


def _reduce_to(graph: "Graph", grad: "Node", operand: "Node") -> "Node":
    """Sum a gradient node down to a scalar operand's shape."""
    if operand.is_scalar() and not grad.is_scalar():
        return graph.apply(Sum(), grad)
    return grad


def _scalar(graph: "Graph", value: float, like: "Node") -> "Node":
    return graph.constant(
        np.asarray(value, dtype=dtype_to_numpy(like.dtype)), dtype=like.dtype
    )


class ElementwiseBinary(Operation):
    """Base class for binary elementwise operations."""

    arity = 2
    supports_accelerator = True

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return elementwise_shape(self.name, shapes)

    def partials(self, a, b, out, grad):
        """Gradients w.r.t. both operands at the output shape."""
        raise NotImplementedError

    def backward(self, inputs, output, grad):
        a, b = inputs
        da, db = self.partials(a, b, output, grad)
        return [
            unbroadcast(np.asarray(da), Shape(np.shape(a))),
            unbroadcast(np.asarray(db), Shape(np.shape(b))),
        ]


class ElementwiseUnary(Operation):
    """Base class for unary elementwise operations."""

    arity = 1
    supports_accelerator = True

    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        return shapes[0]


@OperatorRegistry.register("Add")
class Add(ElementwiseBinary):
    def compute(self, a, b):
        return np.add(a, b)

    def partials(self, a, b, out, grad):
        ones = np.ones_like(out)
        return grad * ones, grad * ones

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        return [_reduce_to(graph, grad, a), _reduce_to(graph, grad, b)]


@OperatorRegistry.register("Sub")
class Sub(ElementwiseBinary):
    def compute(self, a, b):
        return np.subtract(a, b)

    def partials(self, a, b, out, grad):
        ones = np.ones_like(out)
        return grad * ones, -grad * ones

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        return [
            _reduce_to(graph, grad, a),
            _reduce_to(graph, graph.apply(Neg(), grad), b),
        ]


@OperatorRegistry.register("Mul")
class Mul(ElementwiseBinary):
    def compute(self, a, b):
        return np.multiply(a, b)

    def partials(self, a, b, out, grad):
        return grad * b * np.ones_like(out), grad * a * np.ones_like(out)

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        return [
            _reduce_to(graph, graph.apply(Mul(), grad, b), a),
            _reduce_to(graph, graph.apply(Mul(), grad, a), b),
        ]


@OperatorRegistry.register("Div")
class Div(ElementwiseBinary):
    def compute(self, a, b):
        return np.divide(a, b)

    def partials(self, a, b, out, grad):
        return grad / b * np.ones_like(out), -grad * out / b

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        # d(a/b)/db = -(a/b)/b
        db = graph.apply(Neg(), graph.apply(Mul(), grad, graph.apply(Div(), node, b)))
        return [
            _reduce_to(graph, graph.apply(Div(), grad, b), a),
            _reduce_to(graph, db, b),
        ]


@OperatorRegistry.register("Pow")
class Pow(ElementwiseBinary):
    def compute(self, a, b):
        return np.power(a, b)

    def partials(self, a, b, out, grad):
        # float exponent: integer bases reject negative integer powers
        base = np.asarray(a, dtype=np.float64)
        exponent = np.asarray(b, dtype=np.float64)
        return grad * exponent * np.power(base, exponent - 1.0), grad * out * np.log(base)

    def symbolic_backward(self, graph, node, grad):
        a, b = node.operands
        b_minus_one = graph.apply(Sub(), b, _scalar(graph, 1.0, b))
        da = graph.apply(Mul(), grad, graph.apply(Mul(), b, graph.apply(Pow(), a, b_minus_one)))
        db = graph.apply(Mul(), grad, graph.apply(Mul(), node, graph.apply(Log(), a)))
        return [_reduce_to(graph, da, a), _reduce_to(graph, db, b)]


@OperatorRegistry.register("Neg")
class Neg(ElementwiseUnary):
    def compute(self, x):
        return np.negative(x)

    def backward(self, inputs, output, grad):
        return [-grad]

    def symbolic_backward(self, graph, node, grad):
        return [graph.apply(Neg(), grad)]


@OperatorRegistry.register("Square")
class Square(ElementwiseUnary):
    def compute(self, x):
        return np.square(x)

    def backward(self, inputs, output, grad):
        return [grad * 2 * inputs[0]]

    def symbolic_backward(self, graph, node, grad):
        (x,) = node.operands
        two_x = graph.apply(Mul(), _scalar(graph, 2.0, x), x)
        return [graph.apply(Mul(), grad, two_x)]


@OperatorRegistry.register("Cube")
class Cube(ElementwiseUnary):
    def compute(self, x):
        return x * x * x

    def backward(self, inputs, output, grad):
        return [grad * 3 * np.square(inputs[0])]

    def symbolic_backward(self, graph, node, grad):
        (x,) = node.operands
        three_x2 = graph.apply(Mul(), _scalar(graph, 3.0, x), graph.apply(Square(), x))
        return [graph.apply(Mul(), grad, three_x2)]


@OperatorRegistry.register("Exp")
class Exp(ElementwiseUnary):
    def compute(self, x):
        return np.exp(x)

    def backward(self, inputs, output, grad):
        return [grad * output]

    def symbolic_backward(self, graph, node, grad):
        return [graph.apply(Mul(), grad, node)]


@OperatorRegistry.register("Log")
class Log(ElementwiseUnary):
    def compute(self, x):
        return np.log(x)

    def backward(self, inputs, output, grad):
        return [grad / inputs[0]]

    def symbolic_backward(self, graph, node, grad):
        (x,) = node.operands
        return [graph.apply(Div(), grad, x)]


@OperatorRegistry.register("Floor")
class Floor(ElementwiseUnary):
    """Piecewise constant; treated as having no derivative rule."""

    differentiable = False

    def compute(self, x):
        return np.floor(x)
