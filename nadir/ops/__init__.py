# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Operations

A deliberately small operator catalogue, enough to drive the runtime:
- math_ops: Add, Sub, Mul, Div, Pow, Neg, Square, Cube, Exp, Log, Floor
- reduction_ops: Sum, Expand
- shape_ops: Slice, SliceGrad, Transpose, MatMul
"""

from .base import Operation, unbroadcast
from .registry import OperatorRegistry
from .reduction_ops import Sum, Expand
from .math_ops import (
    ElementwiseBinary,
    ElementwiseUnary,
    Add,
    Sub,
    Mul,
    Div,
    Pow,
    Neg,
    Square,
    Cube,
    Exp,
    Log,
    Floor,
)
from .shape_ops import Slice, SliceGrad, Transpose, MatMul

__all__ = [
    "Operation",
    "OperatorRegistry",
    "unbroadcast",
    "ElementwiseBinary",
    "ElementwiseUnary",
    "Add",
    "Sub",
    "Mul",
    "Div",
    "Pow",
    "Neg",
    "Square",
    "Cube",
    "Exp",
    "Log",
    "Floor",
    "Sum",
    "Expand",
    "Slice",
    "SliceGrad",
    "Transpose",
    "MatMul",
]
