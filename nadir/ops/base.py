# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Operation Base Classes

An operation is a pure function over operand values producing one value.
Besides the host routine it carries what the runtime needs to place and
differentiate it:

- supports_accelerator / kernel_name: accelerator eligibility and the name of
  the kernel it dispatches to (one kernel per element width, e.g. "cube32")
- backward: numeric derivative rule used by the direct machine
- symbolic_backward: derivative rule that adds gradient nodes to a graph
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence, TYPE_CHECKING

import numpy as np

from ..core.types import DataType, Shape, dtype_bits

if TYPE_CHECKING:
    from ..core.graph import Graph
    from ..core.node import Node


class Operation(ABC):
    """
    Abstract base class for all operations.

    Contract:
    - name: Unique operation name (registry key)
    - arity: Number of operands (None for variadic)
    - compute(): Host routine over numpy arrays
    - backward(): Operand gradients given the output gradient
    - symbolic_backward(): Same, expressed as new graph nodes
    """

    name: str = ""
    arity: Optional[int] = None
    supports_accelerator: bool = False
    differentiable: bool = True

    def check_arity(self, n: int) -> None:
        if self.arity is not None and n != self.arity:
            raise ValueError(f"{self.name} expects {self.arity} operands, got {n}")

    @abstractmethod
    def infer_shape(self, shapes: Sequence[Shape]) -> Shape:
        """Compute the output shape from operand shapes."""

    def infer_dtype(self, dtypes: Sequence[DataType]) -> DataType:
        """Compute the output dtype. Defaults to the first operand's."""
        return dtypes[0]

    @abstractmethod
    def compute(self, *inputs: np.ndarray) -> np.ndarray:
        """Host routine."""

    def kernel_name(self, dtype: DataType) -> str:
        """Name of the accelerator kernel for this element type."""
        return f"{self.name.lower()}{dtype_bits(dtype)}"

    def backward(
        self,
        inputs: Sequence[np.ndarray],
        output: np.ndarray,
        grad: np.ndarray,
    ) -> list[np.ndarray]:
        """Numeric derivative rule: one gradient per operand."""
        raise NotImplementedError(f"{self.name} has no numeric derivative rule")

    def symbolic_backward(
        self,
        graph: "Graph",
        node: "Node",
        grad: "Node",
    ) -> list["Node"]:
        """Symbolic derivative rule: one gradient node per operand."""
        raise NotImplementedError(f"{self.name} has no symbolic derivative rule")

    def params(self) -> tuple:
        """Hyper-parameters that distinguish instances of the same op."""
        return ()

    def __eq__(self, other) -> bool:
        return type(self) is type(other) and self.params() == other.params()

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.params()))

    def __repr__(self) -> str:
        params = self.params()
        if params:
            return f"{self.name}{params}"
        return self.name


def unbroadcast(grad: np.ndarray, shape: Shape) -> np.ndarray:
    """Reduce a gradient computed at output shape back to an operand's shape."""
    if tuple(grad.shape) == tuple(shape.dims):
        return grad
    if shape.is_scalar():
        return np.asarray(grad.sum(), dtype=grad.dtype)
    raise ValueError(f"Cannot reduce gradient of shape {grad.shape} to {shape}")


def elementwise_shape(name: str, shapes: Sequence[Shape]) -> Shape:
    """Same-shape operands, or a scalar broadcast against a tensor."""
    if any(s is None for s in shapes):
        return None
    non_scalar = [s for s in shapes if not s.is_scalar()]
    if not non_scalar:
        return Shape(())
    first = non_scalar[0]
    for other in non_scalar[1:]:
        if other.dims != first.dims:
            raise ValueError(f"{name}: incompatible shapes {first} and {other}")
    return first
