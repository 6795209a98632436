# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Node

Represents a single value in the computation graph: either a leaf (input)
or the result of applying an operation to operand nodes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, TYPE_CHECKING
import itertools

from .types import DataType, Shape

if TYPE_CHECKING:
    from ..ops.base import Operation


# Node ID counter. Ids follow creation order and break scheduling ties.
_node_id_counter = itertools.count()


@dataclass(eq=False)
class Node:
    """
    A value node in the computation graph.

    Nodes only reference their operands; consumers are derived by the graph
    on demand, so there are no back-pointers. Equality and hashing are by
    identity.
    """

    op: Optional["Operation"] = None
    operands: tuple = field(default_factory=tuple)
    shape: Optional[Shape] = None
    dtype: DataType = DataType.Float64
    name: str = ""

    # Auto-generated ID
    id: int = field(default_factory=lambda: next(_node_id_counter), init=False)

    def __post_init__(self):
        self.operands = tuple(self.operands)
        self.shape = Shape.of(self.shape)
        if not self.name:
            self.name = f"n{self.id}"

    @property
    def is_leaf(self) -> bool:
        """Leaves have no producing operation."""
        return self.op is None

    @property
    def op_name(self) -> str:
        return self.op.name if self.op is not None else "leaf"

    def num_operands(self) -> int:
        return len(self.operands)

    def is_scalar(self) -> bool:
        return self.shape is not None and self.shape.is_scalar()

    def describe(self) -> dict[str, Any]:
        """Debug description used by program dumps."""
        return {
            "id": self.id,
            "name": self.name,
            "op": self.op_name,
            "shape": None if self.shape is None else list(self.shape.dims),
            "dtype": self.dtype.name,
            "operands": [o.name for o in self.operands],
        }

    def __repr__(self) -> str:
        if self.is_leaf:
            return f"Node({self.name}, shape={self.shape})"
        args = ", ".join(o.name for o in self.operands)
        return f"Node({self.name} = {self.op_name}({args}), shape={self.shape})"
