# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Graph

The intermediate representation consumed by the compiler and the machines:
an acyclic set of value nodes with declared data dependencies.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union
import heapq

import numpy as np

from .types import DataType, Shape, ShapeLike, dtype_from_numpy, dtype_to_numpy
from .node import Node
from ..errors import CompileError


@dataclass
class Graph:
    """
    Computation graph.

    Nodes are appended in creation order. Leaf values are bound with
    ``let``; terminal nodes and nodes passed to ``mark_output`` are the
    graph's readable outputs after a run.

    Example:
        g = Graph(name="cube")
        x = g.leaf((8, 4), DataType.Float32, name="x", value=data)
        y = g.apply("Cube", x)
    """

    name: str = ""
    _nodes: list[Node] = field(default_factory=list, init=False, repr=False)
    _name_to_node: dict[str, Node] = field(default_factory=dict, init=False, repr=False)
    _bindings: dict[int, np.ndarray] = field(default_factory=dict, init=False, repr=False)
    _constants: set[int] = field(default_factory=set, init=False, repr=False)
    outputs: list[Node] = field(default_factory=list)

    def leaf(
        self,
        shape: ShapeLike,
        dtype: DataType = DataType.Float64,
        name: str = "",
        value: Any = None,
    ) -> Node:
        """Add an input node, optionally binding its value."""
        node = self._add(Node(shape=Shape.of(shape), dtype=dtype, name=name))
        if value is not None:
            self.let(node, value)
        return node

    def constant(self, value: Any, dtype: Optional[DataType] = None, name: str = "") -> Node:
        """Add a leaf whose shape and dtype are taken from a bound value."""
        arr = np.asarray(value)
        if dtype is None:
            dtype = dtype_from_numpy(arr.dtype)
        node = self.leaf(arr.shape, dtype, name=name, value=arr)
        self._constants.add(node.id)
        return node

    def is_constant(self, node: Node) -> bool:
        return node.id in self._constants

    def apply(self, op: Union[str, Any], *operands: Node, name: str = "") -> Node:
        """Apply an operation (instance or registered name) to operand nodes."""
        from ..ops import OperatorRegistry

        if isinstance(op, str):
            op = OperatorRegistry.create(op)

        for operand in operands:
            if self._name_to_node.get(operand.name) is not operand:
                raise ValueError(f"Operand {operand.name} does not belong to graph '{self.name}'")

        op.check_arity(len(operands))
        shape = op.infer_shape([o.shape for o in operands])
        dtype = op.infer_dtype([o.dtype for o in operands])
        return self._add(Node(op=op, operands=operands, shape=shape, dtype=dtype, name=name))

    def _add(self, node: Node) -> Node:
        if node.name in self._name_to_node:
            node.name = f"{node.name}_{node.id}"
        self._nodes.append(node)
        self._name_to_node[node.name] = node
        return node

    def let(self, node: Node, value: Any) -> None:
        """Bind a value to a leaf node. Shapes are checked at run time."""
        if not node.is_leaf:
            raise ValueError(f"Cannot bind a value to non-leaf node {node.name}")
        self._bindings[node.id] = np.asarray(value, dtype=dtype_to_numpy(node.dtype))

    def value_of(self, node: Node) -> Optional[np.ndarray]:
        """Get the value bound to a leaf (None if unbound)."""
        return self._bindings.get(node.id)

    def mark_output(self, *nodes: Node) -> None:
        """Keep the value of these nodes readable after a run."""
        for node in nodes:
            if node not in self.outputs:
                self.outputs.append(node)

    def get_node(self, name: str) -> Optional[Node]:
        """Get node by name."""
        return self._name_to_node.get(name)

    @property
    def nodes(self) -> list[Node]:
        """Get all nodes in creation order."""
        return self._nodes

    def leaves(self) -> list[Node]:
        return [n for n in self._nodes if n.is_leaf]

    def variables(self) -> list[Node]:
        """Leaves that were not added with ``constant``."""
        return [n for n in self._nodes if n.is_leaf and n.id not in self._constants]

    def num_nodes(self) -> int:
        return len(self._nodes)

    def consumers(self) -> dict[int, list[Node]]:
        """
        Build the reverse-adjacency index: node id -> consuming nodes.

        A consumer that uses the same operand twice is listed twice, once per
        use, so each use contributes once during differentiation.
        """
        index: dict[int, list[Node]] = defaultdict(list)
        for node in self._nodes:
            for operand in node.operands:
                index[operand.id].append(node)
        return index

    def terminals(self) -> list[Node]:
        """Nodes nothing consumes."""
        consumed = self.consumers()
        return [n for n in self._nodes if not consumed.get(n.id)]

    def topological_order(self, nodes: Optional[Iterable[Node]] = None) -> list[Node]:
        """
        Get nodes in topological order.

        Kahn's algorithm; among ready nodes the one created first goes first,
        so the order is deterministic.

        Raises:
            CompileError: If the graph contains a cycle.
        """
        nodes = list(self._nodes if nodes is None else nodes)
        members = {n.id for n in nodes}
        in_degree: dict[int, int] = {}
        dependents: dict[int, list[Node]] = defaultdict(list)

        for node in nodes:
            deps = [o for o in node.operands if o.id in members]
            in_degree[node.id] = len(deps)
            for dep in deps:
                dependents[dep.id].append(node)

        ready = [(n.id, n) for n in nodes if in_degree[n.id] == 0]
        heapq.heapify(ready)
        order: list[Node] = []

        while ready:
            _, node = heapq.heappop(ready)
            order.append(node)
            for dependent in dependents[node.id]:
                in_degree[dependent.id] -= 1
                if in_degree[dependent.id] == 0:
                    heapq.heappush(ready, (dependent.id, dependent))

        if len(order) != len(nodes):
            stuck = sorted((n for n in nodes if in_degree[n.id] > 0), key=lambda n: n.id)
            raise CompileError(
                f"graph contains a cycle through {[n.name for n in stuck]}",
                reason=CompileError.CYCLE,
                node_name=stuck[0].name,
            )
        return order

    def ancestors(self, node: Node) -> set[Node]:
        """All nodes the given node depends on, including itself."""
        seen: set[Node] = set()
        stack = [node]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(current.operands)
        return seen

    def count_ops(self) -> dict[str, int]:
        """Count nodes by operation type."""
        counts: dict[str, int] = {}
        for node in self._nodes:
            counts[node.op_name] = counts.get(node.op_name, 0) + 1
        return counts

    def summary(self) -> str:
        lines = [
            f"Graph: {self.name}",
            f"  Nodes: {len(self._nodes)}",
            f"  Leaves: {len(self.leaves())}",
            f"  Outputs: {[n.name for n in self.outputs]}",
            "  Operations:",
        ]
        for op, count in self.count_ops().items():
            lines.append(f"    {op}: {count}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"Graph(name='{self.name}', nodes={len(self._nodes)})"
