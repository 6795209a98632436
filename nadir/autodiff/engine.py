# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Reverse Accumulation Engine

Shared by the symbolic (graph-expanding) and numeric (value-level) front
ends. The engine never looks at values itself; it is parameterised by:

- a derivative rule: (node, output_gradient) -> operand gradients
- an ``add`` used to accumulate contributions arriving at one node

Gradient bookkeeping lives in a reverse-adjacency index built once per
call, never on the nodes themselves. Each node's gradient source is a
tagged variant: ``Computed(rule)`` sums the contributions of its consumers
and pushes the result through ``rule``; ``Supplied(value)`` replaces the
node's gradient with an externally given value.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Union
import heapq

from ..core.graph import Graph
from ..core.node import Node
from ..errors import MissingGradientRuleError

Rule = Callable[[Node, Any], list]


@dataclass(frozen=True)
class Computed:
    """Gradient derived from the consumers, propagated with ``rule``."""

    rule: Rule


@dataclass(frozen=True)
class Supplied:
    """Gradient given by the caller; consumer contributions are ignored."""

    value: Any


GradientSource = Union[Computed, Supplied]


class ReverseAccumulator:
    """
    Reverse-mode accumulation over one graph.

    Nodes become ready once every consumer inside the differentiated
    subgraph has contributed to them; among ready nodes the one created
    last is processed first, so accumulation order is deterministic.

    Args:
        graph: Graph to differentiate. Nodes appended while the engine
            runs (e.g. by symbolic rules) are not part of the index.
        rule: Derivative rule shared by all Computed nodes.
        add: Accumulates two contributions.
        on_final: Optional callback (node, gradient) for each finalised node.
    """

    def __init__(
        self,
        graph: Graph,
        rule: Rule,
        add: Callable[[Any, Any], Any],
        on_final: Optional[Callable[[Node, Any], None]] = None,
    ):
        self.graph = graph
        self.rule = rule
        self.add = add
        self.on_final = on_final
        self._consumers = graph.consumers()
        self.reachable: set[int] = set()
        self.gradients: dict[int, Any] = {}

    def _descendants(self, nodes: Iterable[Node]) -> set[int]:
        seen: set[int] = set()
        stack = list(nodes)
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            stack.extend(self._consumers.get(node.id, ()))
        return seen

    def subgraph(self, seeds: Iterable[Node], wrt: Optional[Iterable[Node]] = None) -> set[int]:
        """
        Ids of the nodes gradients flow through: ancestors of a seed, and
        when ``wrt`` is given, descendants of one of the targets as well.
        """
        ids: set[int] = set()
        for seed in seeds:
            ids |= {n.id for n in self.graph.ancestors(seed)}
        if wrt is not None:
            ids &= self._descendants(wrt)
        return ids

    def source_of(self, node: Node, supplied: dict[int, Any]) -> GradientSource:
        if node.id in supplied:
            return Supplied(supplied[node.id])
        return Computed(self.rule)

    def check(self, node: Node, supplied: bool, reachable: set[int]) -> None:
        """
        Raise MissingGradientRuleError if a gradient cannot be pushed
        through ``node`` to the operands in ``reachable``.
        """
        if node.is_leaf or node.op.differentiable:
            return
        if not supplied:
            raise MissingGradientRuleError(node.op_name, node.name)
        # A supplied gradient passes through a rule-less op unchanged,
        # which is only meaningful for operands of the node's own shape.
        for operand in node.operands:
            if operand.id in reachable and operand.shape != node.shape:
                raise MissingGradientRuleError(node.op_name, node.name)

    def _propagate(self, node: Node, grad: Any, source: GradientSource) -> list:
        self.check(node, isinstance(source, Supplied), self.reachable)
        if node.op.differentiable:
            return list(self.rule(node, grad))
        return [grad] * node.num_operands()

    def run(
        self,
        cost: Optional[Node] = None,
        seed: Any = None,
        supplied: Optional[dict[int, Any]] = None,
        wrt: Optional[Iterable[Node]] = None,
    ) -> dict[int, Any]:
        """
        Accumulate gradients from the cost and any supplied seeds.

        Args:
            cost: Cost node, seeded with ``seed`` (may be None when only
                supplied gradients drive the pass).
            seed: Initial gradient of the cost.
            supplied: Node id -> externally supplied gradient.
            wrt: Restrict the pass to paths starting at these nodes.

        Returns:
            Node id -> final gradient for every node in the subgraph.
        """
        supplied = dict(supplied or {})
        seeds = [] if cost is None else [cost]
        seeds.extend(n for n in self.graph.nodes if n.id in supplied)

        self.reachable = self.subgraph(seeds, wrt)
        self.gradients = {}
        by_id = {n.id: n for n in self.graph.nodes if n.id in self.reachable}

        pending: dict[int, int] = {node_id: 0 for node_id in self.reachable}
        for node_id in self.reachable:
            for consumer in self._consumers.get(node_id, ()):
                if consumer.id in self.reachable:
                    pending[node_id] += 1

        accumulators: dict[int, Any] = {}
        if cost is not None and cost.id in self.reachable:
            accumulators[cost.id] = seed

        ready = [-node_id for node_id, count in pending.items() if count == 0]
        heapq.heapify(ready)

        while ready:
            node = by_id[-heapq.heappop(ready)]
            source = self.source_of(node, supplied)
            if isinstance(source, Supplied):
                grad = source.value
            else:
                grad = accumulators.pop(node.id)

            self.gradients[node.id] = grad
            if self.on_final is not None:
                self.on_final(node, grad)

            if node.is_leaf:
                continue

            contributions = self._propagate(node, grad, source)
            for operand, contribution in zip(node.operands, contributions):
                if operand.id not in self.reachable:
                    continue
                if operand.id not in supplied:
                    if operand.id in accumulators:
                        accumulators[operand.id] = self.add(accumulators[operand.id], contribution)
                    else:
                        accumulators[operand.id] = contribution
                pending[operand.id] -= 1
                if pending[operand.id] == 0:
                    heapq.heappush(ready, -operand.id)

        return self.gradients
