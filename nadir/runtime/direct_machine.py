# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Direct Machine

Walks the graph without a compile step. The forward pass visits nodes in
topological order and asks the transfer manager for each operand on the
device the node runs on; the reverse pass then accumulates gradients on
the host from the cost and from any manual gradients.
"""

from __future__ import annotations

from typing import Any, Optional
import itertools

import numpy as np

from ..autodiff import numeric
from ..backends import BaseBackend
from ..core.graph import Graph
from ..core.node import Node
from ..core.types import Device
from ..errors import ConfigurationError, DisconnectedGradientError, ShapeMismatchError
from ..kernels import KernelRegistry
from .compiler import place
from .config import MachineConfig
from .machine import Machine
from .program import Slot
from .transfer import DeviceTransferManager


class DirectMachine(Machine):
    """
    Graph-walking executor with inline reverse mode.

    Args:
        graph: Graph to execute.
        config: Run configuration.
        cost: Optional node to differentiate. Without it, a reverse pass
            only runs when manual gradients are configured.
        wrt: Nodes to take gradients for. Defaults to every leaf that was
            not added with ``Graph.constant``; paths that start only at
            constants are never differentiated.
        accelerator: Accelerator backend.
        kernels: Kernel registry owned by this machine.
    """

    component = "direct"

    def __init__(
        self,
        graph: Graph,
        config: Optional[MachineConfig] = None,
        cost: Optional[Node] = None,
        wrt: Optional[list[Node]] = None,
        accelerator: Optional[BaseBackend] = None,
        kernels: Optional[KernelRegistry] = None,
    ):
        super().__init__(config, accelerator, kernels)
        self.graph = graph
        self.cost = cost
        self.wrt = list(wrt) if wrt is not None else graph.variables()
        self._buffers: dict[Slot, Any] = {}
        self._handles = itertools.count()
        self.transfer_manager = DeviceTransferManager(
            self._allocate, self._move, self._free, force_host=self.config.force_host
        )
        self.watched_gradients: dict[Node, np.ndarray] = {}
        self._feeds: dict[int, Any] = {}
        self._gradients: Optional[dict[int, np.ndarray]] = None
        self._ran = False

    def _allocate(self, node: Node, device: Device) -> Slot:
        return Slot(device, next(self._handles))

    def _move(self, node: Node, src: Slot, dst: Slot) -> None:
        self._buffers[dst] = self._copy(node, self._buffers[src], src.device, dst.device)

    def _free(self, slot: Slot) -> None:
        self._release(self._buffers.pop(slot, None), slot.device)

    def _reset(self) -> None:
        for slot in list(self._buffers):
            self._free(slot)
        self.transfer_manager.reset()
        self.watched = {}
        self.watched_gradients = {}
        self._gradients = None
        self._ran = False

    def _place(self, node: Node) -> Device:
        device = place(node, self.config)
        requested = self.config.wants_accelerator(node)
        if requested and not node.op.supports_accelerator:
            self._trace(f"{node.name}: {node.op_name} has no kernel, running on host", node=node.name)
        return device

    def _load_leaf(self, node: Node) -> None:
        slot = self._allocate(node, Device.CPU)
        self._buffers[slot] = self._leaf_value(self.graph, node, self._feeds)
        self.transfer_manager.register(node, Device.CPU, slot)
        if self.config.is_watched(node):
            self.watched[node] = np.array(self._buffers[slot], copy=True)

    def _forward(self, node: Node) -> None:
        device = self._place(node)
        inputs = []
        for operand in node.operands:
            if operand.is_leaf and not self.transfer_manager.residency(operand):
                self._load_leaf(operand)
            slot = self.transfer_manager.resolve(operand, device)
            buffer = self._buffers[slot]
            actual = self.backend_for(slot.device).shape_of(buffer)
            if actual != operand.shape.dims:
                raise ShapeMismatchError(operand.shape.dims, actual, operand.name)
            inputs.append(buffer)

        kernel = node.op.kernel_name(node.dtype) if device is Device.GPU else None
        self._trace(f"eval {node.name} = {node.op!r}", node=node.name, device=str(device))
        result = self._execute(node, node.op, device, kernel, inputs)

        slot = self._allocate(node, device)
        self._buffers[slot] = result
        self.transfer_manager.register(node, device, slot)
        if self.config.is_watched(node):
            self.watched[node] = self._to_host(node, result, device)

    def _host_value(self, node: Node) -> np.ndarray:
        return self._buffers[self.transfer_manager.resolve(node, Device.CPU)]

    def _supplied(self) -> dict[int, np.ndarray]:
        by_id = {n.id: n for n in self.graph.nodes}
        supplied = {}
        for node_id, value in self.config.manual_gradients.items():
            if node_id not in by_id:
                raise ConfigurationError(
                    f"manual gradient given for node {node_id}, which is not in graph '{self.graph.name}'",
                    config_key="manual_gradients",
                )
            supplied[node_id] = numeric.as_gradient(by_id[node_id], value)
        return supplied

    def _on_gradient(self, node: Node, grad: np.ndarray) -> None:
        self._trace(f"grad {node.name}", node=node.name)
        if self.config.is_watched(node):
            self.watched_gradients[node] = np.array(grad, copy=True)

    def run_all(self, feeds: Optional[dict] = None) -> None:
        """
        Forward pass, then a reverse pass when there is something to
        differentiate.

        Raises:
            MissingKernelError, DeviceTransferError, OperationFailedError,
            ShapeMismatchError, MissingGradientRuleError
        """
        self._reset()
        self._feeds = self._normalize_feeds(feeds)

        for node in self.graph.topological_order():
            if not node.is_leaf:
                self._forward(node)
        self._ran = True

        if self.cost is None and not self.config.manual_gradients:
            return

        supplied = self._supplied()
        if self.cost is not None and not self.transfer_manager.residency(self.cost):
            self._load_leaf(self.cost)
        engine = numeric.gradients(
            self.graph,
            self._host_value,
            cost=self.cost,
            supplied=supplied,
            wrt=self.wrt,
            on_final=self._on_gradient,
        )
        self._gradients = engine.gradients

    def value(self, node: Node) -> np.ndarray:
        """
        Host copy of a node's forward value from the last run.

        Raises:
            KeyError: If the machine has not run or the node has no value.
        """
        if not self._ran:
            raise KeyError("The machine has not run yet")
        residency = self.transfer_manager.residency(node)
        if not residency:
            if node.is_leaf:
                return np.array(self._leaf_value(self.graph, node, self._feeds), copy=True)
            raise KeyError(f"'{node.name}' has no value")
        device = Device.CPU if Device.CPU in residency else next(iter(residency))
        slot = self.transfer_manager.slot(node, device)
        return self._to_host(node, self._buffers[slot], device)

    def gradient(self, node: Node) -> np.ndarray:
        """
        Final gradient of a node from the last reverse pass.

        Raises:
            KeyError: If no reverse pass has run.
            DisconnectedGradientError: If the node does not reach the cost
                (or any node with a manual gradient).
        """
        if self._gradients is None:
            raise KeyError("No reverse pass has run")
        if node.id not in self._gradients:
            cost_name = self.cost.name if self.cost is not None else None
            raise DisconnectedGradientError(node.name, cost_name)
        return np.array(self._gradients[node.id], copy=True)

    def __repr__(self) -> str:
        return f"DirectMachine(graph='{self.graph.name}', nodes={len(self.graph)})"
