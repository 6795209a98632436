# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Graph to Tape Compiler

Turns a graph into a Program plus a LocationMap:

1. Validate: acyclic, every shape resolved, accelerator only requested for
   operations that have a kernel
2. Schedule: Kahn's algorithm, ties broken by node creation order
3. Place: each operation on the accelerator or the host
4. Allocate: linear scan over slots, reusing a slot once every consumer
   of its value has been emitted
5. Transfer: a DeviceTransferManager in planning mode emits one Transfer
   the first time a value is needed on a new device

Compilation is deterministic: the same graph and config always yield the
same program.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Optional
import heapq
import logging

from ..core.graph import Graph
from ..core.node import Node
from ..core.types import Device
from ..errors import CompileError
from .config import MachineConfig
from .program import Execute, LoadLeaf, LocationMap, Program, Slot, Transfer
from .transfer import DeviceTransferManager

logger = logging.getLogger("nadir.runtime.compiler")


class SlotAllocator:
    """Per-device free lists; the lowest free index is reused first."""

    def __init__(self):
        self._free: dict[Device, list[int]] = defaultdict(list)
        self._count: dict[Device, int] = {}

    def allocate(self, device: Device) -> Slot:
        free = self._free[device]
        if free:
            return Slot(device, heapq.heappop(free))
        index = self._count.get(device, 0)
        self._count[device] = index + 1
        return Slot(device, index)

    def free(self, slot: Slot) -> None:
        heapq.heappush(self._free[slot.device], slot.index)

    def counts(self) -> dict[Device, int]:
        return {d: self._count[d] for d in Device if d in self._count}


def _validate(graph: Graph, order: list[Node], config: MachineConfig) -> None:
    for node in order:
        if node.shape is None or node.shape.is_dynamic():
            raise CompileError(
                f"shape of '{node.name}' is not resolved ({node.shape})",
                reason=CompileError.UNRESOLVED_SHAPE,
                node_name=node.name,
            )
        if (
            not node.is_leaf
            and node.id in config.use_accelerator_for
            and not node.op.supports_accelerator
        ):
            raise CompileError(
                f"'{node.name}' requests the accelerator but {node.op_name} has no kernel",
                reason=CompileError.UNSUPPORTED_DEVICE,
                node_name=node.name,
                suggestions=[
                    f"Remove '{node.name}' from use_accelerator_for",
                    "Use accelerate_all to place only supported operations",
                ],
            )


def place(node: Node, config: MachineConfig) -> Device:
    """Device an operation node runs on."""
    if config.wants_accelerator(node) and node.op.supports_accelerator:
        return Device.GPU
    return Device.CPU


def compile(graph: Graph, config: Optional[MachineConfig] = None) -> tuple[Program, LocationMap]:
    """
    Compile a graph into an instruction tape.

    Args:
        graph: Graph to compile.
        config: Placement options (use_accelerator_for, accelerate_all,
            force_host). Defaults to an all-host config.

    Returns:
        (program, location_map)

    Raises:
        CompileError: On a cycle, an unresolved shape or an accelerator
            request for an operation without a kernel. Nothing is emitted.
    """
    config = config if config is not None else MachineConfig()
    config.validate()

    order = graph.topological_order()
    _validate(graph, order, config)

    retained = {n.id for n in graph.terminals()} | {n.id for n in graph.outputs}
    remaining = {node_id: len(users) for node_id, users in graph.consumers().items()}

    allocator = SlotAllocator()
    instructions: list = []
    locations: dict[int, dict[Device, Slot]] = defaultdict(dict)

    def allocate(node: Node, device: Device) -> Slot:
        slot = allocator.allocate(device)
        locations[node.id][device] = slot
        return slot

    def emit_transfer(node: Node, src: Slot, dst: Slot) -> None:
        instructions.append(Transfer(node, src, dst))

    transfers = DeviceTransferManager(
        allocate, emit_transfer, free=allocator.free, force_host=config.force_host
    )

    for node in order:
        if node.is_leaf:
            continue

        device = place(node, config)
        for operand in node.operands:
            if operand.is_leaf and not transfers.residency(operand):
                slot = allocate(operand, Device.CPU)
                instructions.append(LoadLeaf(operand, slot))
                transfers.register(operand, Device.CPU, slot)

        srcs = tuple(transfers.resolve(operand, device) for operand in node.operands)
        dst = allocate(node, device)
        kernel = node.op.kernel_name(node.dtype) if device is Device.GPU else None
        instructions.append(Execute(node, node.op, srcs, dst, device, kernel))
        transfers.register(node, device, dst)

        for operand in node.operands:
            remaining[operand.id] -= 1
            if remaining[operand.id] == 0 and operand.id not in retained:
                transfers.release(operand)

    program = Program(
        graph=graph,
        instructions=tuple(instructions),
        order=tuple(order),
        retained=frozenset(retained),
        slot_counts=allocator.counts(),
    )
    logger.debug(
        f"Compiled '{graph.name}': {len(program)} instructions, "
        f"{program.count(Transfer)} transfers, slots {dict(program.slot_counts)}"
    )
    config.trace(
        f"compiled {len(program)} instructions",
        component="compiler",
        transfers=program.count(Transfer),
    )
    return program, LocationMap(locations)
