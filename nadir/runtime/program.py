# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Compiled Program

A Program is an immutable linear list of instructions over slots:

- LoadLeaf: copy a leaf's bound (or fed) value into a host slot
- Execute: run an operation on one device, reading source slots and
  writing a destination slot
- Transfer: copy a node's value from a slot on one device to another

The LocationMap records, per node, the slot holding its value on each
device it was resident on. Both are safe to share between machines.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from ..core.graph import Graph
from ..core.node import Node
from ..core.types import Device
from ..ops.base import Operation


@dataclass(frozen=True)
class Slot:
    """Reusable storage on one device."""

    device: Device
    index: int

    def __str__(self) -> str:
        return f"{self.device}:{self.index}"


@dataclass(frozen=True)
class LoadLeaf:
    node: Node
    dst: Slot

    @property
    def device(self) -> Device:
        return self.dst.device

    def __str__(self) -> str:
        return f"load   {self.node.name} -> {self.dst}"


@dataclass(frozen=True)
class Execute:
    node: Node
    op: Operation
    srcs: tuple
    dst: Slot
    device: Device
    kernel: Optional[str] = None

    def __str__(self) -> str:
        args = ", ".join(str(s) for s in self.srcs)
        target = f" [{self.kernel}]" if self.kernel else ""
        return f"exec   {self.node.name} = {self.op!r}({args}) -> {self.dst}{target}"


@dataclass(frozen=True)
class Transfer:
    node: Node
    src: Slot
    dst: Slot

    @property
    def device(self) -> Device:
        return self.dst.device

    def __str__(self) -> str:
        return f"move   {self.node.name} {self.src} -> {self.dst}"


Instruction = Union[LoadLeaf, Execute, Transfer]


class LocationMap(Mapping):
    """Immutable node id -> {device: slot}."""

    def __init__(self, entries: Mapping[int, Mapping[Device, Slot]]):
        self._entries = MappingProxyType(
            {node_id: MappingProxyType(dict(slots)) for node_id, slots in entries.items()}
        )

    @staticmethod
    def _key(node: Union[Node, int]) -> int:
        return node.id if isinstance(node, Node) else node

    def __getitem__(self, node: Union[Node, int]) -> Mapping[Device, Slot]:
        return self._entries[self._key(node)]

    def __contains__(self, node) -> bool:
        return self._key(node) in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def slot(self, node: Union[Node, int], device: Device) -> Slot:
        return self[node][device]

    def devices(self, node: Union[Node, int]) -> frozenset:
        return frozenset(self[node])

    def __repr__(self) -> str:
        return f"LocationMap(nodes={len(self._entries)})"


@dataclass(frozen=True)
class Program:
    """
    Compiled instruction tape.

    Attributes:
        graph: Source graph (leaf bindings are read from it at run time).
        instructions: Instructions in execution order.
        order: Topological order the tape was built from.
        retained: Ids of nodes whose slots are never reused.
        slot_counts: Number of slots needed per device.
    """

    graph: Graph = field(repr=False)
    instructions: tuple
    order: tuple = field(repr=False)
    retained: frozenset
    slot_counts: Mapping[Device, int]

    def __post_init__(self):
        object.__setattr__(self, "slot_counts", MappingProxyType(dict(self.slot_counts)))

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def __getitem__(self, index: int) -> Instruction:
        return self.instructions[index]

    def kernels(self) -> list[str]:
        """Accelerator kernels the program needs loaded."""
        return sorted({i.kernel for i in self.instructions if isinstance(i, Execute) and i.kernel})

    def uses_accelerator(self) -> bool:
        return self.slot_counts.get(Device.GPU, 0) > 0

    def count(self, kind: type) -> int:
        """Number of instructions of one kind (LoadLeaf, Execute, Transfer)."""
        return sum(1 for i in self.instructions if isinstance(i, kind))

    def __str__(self) -> str:
        lines = [
            f"Program: {self.graph.name or '<graph>'}",
            "  Slots: " + ", ".join(f"{d}={n}" for d, n in self.slot_counts.items()),
            f"  Retained: {sorted(n.name for n in self.order if n.id in self.retained)}",
        ]
        for pc, instr in enumerate(self.instructions):
            lines.append(f"  {pc:>4}  {instr}")
        return "\n".join(lines)
