# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tape Machine

Executes a compiled Program strictly in order. Each run gets fresh
register files, one per device, sized from the program's slot counts; the
program and location map themselves are never modified, so several
machines may share them.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from ..backends import BaseBackend
from ..core.node import Node
from ..core.types import Device
from ..errors import ConfigurationError
from ..kernels import KernelRegistry
from .compiler import compile, place
from .config import MachineConfig
from .machine import Machine, logger
from .program import Execute, LoadLeaf, LocationMap, Program, Slot, Transfer


class TapeMachine(Machine):
    """
    Linear instruction-tape executor.

    Example:
        program, locations = compile(graph, MachineConfig.accelerated(y))
        machine = TapeMachine(program, locations, accelerator=VirtualAccelerator())
        machine.load_kernel("cube32", kernel)
        machine.run_all()
        machine.value(y)
    """

    component = "tape"

    def __init__(
        self,
        program: Program,
        location_map: LocationMap,
        config: Optional[MachineConfig] = None,
        accelerator: Optional[BaseBackend] = None,
        kernels: Optional[KernelRegistry] = None,
    ):
        super().__init__(config, accelerator, kernels)
        if self.config.force_host and program.uses_accelerator():
            logger.info(f"Recompiling '{program.graph.name}' for the host")
            program, location_map = compile(program.graph, self.config)
        self._check_config(program)
        self.program = program
        self.locations = location_map
        self.graph = program.graph
        self._registers: Optional[dict[Device, list]] = None
        self._feeds: dict[int, Any] = {}
        self.runs = 0

    def _check_config(self, program: Program) -> None:
        """
        Reject options a compiled program cannot honour.

        Manual gradients are bound when the gradient nodes are built, with
        grad(..., manual=...). Placement is fixed by compile(); a config that
        asks for placement must agree with the program it runs.
        """
        if self.config.manual_gradients:
            raise ConfigurationError(
                "manual_gradients cannot change a compiled program; "
                "pass them to grad(..., manual=...) before compiling",
                config_key="manual_gradients",
            )
        if self.config.force_host:
            return
        if not (self.config.use_accelerator_for or self.config.accelerate_all):
            return
        for instr in program:
            if not isinstance(instr, Execute):
                continue
            wanted = place(instr.node, self.config)
            if instr.device is not wanted:
                raise ConfigurationError(
                    f"'{instr.node.name}' was compiled for {instr.device}, but the "
                    f"configuration places it on {wanted}; compile with the same configuration",
                    config_key="use_accelerator_for",
                    config_value=str(instr.node.id),
                )

    def _reset(self) -> None:
        if self._registers is not None:
            for device, registers in self._registers.items():
                for buffer in registers:
                    self._release(buffer, device)
        self._registers = {d: [None] * n for d, n in self.program.slot_counts.items()}
        self.watched = {}

    def _load(self, slot: Slot) -> Any:
        return self._registers[slot.device][slot.index]

    def _store(self, slot: Slot, value: Any) -> None:
        registers = self._registers[slot.device]
        old = registers[slot.index]
        if old is not None and old is not value:
            self._release(old, slot.device)
        registers[slot.index] = value

    def run_all(self, feeds: Optional[dict] = None) -> None:
        """
        Execute every instruction in order.

        Args:
            feeds: Optional node (or node id) -> value overriding leaf
                bindings for this run only.

        Raises:
            MissingKernelError: An accelerator kernel was never loaded.
            DeviceTransferError: A cross-device copy failed.
            OperationFailedError: A kernel or host routine raised.
            ShapeMismatchError: A leaf or result has the wrong shape.
        """
        self._reset()
        self._feeds = self._normalize_feeds(feeds)
        self.runs += 1

        for pc, instr in enumerate(self.program.instructions):
            self._trace(f"{pc:>4} {instr}", node=instr.node.name, device=str(instr.device))

            if isinstance(instr, LoadLeaf):
                self._store(instr.dst, self._leaf_value(self.graph, instr.node, self._feeds))

            elif isinstance(instr, Transfer):
                buffer = self._copy(
                    instr.node, self._load(instr.src), instr.src.device, instr.dst.device
                )
                self._store(instr.dst, buffer)

            elif isinstance(instr, Execute):
                inputs = [self._load(s) for s in instr.srcs]
                result = self._execute(instr.node, instr.op, instr.device, instr.kernel, inputs)
                self._store(instr.dst, result)
                if self.config.is_watched(instr.node):
                    self.watched[instr.node] = self._to_host(instr.node, result, instr.device)

    def value(self, node: Node) -> np.ndarray:
        """
        Host copy of a node's value after the last run.

        Leaves return their fed or bound value. Other nodes must be retained
        (terminal, or marked with Graph.mark_output).

        Raises:
            KeyError: If the machine has not run or the node is not retained.
        """
        if node.is_leaf:
            value = self._feeds.get(node.id)
            if value is None:
                value = self.graph.value_of(node)
            if value is None:
                raise KeyError(f"Leaf '{node.name}' has no value")
            return np.array(value, copy=True)

        if self._registers is None:
            raise KeyError("The machine has not run yet")
        if node.id not in self.program.retained or node not in self.locations:
            raise KeyError(f"'{node.name}' is not retained; mark it with Graph.mark_output")

        slots = self.locations[node]
        slot = slots.get(Device.CPU) or next(iter(slots.values()))
        return self._to_host(node, self._load(slot), slot.device)

    def __repr__(self) -> str:
        return f"TapeMachine(instructions={len(self.program)}, runs={self.runs})"
