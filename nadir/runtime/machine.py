# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Machine Base

Plumbing shared by the tape and direct machines: the host and accelerator
backends, the per-machine kernel registry, operation dispatch, cross-device
copies and the translation of backend failures into runtime errors.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence
import logging

import numpy as np

from ..backends import BackendError, BaseBackend, CPUBackend, default_accelerator, transfer
from ..core.graph import Graph
from ..core.node import Node
from ..core.types import Device, dtype_to_numpy
from ..errors import (
    DeviceTransferError,
    KernelLoadError,
    MissingKernelError,
    NadirRuntimeError,
    OperationFailedError,
    ShapeMismatchError,
)
from ..kernels import KernelRegistry, KernelSpec, standard_kernels
from ..ops.base import Operation
from .config import MachineConfig

logger = logging.getLogger("nadir.runtime")


class Machine:
    """
    Base class for executors.

    Args:
        config: Run configuration (validated on construction).
        accelerator: Accelerator backend. When omitted, one is created on
            first use with default_accelerator().
        kernels: Kernel registry owned by this machine.
    """

    component = "machine"

    def __init__(
        self,
        config: Optional[MachineConfig] = None,
        accelerator: Optional[BaseBackend] = None,
        kernels: Optional[KernelRegistry] = None,
    ):
        self.config = config if config is not None else MachineConfig()
        self.config.validate()
        self.host = CPUBackend()
        self._accelerator = accelerator
        self.kernels = kernels if kernels is not None else KernelRegistry()
        self.watched: dict[Node, np.ndarray] = {}

    @property
    def accelerator(self) -> BaseBackend:
        if self._accelerator is None:
            self._accelerator = default_accelerator()
        return self._accelerator

    def backend_for(self, device: Device) -> BaseBackend:
        return self.host if device.is_host else self.accelerator

    def load_kernel(self, name: str, binary: Any) -> None:
        """
        Load accelerator kernel code under ``name``.

        Raises:
            KernelLoadError: If the accelerator rejects the binary.
        """
        backend = self.accelerator
        try:
            backend.register_kernel(name, binary)
        except BackendError as e:
            raise KernelLoadError(name, str(e)) from e
        self.kernels.register(KernelSpec(name=name, backend=backend.name, binary=binary))
        logger.debug(f"Kernel {name} loaded on {backend.name}")

    def load_standard_kernels(self, names: Optional[Iterable[str]] = None) -> list[str]:
        """Load the built-in elementwise kernels (all, or only ``names``)."""
        library = standard_kernels(self.accelerator)
        wanted = sorted(library) if names is None else [n for n in names if n in library]
        for name in wanted:
            self.load_kernel(name, library[name])
        return wanted

    def _execute(
        self,
        node: Node,
        op: Operation,
        device: Device,
        kernel: Optional[str],
        inputs: Sequence[Any],
    ) -> Any:
        backend = self.backend_for(device)
        if device.is_host:
            try:
                result = np.asarray(
                    backend.execute(op, inputs), dtype=dtype_to_numpy(node.dtype)
                )
            except Exception as e:
                raise OperationFailedError(
                    str(e),
                    op_name=op.name,
                    device=str(device),
                    node_name=node.name,
                    input_shapes=[backend.shape_of(x) for x in inputs],
                ) from e
        else:
            if kernel not in self.kernels:
                raise MissingKernelError(kernel, node.name)
            try:
                result = backend.execute_named(kernel, inputs, node.shape, node.dtype)
            except Exception as e:
                raise OperationFailedError(
                    str(e),
                    op_name=op.name,
                    device=str(device),
                    node_name=node.name,
                    input_shapes=[backend.shape_of(x) for x in inputs],
                ) from e

        shape = backend.shape_of(result)
        if shape != node.shape.dims:
            raise ShapeMismatchError(node.shape.dims, shape, node.name)
        return result

    def _copy(self, node: Node, buffer: Any, source: Device, destination: Device) -> Any:
        try:
            return transfer(buffer, self.backend_for(source), self.backend_for(destination))
        except BackendError as e:
            raise DeviceTransferError(
                str(e), source=str(source), destination=str(destination), node_name=node.name
            ) from e

    def _to_host(self, node: Node, buffer: Any, device: Device) -> np.ndarray:
        if device.is_host:
            return np.array(buffer, copy=True)
        return self._copy(node, buffer, device, Device.CPU)

    def _release(self, buffer: Any, device: Device) -> None:
        if buffer is not None and not device.is_host:
            self.accelerator.release(buffer)

    def _leaf_value(self, graph: Graph, node: Node, feeds: dict[int, Any]) -> np.ndarray:
        """Fed value of a leaf, else its binding, checked against its shape."""
        value = feeds.get(node.id)
        if value is None:
            value = graph.value_of(node)
        if value is None:
            raise NadirRuntimeError(
                f"Leaf '{node.name}' has no value",
                node_name=node.name,
                suggestions=["Bind it with Graph.let() or pass it in feeds"],
            )
        arr = np.asarray(value, dtype=dtype_to_numpy(node.dtype))
        if arr.shape != node.shape.dims:
            raise ShapeMismatchError(node.shape.dims, arr.shape, node.name)
        return arr

    def _normalize_feeds(self, feeds) -> dict[int, Any]:
        return {
            (n.id if isinstance(n, Node) else int(n)): v for n, v in (feeds or {}).items()
        }

    def _trace(self, message: str, **context) -> None:
        self.config.trace(message, component=self.component, **context)
