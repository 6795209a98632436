# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Virtual Accelerator Backend

An accelerator that lives in-process but keeps its own address space:
buffers are opaque DeviceBuffer handles that host code cannot read, so any
value used on the wrong side of the boundary fails loudly instead of
silently working. Kernels are Python callables registered by name.

Used for tests and for machines without a GPU. Supports failure injection
(transfers, availability) and an optional memory capacity.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence
import itertools
import logging

import numpy as np

from ..core.types import DataType, Device, Shape, dtype_to_numpy
from .base import (
    BackendError,
    BackendExecutionError,
    BackendMemoryError,
    BackendNotAvailableError,
    BaseBackend,
)

logger = logging.getLogger("nadir.backends.virtual")

_buffer_ids = itertools.count()


@dataclass(eq=False)
class DeviceBuffer:
    """Opaque handle to accelerator memory."""

    _data: np.ndarray = field(repr=False)
    device_id: int = 0
    id: int = field(default_factory=lambda: next(_buffer_ids))

    @property
    def shape(self) -> tuple:
        return self._data.shape

    @property
    def dtype(self) -> np.dtype:
        return self._data.dtype

    @property
    def nbytes(self) -> int:
        return self._data.nbytes

    def __array__(self, *args, **kwargs):
        raise BackendError("Accelerator memory is not host accessible; transfer it first")

    def __repr__(self) -> str:
        return f"DeviceBuffer(gpu:{self.device_id}, id={self.id}, shape={self.shape})"


class VirtualAccelerator(BaseBackend):
    """
    Simulated accelerator with a separate address space.

    Args:
        device_id: Device index.
        capacity_bytes: Optional limit on bytes held at once.
        available: Whether the device reports itself as present.
        fail_transfers: Make every copy in or out of the device fail.
    """

    def __init__(
        self,
        device_id: int = 0,
        capacity_bytes: Optional[int] = None,
        available: bool = True,
        fail_transfers: bool = False,
    ):
        super().__init__(device_id)
        self.capacity_bytes = capacity_bytes
        self.available = available
        self.fail_transfers = fail_transfers
        self._kernels: dict[str, Callable[..., np.ndarray]] = {}
        self._live: dict[int, int] = {}
        self.transfer_count = 0
        self.bytes_transferred = 0
        self.launch_count = 0

    @property
    def name(self) -> str:
        return "virtual"

    @property
    def device(self) -> Device:
        return Device.GPU

    def is_available(self) -> bool:
        return self.available

    def _do_cleanup(self) -> None:
        self._live.clear()

    @property
    def allocated_bytes(self) -> int:
        return sum(self._live.values())

    def _wrap(self, array: np.ndarray) -> DeviceBuffer:
        array = np.array(array, copy=True)
        if self.capacity_bytes is not None and self.allocated_bytes + array.nbytes > self.capacity_bytes:
            raise BackendMemoryError(
                f"out of device memory: {self.allocated_bytes} + {array.nbytes} "
                f"> {self.capacity_bytes} bytes"
            )
        buf = DeviceBuffer(array, self._device_id)
        self._live[buf.id] = array.nbytes
        return buf

    def release(self, buffer: DeviceBuffer) -> None:
        """Return a buffer's memory to the device."""
        self._live.pop(buffer.id, None)

    def _check_copy(self) -> None:
        if not self.available:
            raise BackendNotAvailableError(f"{self.name}:{self._device_id} is not available")
        if self.fail_transfers:
            raise BackendMemoryError("injected transfer failure")

    def to_device(self, array: np.ndarray) -> DeviceBuffer:
        self._check_copy()
        buf = self._wrap(np.asarray(array))
        self.transfer_count += 1
        self.bytes_transferred += buf.nbytes
        return buf

    def to_host(self, buffer: DeviceBuffer) -> np.ndarray:
        self._check_copy()
        if not isinstance(buffer, DeviceBuffer):
            raise BackendError(f"Not a device buffer: {type(buffer).__name__}")
        self.transfer_count += 1
        self.bytes_transferred += buffer.nbytes
        return np.array(buffer._data, copy=True)

    def register_kernel(self, name: str, binary: Any) -> None:
        if not callable(binary):
            raise BackendError(
                f"Virtual kernels must be callables, got {type(binary).__name__}"
            )
        self._kernels[name] = binary
        logger.debug(f"Loaded kernel {name} on {self.name}:{self._device_id}")

    def has_kernel(self, name: str) -> bool:
        return name in self._kernels

    def execute_named(
        self,
        name: str,
        inputs: Sequence[Any],
        out_shape: Shape,
        out_dtype: DataType,
    ) -> DeviceBuffer:
        if not self.available:
            raise BackendNotAvailableError(f"{self.name}:{self._device_id} is not available")
        if name not in self._kernels:
            raise BackendExecutionError(f"Kernel '{name}' is not loaded")

        arrays = []
        for buf in inputs:
            if not isinstance(buf, DeviceBuffer):
                raise BackendExecutionError(
                    f"Kernel '{name}' received a host buffer {type(buf).__name__}"
                )
            arrays.append(buf._data)

        result = np.asarray(self._kernels[name](*arrays), dtype=dtype_to_numpy(out_dtype))
        if result.shape != tuple(out_shape.dims):
            raise BackendExecutionError(
                f"Kernel '{name}' produced shape {result.shape}, expected {tuple(out_shape.dims)}"
            )
        self.launch_count += 1
        return self._wrap(result)
