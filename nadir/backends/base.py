# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Backend Base Classes

This module defines the contract between the runtime and the code that
actually touches memory and runs kernels:

- execute(): run an operation's host routine (host backends)
- register_kernel() / execute_named(): load and launch accelerator kernels
- to_device() / to_host(): move a buffer across the address-space boundary

The runtime only ever talks to backends through this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence, TYPE_CHECKING
import logging

import numpy as np

from ..core.types import DataType, Device, Shape

if TYPE_CHECKING:
    from ..ops.base import Operation

logger = logging.getLogger("nadir.backends")


class BackendError(Exception):
    """Base exception for backend errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a backend is not available."""

    pass


class BackendMemoryError(BackendError):
    """Raised when memory allocation or a copy fails."""

    pass


class BackendExecutionError(BackendError):
    """Raised when execution fails."""

    pass


class BaseBackend(ABC):
    """
    Abstract base class for all backends.

    Contract:
    - name: Unique identifier string
    - device: Device (address space) the backend's buffers live in
    - is_available(): True only if the backend can execute
    - execute(): Host routine of an operation
    - register_kernel()/execute_named(): Named accelerator kernels
    - to_device()/to_host(): Data transfer

    Calls are synchronous: they return once the work is complete.
    """

    def __init__(self, device_id: int = 0):
        self._device_id = device_id
        self._initialized = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the unique identifier for this backend."""

    @property
    @abstractmethod
    def device(self) -> Device:
        """Return the device whose memory this backend manages."""

    @property
    def device_id(self) -> int:
        return self._device_id

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if this backend is available on the current system.

        This method must NOT raise exceptions.
        """

    def initialize(self) -> bool:
        """Initialize the backend. Returns True on success."""
        if self._initialized:
            return True

        if not self.is_available():
            logger.warning(f"Backend {self.name} is not available")
            return False

        success = self._do_initialize()
        self._initialized = success
        if success:
            logger.info(f"Backend {self.name}:{self._device_id} initialized")
        return success

    def _do_initialize(self) -> bool:
        """Backend-specific initialization. Override in subclasses."""
        return True

    def cleanup(self) -> None:
        """Release all resources held by this backend."""
        if not self._initialized:
            return
        self._do_cleanup()
        self._initialized = False
        logger.debug(f"Backend {self.name}:{self._device_id} cleaned up")

    def _do_cleanup(self) -> None:
        """Backend-specific cleanup. Override in subclasses."""
        pass

    def execute(self, op: "Operation", inputs: Sequence[Any]) -> Any:
        """Run an operation's host routine on this backend's buffers."""
        raise BackendExecutionError(f"Backend {self.name} cannot run host routines")

    def register_kernel(self, name: str, binary: Any) -> None:
        """Load kernel code under a name."""
        raise BackendError(f"Backend {self.name} does not load kernels")

    def has_kernel(self, name: str) -> bool:
        return False

    def execute_named(
        self,
        name: str,
        inputs: Sequence[Any],
        out_shape: Shape,
        out_dtype: DataType,
    ) -> Any:
        """Launch a previously registered kernel."""
        raise BackendExecutionError(f"Backend {self.name} has no kernel '{name}'")

    @abstractmethod
    def to_device(self, array: np.ndarray) -> Any:
        """Copy a host array into this backend's memory."""

    @abstractmethod
    def to_host(self, buffer: Any) -> np.ndarray:
        """Copy a buffer of this backend back to a host array."""

    def release(self, buffer: Any) -> None:
        """Give a buffer's memory back. Host memory is garbage collected."""
        pass

    def shape_of(self, buffer: Any) -> tuple:
        return tuple(buffer.shape)

    def synchronize(self) -> None:
        """Wait for all pending operations to complete."""
        pass

    def __enter__(self):
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def __repr__(self) -> str:
        status = "available" if self.is_available() else "unavailable"
        return f"<{self.__class__.__name__}({self.name}:{self._device_id}, {status})>"


def transfer(buffer: Any, source: BaseBackend, destination: BaseBackend) -> Any:
    """
    Copy a buffer from one backend's memory into another's.

    Raises:
        BackendError: If the copy cannot be performed.
    """
    if source is destination:
        return buffer
    if source.device.is_host:
        return destination.to_device(np.asarray(buffer))
    host = source.to_host(buffer)
    if destination.device.is_host:
        return host
    return destination.to_device(host)
