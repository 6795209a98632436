# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Backends

- CPUBackend: numpy host execution (always available)
- VirtualAccelerator: in-process accelerator with its own address space
- CUDABackend: NVIDIA GPUs through CuPy (optional)
"""

import logging

from .base import (
    BaseBackend,
    BackendError,
    BackendNotAvailableError,
    BackendMemoryError,
    BackendExecutionError,
    transfer,
)
from .cpu_backend import CPUBackend
from .virtual_backend import VirtualAccelerator, DeviceBuffer
from .cuda_backend import CUDABackend

logger = logging.getLogger("nadir.backends")


def default_accelerator() -> BaseBackend:
    """CUDA when CuPy sees a GPU, otherwise a virtual accelerator."""
    cuda = CUDABackend()
    if cuda.is_available():
        cuda.initialize()
        return cuda
    logger.info("No CUDA device found, using the virtual accelerator")
    return VirtualAccelerator()


__all__ = [
    "BaseBackend",
    "BackendError",
    "BackendNotAvailableError",
    "BackendMemoryError",
    "BackendExecutionError",
    "transfer",
    "CPUBackend",
    "VirtualAccelerator",
    "DeviceBuffer",
    "CUDABackend",
    "default_accelerator",
]
