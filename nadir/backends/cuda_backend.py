# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
CUDA Backend Implementation

NVIDIA GPU support through CuPy (optional dependency, ``pip install
nadir[cuda]``). Kernels are registered either as CUDA C source (compiled
with NVRTC) or as PTX/cubin bytes.

Kernel calling convention: one pointer per input, the output pointer, then
the element count as a 32-bit int. Scalar inputs are broadcast on the device
before the launch.
"""

from typing import Any, Sequence
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

logger = logging.getLogger("nadir.backends.cuda")

THREADS_PER_BLOCK = 256


class CUDABackend(BaseBackend):
    """
    CUDA backend for NVIDIA GPU execution.

    Availability is checked lazily; importing this module never requires CuPy.
    """

    def __init__(self, device_id: int = 0):
        super().__init__(device_id)
        self._cupy = None
        self._functions: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "cuda"

    @property
    def device(self) -> Device:
        return Device.GPU

    def is_available(self) -> bool:
        """Check if CUDA is available through CuPy."""
        if self._cupy is not None:
            return True
        try:
            import cupy

            if cupy.cuda.runtime.getDeviceCount() > 0:
                self._cupy = cupy
                return True
        except Exception:
            pass
        return False

    def _require(self):
        if not self.is_available():
            raise BackendNotAvailableError("CUDA is not available (is CuPy installed?)")
        return self._cupy

    def _do_initialize(self) -> bool:
        try:
            self._cupy.cuda.Device(self._device_id).use()
            return True
        except Exception as e:
            logger.error(f"CuPy device init failed: {e}")
            return False

    def _do_cleanup(self) -> None:
        self._functions.clear()
        if self._cupy is not None:
            self._cupy.get_default_memory_pool().free_all_blocks()

    def register_kernel(self, name: str, binary: Any) -> None:
        cupy = self._require()
        try:
            if isinstance(binary, str):
                module = cupy.RawModule(code=binary)
            elif isinstance(binary, (bytes, bytearray)):
                module = cupy.cuda.function.Module()
                module.load(bytes(binary))
            else:
                raise BackendError(
                    f"CUDA kernels must be source strings or PTX bytes, got {type(binary).__name__}"
                )
            self._functions[name] = module.get_function(name)
        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Failed to load kernel '{name}': {e}") from e
        logger.debug(f"Loaded kernel {name} on cuda:{self._device_id}")

    def has_kernel(self, name: str) -> bool:
        return name in self._functions

    def execute_named(
        self,
        name: str,
        inputs: Sequence[Any],
        out_shape: Shape,
        out_dtype: DataType,
    ) -> Any:
        cupy = self._require()
        if name not in self._functions:
            raise BackendExecutionError(f"Kernel '{name}' is not loaded")

        dims = tuple(out_shape.dims)
        args = [
            cupy.ascontiguousarray(cupy.broadcast_to(x, dims)) if x.shape != dims else x
            for x in inputs
        ]
        out = cupy.empty(dims, dtype=dtype_to_numpy(out_dtype))
        n = out.size
        blocks = max(1, (n + THREADS_PER_BLOCK - 1) // THREADS_PER_BLOCK)
        try:
            self._functions[name]((blocks,), (THREADS_PER_BLOCK,), (*args, out, np.int32(n)))
            cupy.cuda.Device(self._device_id).synchronize()
        except Exception as e:
            raise BackendExecutionError(f"Kernel '{name}' failed: {e}") from e
        return out

    def to_device(self, array: np.ndarray) -> Any:
        cupy = self._require()
        try:
            return cupy.asarray(array)
        except Exception as e:
            raise BackendMemoryError(f"Host to device copy failed: {e}") from e

    def to_host(self, buffer: Any) -> np.ndarray:
        cupy = self._require()
        try:
            return cupy.asnumpy(buffer)
        except Exception as e:
            raise BackendMemoryError(f"Device to host copy failed: {e}") from e

    def synchronize(self) -> None:
        if self._cupy is not None:
            self._cupy.cuda.Device(self._device_id).synchronize()
