# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
CPU Backend

Host execution through numpy. Always available.
"""

from typing import Any, Sequence

import numpy as np

from ..core.types import Device
from .base import BaseBackend, BackendExecutionError


class CPUBackend(BaseBackend):
    """Runs operations' host routines on numpy arrays."""

    @property
    def name(self) -> str:
        return "cpu"

    @property
    def device(self) -> Device:
        return Device.CPU

    def is_available(self) -> bool:
        return True

    def execute(self, op, inputs: Sequence[Any]) -> np.ndarray:
        for buf in inputs:
            if not isinstance(buf, (np.ndarray, np.generic)):
                raise BackendExecutionError(
                    f"{op.name} received a non-host buffer {type(buf).__name__}"
                )
        return np.asarray(op.compute(*inputs))

    def to_device(self, array: np.ndarray) -> np.ndarray:
        return np.asarray(array)

    def to_host(self, buffer: Any) -> np.ndarray:
        return np.asarray(buffer)
