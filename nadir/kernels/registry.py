# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Kernel Registry - Accelerator kernels loaded for one machine.

Each machine owns a registry, injected at construction; instructions that
run on the accelerator look their kernel up here by name. There is no
process-wide kernel table.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
import time


@dataclass
class KernelSpec:
    """
    A loaded kernel.

    Attributes:
        name: Kernel name referenced by instructions (e.g., "cube32")
        backend: Name of the backend that holds the loaded code
        binary: The code the kernel was loaded from
        loaded_at: Load timestamp (time.time())
    """

    name: str
    backend: str
    binary: Any = field(default=None, repr=False)
    loaded_at: float = field(default_factory=time.time)


class KernelRegistry:
    """
    Registry of loaded accelerator kernels.

    Example:
        registry = KernelRegistry()
        registry.register(KernelSpec(name="cube32", backend="virtual"))
        registry.is_loaded("cube32")
    """

    def __init__(self):
        self._kernels: dict[str, KernelSpec] = {}

    def register(self, spec: KernelSpec) -> None:
        """Register (or replace) a kernel."""
        self._kernels[spec.name] = spec

    def get(self, name: str) -> Optional[KernelSpec]:
        return self._kernels.get(name)

    def is_loaded(self, name: str) -> bool:
        return name in self._kernels

    def names(self) -> list[str]:
        return sorted(self._kernels)

    def __contains__(self, name: str) -> bool:
        return name in self._kernels

    def __len__(self) -> int:
        return len(self._kernels)

    def __repr__(self) -> str:
        return f"KernelRegistry(kernels={self.names()})"
