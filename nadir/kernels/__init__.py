# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Kernels

- KernelRegistry / KernelSpec: kernels loaded for one machine
- library: standard elementwise kernel binaries per backend
"""

from .registry import KernelRegistry, KernelSpec
from .library import virtual_kernels, cuda_sources, standard_kernels

__all__ = [
    "KernelRegistry",
    "KernelSpec",
    "virtual_kernels",
    "cuda_sources",
    "standard_kernels",
]
