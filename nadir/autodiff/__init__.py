# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Autodiff

- engine: reverse accumulation shared by both front ends
- symbolic: grad() expands a graph with gradient nodes (tape machine)
- numeric: value-level gradients (direct machine)
"""

from .engine import ReverseAccumulator, Computed, Supplied, GradientSource
from .symbolic import grad
from . import numeric

__all__ = [
    "ReverseAccumulator",
    "Computed",
    "Supplied",
    "GradientSource",
    "grad",
    "numeric",
]
