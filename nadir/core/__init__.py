# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""Nadir Core Module"""

from .types import (
    DataType,
    Device,
    Shape,
    dtype_size,
    dtype_bits,
    dtype_to_string,
    dtype_to_numpy,
    dtype_from_numpy,
)
from .node import Node
from .graph import Graph

__all__ = [
    "DataType",
    "Device",
    "Shape",
    "dtype_size",
    "dtype_bits",
    "dtype_to_string",
    "dtype_to_numpy",
    "dtype_from_numpy",
    "Node",
    "Graph",
]
