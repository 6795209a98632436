# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Pytest configuration for Nadir Python tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add the project root to sys.path so we can import nadir
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

# Skip test modules that require optional dependencies not installed
collect_ignore = []

# Check for hypothesis
try:
    import hypothesis
except ImportError:
    collect_ignore.append("test_property_based.py")


@pytest.fixture
def accelerator():
    """Virtual accelerator with every standard kernel available."""
    from nadir.backends import VirtualAccelerator

    return VirtualAccelerator()


@pytest.fixture
def cube_graph():
    """8x4 float32 input holding 0..31, and its elementwise cube."""
    from nadir import DataType, Graph

    g = Graph(name="cube")
    x = g.leaf(
        (8, 4),
        DataType.Float32,
        name="x",
        value=np.arange(32, dtype=np.float32).reshape(8, 4),
    )
    y = g.apply("Cube", x, name="y")
    return g, x, y
