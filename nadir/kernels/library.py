# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Standard Kernel Library

Kernel binaries for every operation with an accelerator implementation, in
the two forms the accelerator backends accept:

- virtual_kernels(): Python callables for the VirtualAccelerator
- cuda_sources(): CUDA C source for the CUDABackend

Kernel names follow Operation.kernel_name(), e.g. "cube32" or "add64".
"""

from typing import Callable

from ..core.types import DataType
from ..ops import OperatorRegistry

FLOAT_TYPES = (DataType.Float32, DataType.Float64)

_C_TYPES = {
    DataType.Float32: "float",
    DataType.Float64: "double",
}

# Elementwise expressions over a[i], b[i] (binary) or x[i] (unary).
_BINARY_EXPRESSIONS = {
    "Add": "a[i] + b[i]",
    "Sub": "a[i] - b[i]",
    "Mul": "a[i] * b[i]",
    "Div": "a[i] / b[i]",
    "Pow": "pow(a[i], b[i])",
}

_UNARY_EXPRESSIONS = {
    "Neg": "-x[i]",
    "Square": "x[i] * x[i]",
    "Cube": "x[i] * x[i] * x[i]",
    "Exp": "exp(x[i])",
    "Log": "log(x[i])",
    "Floor": "floor(x[i])",
}

_BINARY_TEMPLATE = """
extern "C" __global__ void {name}(const {T}* a, const {T}* b, {T}* out, int n) {{
    int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i < n) {{
        out[i] = {expr};
    }}
}}
"""

_UNARY_TEMPLATE = """
extern "C" __global__ void {name}(const {T}* x, {T}* out, int n) {{
    int i = blockDim.x * blockIdx.x + threadIdx.x;
    if (i < n) {{
        out[i] = {expr};
    }}
}}
"""


def virtual_kernels() -> dict[str, Callable]:
    """Kernel callables keyed by kernel name."""
    kernels = {}
    for op_name in OperatorRegistry.list_accelerated():
        op = OperatorRegistry.create(op_name)
        for dtype in FLOAT_TYPES:
            kernels[op.kernel_name(dtype)] = op.compute
    return kernels


def cuda_sources() -> dict[str, str]:
    """CUDA C source for each standard kernel, keyed by kernel name."""
    sources = {}
    for op_name, expr in _BINARY_EXPRESSIONS.items():
        op = OperatorRegistry.create(op_name)
        for dtype in FLOAT_TYPES:
            name = op.kernel_name(dtype)
            sources[name] = _BINARY_TEMPLATE.format(name=name, T=_C_TYPES[dtype], expr=expr)
    for op_name, expr in _UNARY_EXPRESSIONS.items():
        op = OperatorRegistry.create(op_name)
        for dtype in FLOAT_TYPES:
            name = op.kernel_name(dtype)
            sources[name] = _UNARY_TEMPLATE.format(name=name, T=_C_TYPES[dtype], expr=expr)
    return sources


def standard_kernels(backend) -> dict:
    """Pick the binaries matching an accelerator backend."""
    if backend.name == "cuda":
        return cuda_sources()
    return virtual_kernels()
