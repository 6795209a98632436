# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir - Symbolic Tensor Graph Runtime

Compile a graph into an instruction tape and run it, or walk it directly
with reverse-mode gradients, with operations placed on the host or an
accelerator and values moved between them as needed.

Example:
    import numpy as np
    import nadir
    from nadir import DataType, Graph, MachineConfig

    g = Graph(name="cube")
    x = g.leaf((8, 4), DataType.Float32, name="x",
               value=np.arange(32, dtype=np.float32).reshape(8, 4))
    y = g.apply("Cube", x)

    program, locations = nadir.compile(g, MachineConfig.accelerated(y))
    machine = nadir.TapeMachine(program, locations)
    machine.load_standard_kernels()
    machine.run_all()
    print(machine.value(y))
"""

__version__ = "0.1.0"
__author__ = "Wahyu Ardiansyah"

from .core import DataType, Device, Shape, Node, Graph
from .errors import (
    NadirError,
    CompileError,
    NadirRuntimeError,
    MissingKernelError,
    KernelLoadError,
    DeviceTransferError,
    OperationFailedError,
    ShapeMismatchError,
    DisconnectedGradientError,
    MissingGradientRuleError,
    ConfigurationError,
)
from .ops import Operation, OperatorRegistry
from .autodiff import grad
from .runtime import (
    MachineConfig,
    DeviceTransferManager,
    compile,
    TapeMachine,
    DirectMachine,
)
from .observability import TraceLogger, Verbosity

__all__ = [
    "__version__",
    "DataType",
    "Device",
    "Shape",
    "Node",
    "Graph",
    "NadirError",
    "CompileError",
    "NadirRuntimeError",
    "MissingKernelError",
    "KernelLoadError",
    "DeviceTransferError",
    "OperationFailedError",
    "ShapeMismatchError",
    "DisconnectedGradientError",
    "MissingGradientRuleError",
    "ConfigurationError",
    "Operation",
    "OperatorRegistry",
    "grad",
    "MachineConfig",
    "DeviceTransferManager",
    "compile",
    "TapeMachine",
    "DirectMachine",
    "TraceLogger",
    "Verbosity",
]
