# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Runtime

- compile(): graph -> (Program, LocationMap)
- TapeMachine: runs a compiled program
- DirectMachine: walks the graph, with inline reverse mode
- DeviceTransferManager: cross-device residency protocol
- MachineConfig: per-run configuration
"""

from .config import MachineConfig
from .program import (
    Slot,
    LoadLeaf,
    Execute,
    Transfer,
    Instruction,
    LocationMap,
    Program,
)
from .transfer import DeviceTransferManager
from .compiler import compile, place, SlotAllocator
from .machine import Machine
from .tape_machine import TapeMachine
from .direct_machine import DirectMachine

__all__ = [
    "MachineConfig",
    "Slot",
    "LoadLeaf",
    "Execute",
    "Transfer",
    "Instruction",
    "LocationMap",
    "Program",
    "DeviceTransferManager",
    "compile",
    "place",
    "SlotAllocator",
    "Machine",
    "TapeMachine",
    "DirectMachine",
]
