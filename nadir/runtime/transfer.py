# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Device Transfer Manager

Tracks which devices hold a valid copy of each node's value and creates
copies on demand. The manager only bookkeeps; slots are handed out and
data is moved by callbacks, which lets the same protocol drive both the
compiler (the callbacks emit instructions) and the direct machine (the
callbacks move buffers).

Rules:
- a freshly produced value is the only valid copy of its node
- a copy on a device is created at most once and reused until invalidated
- a node never holds two slots on the same device
- residency() is the only source of truth about where a value lives
"""

from __future__ import annotations

from typing import Callable, Optional
import logging

from ..core.node import Node
from ..core.types import Device
from ..errors import NadirRuntimeError
from .program import Slot

logger = logging.getLogger("nadir.runtime.transfer")


class DeviceTransferManager:
    """
    Per-run residency tracker.

    Args:
        allocate: (node, device) -> fresh slot on that device.
        transfer: (node, src_slot, dst_slot) copies the value. May raise
            DeviceTransferError, which is propagated unchanged.
        free: Optional (slot) callback when a copy is dropped.
        force_host: Resolve every request to the host.
    """

    def __init__(
        self,
        allocate: Callable[[Node, Device], Slot],
        transfer: Callable[[Node, Slot, Slot], None],
        free: Optional[Callable[[Slot], None]] = None,
        force_host: bool = False,
    ):
        self._allocate = allocate
        self._transfer = transfer
        self._free = free
        self._force_host = force_host
        self._copies: dict[int, dict[Device, Slot]] = {}
        self.transfers = 0

    @property
    def host_only(self) -> bool:
        return self._force_host

    def force_host(self) -> None:
        """Resolve every subsequent request to the host."""
        self._force_host = True

    def _drop(self, slot: Slot) -> None:
        if self._free is not None:
            self._free(slot)

    def register(self, node: Node, device: Device, slot: Slot) -> None:
        """Record a freshly produced value; any older copies become stale."""
        for old in self._copies.get(node.id, {}).values():
            if old != slot:
                self._drop(old)
        self._copies[node.id] = {device: slot}

    def resolve(self, node: Node, device: Device) -> Slot:
        """
        Return a slot holding a valid copy of ``node`` on ``device``.

        The first request for a device allocates a slot there and copies the
        value in from an existing copy (the host copy when there is one).
        Later requests reuse that slot.
        """
        if self._force_host:
            device = Device.CPU

        copies = self._copies.get(node.id)
        if not copies:
            raise NadirRuntimeError(
                f"No valid copy of '{node.name}' exists",
                node_name=node.name,
                suggestions=["Values must be produced before they are consumed"],
            )
        if device in copies:
            return copies[device]

        source = copies[Device.CPU] if Device.CPU in copies else next(iter(copies.values()))
        dst = self._allocate(node, device)
        try:
            self._transfer(node, source, dst)
        except NadirRuntimeError:
            self._drop(dst)
            raise
        copies[device] = dst
        self.transfers += 1
        logger.debug(f"{node.name}: {source} -> {dst}")
        return dst

    def invalidate(self, node: Node, device: Device) -> None:
        """Mark the copy on ``device`` stale and give its slot back."""
        copies = self._copies.get(node.id)
        if not copies or device not in copies:
            return
        self._drop(copies.pop(device))
        if not copies:
            del self._copies[node.id]

    def release(self, node: Node) -> None:
        """Drop every copy of a node."""
        for slot in self._copies.pop(node.id, {}).values():
            self._drop(slot)

    def residency(self, node: Node) -> frozenset:
        """Devices currently holding a valid copy."""
        return frozenset(self._copies.get(node.id, ()))

    def slot(self, node: Node, device: Device) -> Optional[Slot]:
        return self._copies.get(node.id, {}).get(device)

    def reset(self) -> None:
        """Forget all residency (start of a run)."""
        self._copies.clear()
        self.transfers = 0

    def __repr__(self) -> str:
        mode = "host-only" if self._force_host else "mixed"
        return f"DeviceTransferManager({mode}, nodes={len(self._copies)}, transfers={self.transfers})"
