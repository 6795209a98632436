# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Machine Configuration

Every piece of state a run may be steered by (placement requests, manual
gradients, watchlist, trace sink) is carried by one MachineConfig passed
explicitly to the compiler and to each machine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
import os

import numpy as np

from ..core.node import Node
from ..errors import ConfigurationError
from ..observability.logger import TraceLogger, Verbosity

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("", "0", "false", "no", "off")


def _node_id(value: Any, key: str) -> int:
    if isinstance(value, Node):
        return value.id
    if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
        return int(value)
    raise ConfigurationError(
        f"{key} entries must be nodes or node ids, got {type(value).__name__}",
        config_key=key,
        config_value=repr(value),
    )


@dataclass
class MachineConfig:
    """
    Configuration shared by the compiler and both machines.

    Attributes:
        use_accelerator_for: Nodes (or node ids) to run on the accelerator.
        accelerate_all: Run every operation that has a kernel on the
            accelerator; the rest stay on the host.
        force_host: Resolve every placement to the host. Overrides the two
            options above.
        manual_gradients: Node (or node id) -> externally computed gradient.
        watchlist: Nodes (or node ids) whose values are captured during a
            run. Empty means nothing is watched.
        watch_all: Capture every node.
        logger: Trace sink receiving one line per instruction or node.
    """

    use_accelerator_for: set = field(default_factory=set)
    accelerate_all: bool = False
    force_host: bool = False
    manual_gradients: dict = field(default_factory=dict)
    watchlist: set = field(default_factory=set)
    watch_all: bool = False
    logger: Optional[TraceLogger] = None

    def __post_init__(self):
        self.use_accelerator_for = {
            _node_id(n, "use_accelerator_for") for n in self.use_accelerator_for
        }
        self.watchlist = {_node_id(n, "watchlist") for n in self.watchlist}
        self.manual_gradients = {
            _node_id(n, "manual_gradients"): v for n, v in self.manual_gradients.items()
        }

    @classmethod
    def accelerated(cls, *nodes: Node, **kwargs) -> "MachineConfig":
        """Config placing the given nodes on the accelerator."""
        return cls(use_accelerator_for=set(nodes), **kwargs)

    @classmethod
    def from_env(cls, **kwargs) -> "MachineConfig":
        """
        Build a config from environment variables.

        Environment variables:
            NADIR_FORCE_HOST: 1/true/yes/on to run everything on the host
            NADIR_VERBOSITY: 0-4, attaches a TraceLogger at that level
        """
        force = os.environ.get("NADIR_FORCE_HOST")
        if force is not None and "force_host" not in kwargs:
            flag = force.strip().lower()
            if flag in _TRUE:
                kwargs["force_host"] = True
            elif flag in _FALSE:
                kwargs["force_host"] = False
            else:
                raise ConfigurationError(
                    "NADIR_FORCE_HOST must be a boolean",
                    config_key="NADIR_FORCE_HOST",
                    config_value=force,
                )

        verbosity = os.environ.get("NADIR_VERBOSITY")
        if verbosity is not None and "logger" not in kwargs:
            try:
                level = Verbosity(int(verbosity))
            except ValueError:
                raise ConfigurationError(
                    "NADIR_VERBOSITY must be an integer between 0 and 4",
                    config_key="NADIR_VERBOSITY",
                    config_value=verbosity,
                ) from None
            kwargs["logger"] = TraceLogger.to_stderr(level)

        config = cls(**kwargs)
        config.validate()
        return config

    def validate(self) -> None:
        """
        Check option values.

        Raises:
            ConfigurationError: On malformed gradients or an unusable logger.
        """
        for node_id, value in self.manual_gradients.items():
            arr = np.asarray(value)
            if arr.dtype.kind not in "fiu":
                raise ConfigurationError(
                    f"manual gradient for node {node_id} is not numeric",
                    config_key="manual_gradients",
                    config_value=str(arr.dtype),
                )
        if self.logger is not None and not callable(getattr(self.logger, "debug", None)):
            raise ConfigurationError(
                "logger must provide debug()",
                config_key="logger",
                config_value=type(self.logger).__name__,
            )

    def wants_accelerator(self, node: Node) -> bool:
        """Whether placement on the accelerator was requested for a node."""
        if self.force_host:
            return False
        return self.accelerate_all or node.id in self.use_accelerator_for

    def is_watched(self, node: Node) -> bool:
        return self.watch_all or node.id in self.watchlist

    def trace(self, message: str, **context) -> None:
        """Send a trace line to the configured sink, if any."""
        if self.logger is not None:
            self.logger.debug(message, **context)
