# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Error Hierarchy

Provides error types for the Nadir runtime with:
- Clear error categorization
- Helpful error messages with suggestions
- Context information for debugging

Error Categories:
- NadirError: Base class for all Nadir errors
- CompileError: Structural graph problems found before execution
- NadirRuntimeError: Failures while a machine is running
    - MissingKernelError, KernelLoadError, DeviceTransferError,
      OperationFailedError, ShapeMismatchError,
      DisconnectedGradientError, MissingGradientRuleError
- ConfigurationError: Invalid machine configuration
"""

from typing import Optional


class NadirError(Exception):
    """
    Base class for all Nadir errors.

    Provides consistent error formatting and context tracking.

    Attributes:
        message: Human-readable error message
        suggestions: List of suggestions to fix the error
        context: Optional context dictionary for debugging
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[list[str]] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.context = context or {}

        full_message = self._format_message()
        super().__init__(full_message)

    def _format_message(self) -> str:
        """Format the error message with suggestions."""
        lines = [self.message]

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        return "\n".join(lines)


class CompileError(NadirError):
    """
    Error while turning a graph into a program.

    Raised when:
    - The graph contains a cycle
    - A node has an unresolved shape
    - An operation is requested on a device it has no implementation for
    """

    CYCLE = "cycle"
    UNRESOLVED_SHAPE = "unresolved_shape"
    UNSUPPORTED_DEVICE = "unsupported_device"

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        node_name: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
    ):
        self.reason = reason
        self.node_name = node_name

        context = {}
        if reason:
            context["reason"] = reason
        if node_name:
            context["node_name"] = node_name

        default_suggestions = [
            "Check that the graph is acyclic",
            "Verify every node has a fully known shape",
            "Only request the accelerator for operations that support it",
        ]

        super().__init__(
            message=f"Compilation failed: {message}",
            suggestions=suggestions or default_suggestions,
            context=context,
        )


class NadirRuntimeError(NadirError):
    """
    Base class for execution-time failures.

    A run halts at the failing instruction or node. Slots already written
    keep their last value; the machine must not be resumed.
    """

    def __init__(
        self,
        message: str,
        node_name: Optional[str] = None,
        suggestions: Optional[list[str]] = None,
        context: Optional[dict] = None,
    ):
        self.node_name = node_name
        context = dict(context or {})
        if node_name:
            context["node_name"] = node_name
        super().__init__(message=message, suggestions=suggestions, context=context)


class MissingKernelError(NadirRuntimeError):
    """An instruction needs an accelerator kernel that was never loaded."""

    def __init__(self, kernel_name: str, node_name: Optional[str] = None):
        self.kernel_name = kernel_name
        super().__init__(
            message=f"Accelerator kernel '{kernel_name}' is not loaded",
            node_name=node_name,
            suggestions=[
                f"Call load_kernel('{kernel_name}', binary) before run_all()",
                "Run with force_host=True to execute everything on the host",
            ],
            context={"kernel": kernel_name},
        )


class KernelLoadError(NadirRuntimeError):
    """The accelerator backend rejected a kernel binary."""

    def __init__(self, kernel_name: str, reason: str):
        self.kernel_name = kernel_name
        super().__init__(
            message=f"Failed to load kernel '{kernel_name}': {reason}",
            context={"kernel": kernel_name},
        )


class DeviceTransferError(NadirRuntimeError):
    """A cross-device copy could not be performed. Never retried."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        destination: Optional[str] = None,
        node_name: Optional[str] = None,
    ):
        context = {}
        if source:
            context["from"] = source
        if destination:
            context["to"] = destination
        super().__init__(
            message=f"Device transfer failed: {message}",
            node_name=node_name,
            suggestions=[
                "Check that the accelerator is available",
                "Run with force_host=True when no accelerator is present",
            ],
            context=context,
        )


class OperationFailedError(NadirRuntimeError):
    """The kernel or host routine of an operation raised."""

    def __init__(
        self,
        message: str,
        op_name: Optional[str] = None,
        device: Optional[str] = None,
        node_name: Optional[str] = None,
        input_shapes: Optional[list] = None,
    ):
        context = {}
        if op_name:
            context["operation"] = op_name
        if device:
            context["device"] = device
        if input_shapes:
            context["input_shapes"] = str(input_shapes)
        super().__init__(
            message=f"Operation failed: {message}",
            node_name=node_name,
            context=context,
        )


class ShapeMismatchError(NadirRuntimeError):
    """A runtime value's shape diverges from its node's declared shape."""

    def __init__(self, expected: tuple, actual: tuple, node_name: Optional[str] = None):
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            message=f"Shape mismatch: expected {self.expected}, got {self.actual}",
            node_name=node_name,
            context={"expected": str(self.expected), "received": str(self.actual)},
        )


class DisconnectedGradientError(NadirRuntimeError):
    """
    A gradient was requested for a node the cost does not depend on.

    The gradient is mathematically zero, but this is surfaced distinctly so
    graph-construction mistakes are not hidden behind a zero tensor.
    """

    def __init__(self, node_name: str, cost_name: Optional[str] = None):
        context = {}
        if cost_name:
            context["cost"] = cost_name
        super().__init__(
            message=f"Node '{node_name}' is not reachable from the cost",
            node_name=node_name,
            suggestions=["Check that the cost is computed from this node"],
            context=context,
        )


class MissingGradientRuleError(NadirRuntimeError):
    """Reverse accumulation reached an operation with no derivative rule."""

    def __init__(self, op_name: str, node_name: Optional[str] = None):
        self.op_name = op_name
        super().__init__(
            message=f"Operation '{op_name}' has no derivative rule",
            node_name=node_name,
            suggestions=[
                "Supply a manual gradient for this node",
                "Detach the node from the differentiated subgraph",
            ],
            context={"operation": op_name},
        )


class ConfigurationError(NadirError):
    """
    Configuration or setup error.

    Raised when:
    - Invalid configuration parameters
    - Conflicting machine options
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[str] = None,
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key
        if config_value:
            context["config_value"] = str(config_value)

        suggestions = [
            "Check configuration parameters",
            "Review the MachineConfig documentation",
        ]

        super().__init__(
            message=f"Configuration error: {message}",
            suggestions=suggestions,
            context=context,
        )
