# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Operator Registry

Maps operation names to their Operation classes.
Uses a decorator-based registration pattern for extensibility.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Type, TYPE_CHECKING

if TYPE_CHECKING:
    from .base import Operation


class OperatorRegistry:
    """
    Registry for operation implementations.

    Example:
        @OperatorRegistry.register("Cube")
        class Cube(ElementwiseUnary):
            ...

        op = OperatorRegistry.create("Cube")
    """

    _registry: Dict[str, Type["Operation"]] = {}
    _metadata: Dict[str, Dict[str, Any]] = {}

    @classmethod
    def register(
        cls,
        name: str,
        aliases: Optional[List[str]] = None,
    ) -> Callable[[Type["Operation"]], Type["Operation"]]:
        """
        Decorator to register an operation class.

        Args:
            name: Operation name (e.g., "Add", "Cube").
            aliases: Alternative names for the operation.
        """

        def decorator(op_cls: Type["Operation"]) -> Type["Operation"]:
            op_cls.name = name
            cls._registry[name] = op_cls
            cls._metadata[name] = {
                "class_name": op_cls.__name__,
                "accelerated": op_cls.supports_accelerator,
                "differentiable": op_cls.differentiable,
            }

            if aliases:
                for alias in aliases:
                    cls._registry[alias] = op_cls
                    cls._metadata[alias] = cls._metadata[name]

            return op_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> Type["Operation"]:
        """
        Get the operation class registered under a name.

        Raises:
            KeyError: If operation not registered.
        """
        if name not in cls._registry:
            raise KeyError(
                f"Operation '{name}' not registered. "
                f"Supported operations: {cls.list_operators()}"
            )
        return cls._registry[name]

    @classmethod
    def create(cls, name: str, **params: Any) -> "Operation":
        """Instantiate a registered operation."""
        return cls.get(name)(**params)

    @classmethod
    def is_supported(cls, name: str) -> bool:
        return name in cls._registry

    @classmethod
    def list_operators(cls) -> List[str]:
        return sorted(cls._registry.keys())

    @classmethod
    def list_accelerated(cls) -> List[str]:
        """Operations that have an accelerator implementation."""
        return sorted(n for n, meta in cls._metadata.items() if meta["accelerated"])

    @classmethod
    def count(cls) -> int:
        return len(cls._registry)
