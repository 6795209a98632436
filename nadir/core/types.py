# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Nadir Core Types

Element types, shapes and devices shared by the graph IR and the runtime.
"""

from enum import Enum, auto
from dataclasses import dataclass, field
from typing import Optional, Union

import numpy as np


class DataType(Enum):
    """Supported element types for tensors."""

    Float32 = auto()
    Float64 = auto()
    Int32 = auto()
    Int64 = auto()
    Bool = auto()


_NUMPY_DTYPES = {
    DataType.Float32: np.float32,
    DataType.Float64: np.float64,
    DataType.Int32: np.int32,
    DataType.Int64: np.int64,
    DataType.Bool: np.bool_,
}


def dtype_size(dtype: DataType) -> int:
    """Get the size in bytes for a data type."""
    sizes = {
        DataType.Float32: 4,
        DataType.Float64: 8,
        DataType.Int32: 4,
        DataType.Int64: 8,
        DataType.Bool: 1,
    }
    return sizes.get(dtype, 0)


def dtype_bits(dtype: DataType) -> int:
    """Get the width in bits (used in per-dtype kernel names)."""
    return dtype_size(dtype) * 8


def dtype_to_string(dtype: DataType) -> str:
    """Get string representation of data type."""
    return dtype.name.lower()


def dtype_to_numpy(dtype: DataType) -> type:
    """Map a DataType to the numpy scalar type."""
    return _NUMPY_DTYPES[dtype]


def dtype_from_numpy(np_dtype) -> DataType:
    """Map a numpy dtype to a DataType."""
    np_dtype = np.dtype(np_dtype)
    for dtype, candidate in _NUMPY_DTYPES.items():
        if np.dtype(candidate) == np_dtype:
            return dtype
    raise TypeError(f"Unsupported numpy dtype: {np_dtype}")


class Device(Enum):
    """Execution/memory domains."""

    CPU = "cpu"
    GPU = "gpu"

    @property
    def is_host(self) -> bool:
        return self is Device.CPU

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Shape:
    """Represents tensor dimensions. An empty shape is a scalar."""

    dims: tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "dims", tuple(int(d) for d in self.dims))

    @classmethod
    def of(cls, value: Union["Shape", tuple, list, int, None]) -> Optional["Shape"]:
        """Coerce a tuple, list, int or Shape to a Shape (None stays None)."""
        if value is None or isinstance(value, Shape):
            return value
        if isinstance(value, int):
            return cls((value,))
        return cls(tuple(value))

    def rank(self) -> int:
        """Get number of dimensions."""
        return len(self.dims)

    def numel(self) -> int:
        """Get total number of elements (-1 for dynamic shapes)."""
        result = 1
        for d in self.dims:
            if d < 0:
                return -1
            result *= d
        return result

    def is_scalar(self) -> bool:
        return not self.dims

    def is_dynamic(self) -> bool:
        """Check if shape has unresolved dimensions."""
        return any(d < 0 for d in self.dims)

    def eq(self, other: Union["Shape", tuple]) -> bool:
        return self.dims == tuple(Shape.of(other).dims)

    def __getitem__(self, idx: int) -> int:
        return self.dims[idx]

    def __len__(self) -> int:
        return len(self.dims)

    def __iter__(self):
        return iter(self.dims)

    def __repr__(self) -> str:
        return f"Shape({list(self.dims)})"


ShapeLike = Union[Shape, tuple, list, int]
