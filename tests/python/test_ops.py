# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the Operator Catalogue

Validates:
- Registry lookups and metadata
- Host routines
- Per-dtype kernel names
- Numeric derivative rules
"""

import pytest
import numpy as np

from nadir.core import DataType, Shape
from nadir.ops import (
    Cube,
    Expand,
    MatMul,
    OperatorRegistry,
    Slice,
    SliceGrad,
    Sum,
    Transpose,
    unbroadcast,
)


class TestOperatorRegistry:
    """Tests for OperatorRegistry."""

    def test_create_by_name(self):
        """Registered names create instances."""
        op = OperatorRegistry.create("Cube")
        assert isinstance(op, Cube)
        assert op.name == "Cube"

    def test_create_with_params(self):
        """Parameters are forwarded to the constructor."""
        op = OperatorRegistry.create("Slice", index=2)
        assert op.index == 2

    def test_unknown_operation(self):
        """Unknown names raise KeyError listing supported operations."""
        with pytest.raises(KeyError) as exc_info:
            OperatorRegistry.get("Conv2d")
        assert "Supported operations" in str(exc_info.value)

    def test_accelerated_list(self):
        """Only elementwise operations have kernels."""
        accelerated = OperatorRegistry.list_accelerated()
        assert "Cube" in accelerated
        assert "Add" in accelerated
        assert "Slice" not in accelerated
        assert "MatMul" not in accelerated

    def test_is_supported(self):
        assert OperatorRegistry.is_supported("Pow")
        assert not OperatorRegistry.is_supported("Softmax")


class TestOperation:
    """Tests for the Operation base behaviour."""

    def test_kernel_name_per_dtype(self):
        """Kernel names carry the element width."""
        op = OperatorRegistry.create("Cube")
        assert op.kernel_name(DataType.Float32) == "cube32"
        assert op.kernel_name(DataType.Float64) == "cube64"

    def test_equality_by_params(self):
        """Operations compare by type and parameters."""
        assert Slice(1) == Slice(1)
        assert Slice(1) != Slice(2)
        assert hash(Slice(1)) == hash(Slice(1))
        assert Slice(0) != Transpose()

    def test_repr(self):
        assert repr(Slice(3)) == "Slice(3,)"
        assert repr(Transpose()) == "Transpose"


class TestHostRoutines:
    """Tests for compute()."""

    def test_binary(self):
        a = np.array([1.0, 2.0, 4.0])
        b = np.array([2.0, 2.0, 0.5])
        np.testing.assert_allclose(OperatorRegistry.create("Add").compute(a, b), [3, 4, 4.5])
        np.testing.assert_allclose(OperatorRegistry.create("Sub").compute(a, b), [-1, 0, 3.5])
        np.testing.assert_allclose(OperatorRegistry.create("Mul").compute(a, b), [2, 4, 2])
        np.testing.assert_allclose(OperatorRegistry.create("Div").compute(a, b), [0.5, 1, 8])
        np.testing.assert_allclose(OperatorRegistry.create("Pow").compute(a, b), [1, 4, 2])

    def test_unary(self):
        x = np.array([1.0, 2.0, 3.0])
        np.testing.assert_allclose(OperatorRegistry.create("Neg").compute(x), -x)
        np.testing.assert_allclose(OperatorRegistry.create("Square").compute(x), x**2)
        np.testing.assert_allclose(OperatorRegistry.create("Cube").compute(x), x**3)
        np.testing.assert_allclose(OperatorRegistry.create("Exp").compute(x), np.exp(x))
        np.testing.assert_allclose(OperatorRegistry.create("Log").compute(x), np.log(x))
        np.testing.assert_allclose(OperatorRegistry.create("Floor").compute(x + 0.5), x)

    def test_sum_keeps_dtype(self):
        """Sum reduces to a scalar of the input dtype."""
        x = np.ones((2, 3), dtype=np.float32)
        out = Sum().compute(x)
        assert out.shape == ()
        assert out.dtype == np.float32
        assert float(out) == 6.0

    def test_expand(self):
        out = Expand((2, 2)).compute(np.asarray(3.0))
        np.testing.assert_array_equal(out, np.full((2, 2), 3.0))

    def test_slice_and_slice_grad(self):
        x = np.arange(6.0).reshape(3, 2)
        np.testing.assert_array_equal(Slice(1).compute(x), [2.0, 3.0])
        out = SliceGrad(1, (3, 2)).compute(np.array([1.0, 1.0]))
        np.testing.assert_array_equal(out, [[0, 0], [1, 1], [0, 0]])

    def test_slice_out_of_range(self):
        """Slice indices are checked against the shape."""
        with pytest.raises(ValueError):
            Slice(5).infer_shape([Shape((3, 2))])

    def test_matmul_shapes(self):
        assert MatMul().infer_shape([Shape((2, 3)), Shape((3, 4))]) == Shape((2, 4))
        with pytest.raises(ValueError):
            MatMul().infer_shape([Shape((2, 3)), Shape((2, 4))])


class TestNumericRules:
    """Tests for backward()."""

    def test_cube_backward(self):
        x = np.array([1.0, 2.0])
        (dx,) = Cube().backward([x], x**3, np.ones(2))
        np.testing.assert_allclose(dx, 3 * x**2)

    def test_scalar_operand_gradient_is_reduced(self):
        """The gradient of a broadcast scalar is summed."""
        s = np.asarray(2.0)
        x = np.array([1.0, 2.0, 3.0])
        ds, dx = OperatorRegistry.create("Mul").backward([s, x], s * x, np.ones(3))
        assert ds.shape == ()
        np.testing.assert_allclose(ds, 6.0)
        np.testing.assert_allclose(dx, [2.0, 2.0, 2.0])

    def test_matmul_backward(self):
        a = np.arange(6.0).reshape(2, 3)
        b = np.arange(12.0).reshape(3, 4)
        grad = np.ones((2, 4))
        da, db = MatMul().backward([a, b], a @ b, grad)
        np.testing.assert_allclose(da, grad @ b.T)
        np.testing.assert_allclose(db, a.T @ grad)

    def test_floor_has_no_rule(self):
        """Floor is marked non-differentiable."""
        op = OperatorRegistry.create("Floor")
        assert not op.differentiable
        with pytest.raises(NotImplementedError):
            op.backward([np.ones(2)], np.ones(2), np.ones(2))

    def test_unbroadcast(self):
        g = np.ones((2, 2))
        assert unbroadcast(g, Shape((2, 2))) is g
        assert float(unbroadcast(g, Shape(()))) == 4.0
        with pytest.raises(ValueError):
            unbroadcast(g, Shape((4,)))
