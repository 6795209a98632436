# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for the Direct Machine

Tests:
1. Forward pass on host and accelerator
2. Forced-host runs match accelerated runs
3. Manual gradients
4. Gradient lookup errors
5. Watchlist and transfer accounting
"""

import pytest
import numpy as np

from nadir import DataType, DirectMachine, Graph, MachineConfig
from nadir.backends import VirtualAccelerator
from nadir.errors import (
    ConfigurationError,
    DisconnectedGradientError,
    MissingGradientRuleError,
    MissingKernelError,
    OperationFailedError,
    ShapeMismatchError,
)
from nadir.observability import TraceLogger, Verbosity
from nadir.ops import Operation, Slice

DATA = np.linspace(-1.0, 1.0, 12).reshape(4, 3)


class Brittle(Operation):
    """Identity whose derivative routine always fails."""

    name = "Brittle"
    arity = 1

    def infer_shape(self, shapes):
        return shapes[0]

    def compute(self, x):
        return np.array(x, copy=True)

    def backward(self, inputs, output, grad):
        raise FloatingPointError("derivative overflow")


def loss_graph():
    """Accelerated elementwise ops around a host-only Slice, summed to a scalar."""
    g = Graph(name="loss")
    x = g.leaf((4, 3), DataType.Float64, name="x", value=DATA)
    a = g.apply("Cube", x, name="a")
    b = g.apply("Square", x, name="b")
    c = g.apply("Add", a, b, name="c")
    s = g.apply(Slice(1), c, name="s")
    t = g.apply("Mul", s, s, name="t")
    cost = g.apply("Sum", t, name="cost")
    return g, x, c, cost


def expected_loss_gradient():
    row = DATA[1]
    c = row**3 + row**2
    dx = np.zeros_like(DATA)
    dx[1] = 2.0 * c * (3.0 * row**2 + 2.0 * row)
    return dx


def run(config, accelerator=None):
    g, x, c, cost = loss_graph()
    machine = DirectMachine(g, config, cost=cost, accelerator=accelerator or VirtualAccelerator())
    if not config.force_host:
        machine.load_standard_kernels()
    machine.run_all()
    return machine, x, c, cost


class TestForward:
    """Forward execution."""

    def test_host(self, cube_graph):
        g, x, y = cube_graph
        machine = DirectMachine(g)
        machine.run_all()
        np.testing.assert_array_equal(machine.value(y), np.arange(32, dtype=np.float32).reshape(8, 4) ** 3)
        assert machine.transfer_manager.transfers == 0

    def test_accelerator(self, cube_graph, accelerator):
        g, x, y = cube_graph
        machine = DirectMachine(g, MachineConfig.accelerated(y), accelerator=accelerator)
        machine.load_kernel("cube32", lambda v: v * v * v)
        machine.run_all()
        out = machine.value(y)
        assert out.dtype == np.float32
        assert out[7, 3] == 29791
        assert accelerator.launch_count == 1

    def test_intermediate_values_are_kept(self):
        machine, x, c, cost = run(MachineConfig())
        np.testing.assert_allclose(machine.value(c), DATA**3 + DATA**2)
        np.testing.assert_allclose(machine.value(x), DATA)

    def test_missing_kernel(self, cube_graph, accelerator):
        g, x, y = cube_graph
        machine = DirectMachine(g, MachineConfig.accelerated(y), accelerator=accelerator)
        with pytest.raises(MissingKernelError) as exc_info:
            machine.run_all()
        assert exc_info.value.kernel_name == "cube32"

    def test_unsupported_request_runs_on_host(self):
        """Without a compile step an impossible placement falls back to the host."""
        g = Graph()
        x = g.leaf((3, 2), name="x", value=np.ones((3, 2)))
        s = g.apply(Slice(0), x, name="s")
        trace = TraceLogger(verbosity=Verbosity.DEBUG)
        machine = DirectMachine(g, MachineConfig.accelerated(s, logger=trace), accelerator=VirtualAccelerator())
        machine.run_all()
        np.testing.assert_array_equal(machine.value(s), [1.0, 1.0])
        assert any("running on host" in line for line in trace.lines)

    def test_feed_shape_mismatch(self, cube_graph):
        g, x, y = cube_graph
        machine = DirectMachine(g)
        with pytest.raises(ShapeMismatchError):
            machine.run_all({x: np.ones((4, 8), dtype=np.float32)})

    def test_value_before_run(self, cube_graph):
        g, x, y = cube_graph
        with pytest.raises(KeyError):
            DirectMachine(g).value(y)


class TestForceHost:
    """Accelerated and forced-host runs agree."""

    def test_values_and_gradients_match(self):
        accelerated, x, c, cost = run(MachineConfig(accelerate_all=True))
        host, hx, hc, hcost = run(MachineConfig(accelerate_all=True, force_host=True))

        np.testing.assert_allclose(accelerated.value(cost), host.value(hcost), rtol=1e-12)
        np.testing.assert_allclose(accelerated.value(c), host.value(hc), rtol=1e-12)
        np.testing.assert_allclose(accelerated.gradient(x), host.gradient(hx), rtol=1e-12)
        np.testing.assert_allclose(host.gradient(hx), expected_loss_gradient(), rtol=1e-12)

    def test_forced_host_never_moves_data(self):
        accelerator = VirtualAccelerator()
        host, *_ = run(MachineConfig(accelerate_all=True, force_host=True), accelerator)
        assert host.transfer_manager.transfers == 0
        assert accelerator.transfer_count == 0
        assert accelerator.launch_count == 0

    def test_operand_moved_once(self, cube_graph, accelerator):
        g, x, y = cube_graph
        z = g.apply("Add", y, x, name="z")
        machine = DirectMachine(g, MachineConfig(accelerate_all=True), accelerator=accelerator)
        machine.load_standard_kernels()
        machine.run_all()
        assert machine.transfer_manager.transfers == 1
        assert accelerator.launch_count == 2
        np.testing.assert_allclose(machine.value(z), machine.value(y) + machine.value(x))


class TestManualGradients:
    """Externally supplied gradients."""

    def test_without_cost(self):
        g = Graph()
        x = g.leaf((3,), name="x", value=[1.0, 2.0, 3.0])
        y = g.apply("Cube", x, name="y")
        machine = DirectMachine(g, MachineConfig(manual_gradients={y: np.ones(3)}))
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [3.0, 12.0, 27.0])
        np.testing.assert_allclose(machine.gradient(y), [1.0, 1.0, 1.0])

    def test_supplied_gradient_replaces_computed(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        y = g.apply("Cube", x, name="y")
        cost = g.apply("Sum", g.apply("Exp", y), name="cost")
        config = MachineConfig(manual_gradients={y: [2.0, 2.0]})
        machine = DirectMachine(g, config, cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(y), [2.0, 2.0])
        np.testing.assert_allclose(machine.gradient(x), [6.0, 24.0])

    def test_passes_through_non_differentiable_op(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.5, 2.5])
        f = g.apply("Floor", x, name="f")
        cost = g.apply("Sum", f, name="cost")
        machine = DirectMachine(g, MachineConfig(manual_gradients={f: np.ones(2)}), cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [1.0, 1.0])

    def test_non_differentiable_op_without_gradient(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.5, 2.5])
        cost = g.apply("Sum", g.apply("Floor", x, name="f"), name="cost")
        machine = DirectMachine(g, cost=cost)
        with pytest.raises(MissingGradientRuleError) as exc_info:
            machine.run_all()
        assert exc_info.value.op_name == "Floor"

    def test_constant_off_path_needs_no_rule(self):
        """Paths that start only at constants are not differentiated."""
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        w = g.constant(np.array([1.5, 2.5]), name="w")
        cost = g.apply("Sum", g.apply("Mul", g.apply("Floor", w), x), name="cost")
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [1.0, 2.0])
        with pytest.raises(DisconnectedGradientError):
            machine.gradient(w)

    def test_explicit_targets(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        w = g.leaf((2,), name="w", value=[1.5, 2.5])
        cost = g.apply("Sum", g.apply("Mul", g.apply("Floor", w), x), name="cost")
        machine = DirectMachine(g, cost=cost, wrt=[x])
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [1.0, 2.0])

    def test_integer_pow(self):
        """Integer exponents below one still have a derivative."""
        g = Graph()
        a = g.leaf((2,), DataType.Int64, name="a", value=[2, 3])
        b = g.leaf((2,), DataType.Int64, name="b", value=[0, 2])
        cost = g.apply("Sum", g.apply("Pow", a, b), name="cost")
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        da = machine.gradient(a)
        assert da.dtype == np.int64
        np.testing.assert_array_equal(da, [0, 6])
        np.testing.assert_array_equal(machine.gradient(b), [0, 9])

    def test_backward_failure_is_wrapped(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        cost = g.apply("Sum", g.apply(Brittle(), x, name="brittle"), name="cost")
        machine = DirectMachine(g, cost=cost)
        with pytest.raises(OperationFailedError) as exc_info:
            machine.run_all()
        assert exc_info.value.node_name == "brittle"
        assert exc_info.value.context["operation"] == "Brittle"
        assert isinstance(exc_info.value.__cause__, FloatingPointError)

    def test_wrong_shape(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        y = g.apply("Neg", x, name="y")
        machine = DirectMachine(g, MachineConfig(manual_gradients={y: np.ones(3)}))
        with pytest.raises(ShapeMismatchError):
            machine.run_all()

    def test_unknown_node(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        g.apply("Neg", x)
        machine = DirectMachine(g, MachineConfig(manual_gradients={10**9: np.ones(2)}))
        with pytest.raises(ConfigurationError):
            machine.run_all()


class TestGradientLookup:
    """Tests for DirectMachine.gradient()."""

    def test_before_reverse_pass(self, cube_graph):
        g, x, y = cube_graph
        machine = DirectMachine(g)
        machine.run_all()
        with pytest.raises(KeyError):
            machine.gradient(x)

    def test_disconnected(self):
        machine, x, c, cost = run(MachineConfig())
        other = machine.graph.leaf((2,), name="other")
        with pytest.raises(DisconnectedGradientError) as exc_info:
            machine.gradient(other)
        assert exc_info.value.node_name == "other"

    def test_cost_gradient_is_one(self):
        machine, x, c, cost = run(MachineConfig())
        np.testing.assert_array_equal(machine.gradient(cost), 1.0)

    def test_rerun_is_repeatable(self):
        machine, x, c, cost = run(MachineConfig(accelerate_all=True))
        first = machine.gradient(x)
        machine.run_all()
        np.testing.assert_array_equal(machine.gradient(x), first)


class TestWatchlist:
    """Tests for watched values and gradients."""

    def test_watched_gradients(self):
        g, x, c, cost = loss_graph()
        config = MachineConfig(watchlist={c}, accelerate_all=True)
        machine = DirectMachine(g, config, cost=cost, accelerator=VirtualAccelerator())
        machine.load_standard_kernels()
        machine.run_all()
        assert set(machine.watched) == {c}
        assert set(machine.watched_gradients) == {c}
        np.testing.assert_allclose(machine.watched[c], DATA**3 + DATA**2)
        assert isinstance(machine.watched_gradients[c], np.ndarray)

    def test_nothing_watched_by_default(self):
        machine, *_ = run(MachineConfig())
        assert machine.watched == {}
        assert machine.watched_gradients == {}

    def test_watch_all(self):
        g, x, c, cost = loss_graph()
        machine = DirectMachine(g, MachineConfig(watch_all=True), cost=cost)
        machine.run_all()
        assert x in machine.watched_gradients
        assert len(machine.watched) == 7
        np.testing.assert_allclose(machine.watched[x], DATA)

    def test_trace(self):
        g, x, c, cost = loss_graph()
        trace = TraceLogger(verbosity=Verbosity.DEBUG)
        machine = DirectMachine(g, MachineConfig(logger=trace), cost=cost)
        machine.run_all()
        assert sum(line.count("eval ") for line in trace.lines) == 6
        assert any("grad x" in line for line in trace.lines)
