# Copyright 2025 Wahyu Ardiansyah
# Licensed under the Apache License, Version 2.0

"""
Tests for Reverse-Mode Differentiation

Tests:
1. Binary operation gradient table (sum cost) on every execution path
2. Disconnected targets
3. Accumulation across multiple consumers
4. Engine bookkeeping (one contribution per use, deterministic order)
5. Symbolic expansion
"""

import pytest
import numpy as np

from nadir import DataType, DirectMachine, Graph, MachineConfig, TapeMachine, compile, grad
from nadir.autodiff import Computed, ReverseAccumulator, Supplied
from nadir.backends import VirtualAccelerator
from nadir.errors import DisconnectedGradientError, MissingGradientRuleError

A = np.array([1.0, 2.0, 3.0])
B = np.array([4.0, 5.0, 6.0])

# op -> (forward, dA, dB) for cost = sum(op(A, B))
GRADIENT_TABLE = {
    "Add": ([5.0, 7.0, 9.0], [1.0, 1.0, 1.0], [1.0, 1.0, 1.0]),
    "Sub": ([-3.0, -3.0, -3.0], [1.0, 1.0, 1.0], [-1.0, -1.0, -1.0]),
    "Mul": ([4.0, 10.0, 18.0], [4.0, 5.0, 6.0], [1.0, 2.0, 3.0]),
    "Div": (
        [0.25, 0.4, 0.5],
        [0.25, 0.2, 1.0 / 6.0],
        [-1.0 / 16.0, -2.0 / 25.0, -3.0 / 36.0],
    ),
    "Pow": (
        [1.0, 32.0, 729.0],
        [4.0, 80.0, 1458.0],
        [0.0, 32.0 * np.log(2.0), 729.0 * np.log(3.0)],
    ),
}


def binop_graph(op_name):
    g = Graph(name=op_name.lower())
    a = g.leaf((3,), DataType.Float64, name="a", value=A)
    b = g.leaf((3,), DataType.Float64, name="b", value=B)
    out = g.apply(op_name, a, b, name="out")
    cost = g.apply("Sum", out, name="cost")
    g.mark_output(out)
    return g, a, b, out, cost


def _direct(op_name, accelerated):
    g, a, b, out, cost = binop_graph(op_name)
    config = MachineConfig(accelerate_all=accelerated)
    machine = DirectMachine(g, config, cost=cost, accelerator=VirtualAccelerator())
    if accelerated:
        machine.load_standard_kernels()
    machine.run_all()
    return machine.value(out), machine.gradient(a), machine.gradient(b)


def _tape(op_name, accelerated):
    g, a, b, out, cost = binop_graph(op_name)
    da, db = grad(g, cost, a, b)
    program, locations = compile(g, MachineConfig(accelerate_all=accelerated))
    machine = TapeMachine(program, locations, accelerator=VirtualAccelerator())
    if accelerated:
        machine.load_standard_kernels()
    machine.run_all()
    return machine.value(out), machine.value(da), machine.value(db)


class TestGradientTable:
    """Analytic partials of binary operations."""

    @pytest.mark.parametrize("op_name", sorted(GRADIENT_TABLE))
    @pytest.mark.parametrize("runner", [_direct, _tape], ids=["direct", "tape"])
    @pytest.mark.parametrize("accelerated", [False, True], ids=["host", "accelerated"])
    def test_binop(self, op_name, runner, accelerated):
        forward, expected_da, expected_db = GRADIENT_TABLE[op_name]
        out, da, db = runner(op_name, accelerated)
        assert out.shape == (3,)
        assert da.shape == (3,)
        assert db.shape == (3,)
        np.testing.assert_allclose(out, forward, rtol=1e-12)
        np.testing.assert_allclose(da, expected_da, rtol=1e-12, atol=1e-12)
        np.testing.assert_allclose(db, expected_db, rtol=1e-12, atol=1e-12)

    @pytest.mark.parametrize("runner", [_direct, _tape], ids=["direct", "tape"])
    def test_scalar_operand(self, runner):
        """The gradient of a broadcast scalar sums over the tensor."""
        g = Graph()
        s = g.leaf((), name="s", value=2.0)
        x = g.leaf((3,), name="x", value=[1.0, 2.0, 3.0])
        cost = g.apply("Sum", g.apply("Mul", s, x))
        if runner is _direct:
            machine = DirectMachine(g, cost=cost)
            machine.run_all()
            ds, dx = machine.gradient(s), machine.gradient(x)
        else:
            ds_node, dx_node = grad(g, cost, s, x)
            machine = TapeMachine(*compile(g))
            machine.run_all()
            ds, dx = machine.value(ds_node), machine.value(dx_node)
        assert np.shape(ds) == ()
        np.testing.assert_allclose(ds, 6.0)
        np.testing.assert_allclose(dx, [2.0, 2.0, 2.0])


class TestDisconnected:
    """Targets that do not reach the cost."""

    def test_direct(self):
        g, a, b, out, cost = binop_graph("Add")
        w = g.leaf((3,), name="w", value=np.ones(3))
        g.apply("Neg", w)
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        with pytest.raises(DisconnectedGradientError) as exc_info:
            machine.gradient(w)
        assert exc_info.value.node_name == "w"

    def test_symbolic(self):
        g, a, b, out, cost = binop_graph("Add")
        w = g.leaf((3,), name="w", value=np.ones(3))
        with pytest.raises(DisconnectedGradientError):
            grad(g, cost, a, w)

    def test_symbolic_adds_no_nodes(self):
        """A failing grad() leaves the graph as it was."""
        g, a, b, out, cost = binop_graph("Add")
        w = g.leaf((3,), name="w", value=np.ones(3))
        before = list(g.nodes)
        with pytest.raises(DisconnectedGradientError):
            grad(g, cost, a, w, manual={out: np.ones(3)})
        assert g.nodes == before
        assert g.outputs == [out]

    def test_zero_gradient_is_not_disconnected(self):
        """A real zero gradient is returned as zeros."""
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        cost = g.apply("Sum", g.apply("Sub", x, x))
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [0.0, 0.0])


class TestAccumulation:
    """Contributions from several consumers."""

    def test_repeated_operand(self):
        g = Graph()
        x = g.leaf((3,), name="x", value=[1.0, 2.0, 3.0])
        cost = g.apply("Sum", g.apply("Mul", x, x))
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), [2.0, 4.0, 6.0])

    def test_diamond(self):
        g = Graph()
        data = np.array([0.5, 1.0])
        x = g.leaf((2,), name="x", value=data)
        c = g.apply("Add", g.apply("Exp", x), g.apply("Neg", x))
        cost = g.apply("Sum", c)
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        np.testing.assert_allclose(machine.gradient(x), np.exp(data) - 1.0, rtol=1e-12)

        (dx,) = grad(g, cost, x)
        tape = TapeMachine(*compile(g))
        tape.run_all()
        np.testing.assert_allclose(tape.value(dx), np.exp(data) - 1.0, rtol=1e-12)

    def test_matmul_chain(self):
        g = Graph()
        a_val = np.arange(6.0).reshape(2, 3)
        b_val = np.arange(12.0).reshape(3, 4) / 10.0
        a = g.leaf((2, 3), name="a", value=a_val)
        b = g.leaf((3, 4), name="b", value=b_val)
        cost = g.apply("Sum", g.apply("MatMul", a, b))
        machine = DirectMachine(g, cost=cost)
        machine.run_all()
        ones = np.ones((2, 4))
        np.testing.assert_allclose(machine.gradient(a), ones @ b_val.T)
        np.testing.assert_allclose(machine.gradient(b), a_val.T @ ones)


class TestReverseAccumulator:
    """Engine bookkeeping with a toy rule."""

    def test_one_contribution_per_use(self):
        g = Graph()
        x = g.leaf((), name="x")
        y1 = g.apply("Neg", x)
        y2 = g.apply("Neg", x)
        y3 = g.apply("Mul", x, x)
        cost = g.apply("Add", g.apply("Add", y1, y2), y3)

        adds = []

        def add(a, b):
            adds.append((a, b))
            return a + b

        engine = ReverseAccumulator(g, lambda node, gr: [gr] * node.num_operands(), add)
        gradients = engine.run(cost=cost, seed=1)
        # x receives four contributions (y1, y2 and two uses by y3)
        assert gradients[x.id] == 4
        assert len(adds) == 3

    def test_finalisation_order_is_reverse_creation(self):
        g = Graph()
        x = g.leaf((), name="x")
        a = g.apply("Neg", x)
        b = g.apply("Neg", x)
        cost = g.apply("Add", a, b)
        order = []
        engine = ReverseAccumulator(
            g,
            lambda node, gr: [gr] * node.num_operands(),
            lambda p, q: p + q,
            on_final=lambda node, gr: order.append(node),
        )
        engine.run(cost=cost, seed=1)
        assert order == [cost, b, a, x]

    def test_wrt_restricts_subgraph(self):
        g = Graph()
        x = g.leaf((2,), name="x")
        w = g.leaf((2,), name="w")
        f = g.apply("Floor", w)
        cost = g.apply("Sum", g.apply("Mul", f, x))
        engine = ReverseAccumulator(g, lambda node, gr: [gr] * node.num_operands(), lambda p, q: p + q)
        assert engine.subgraph([cost], wrt=[x]) == {x.id, cost.id, cost.operands[0].id}

    def test_missing_rule(self):
        g = Graph()
        x = g.leaf((2,), name="x")
        cost = g.apply("Sum", g.apply("Floor", x, name="f"))
        engine = ReverseAccumulator(g, lambda node, gr: [gr], lambda p, q: p + q)
        with pytest.raises(MissingGradientRuleError) as exc_info:
            engine.run(cost=cost, seed=1)
        assert exc_info.value.node_name == "f"

    def test_sources(self):
        g = Graph()
        x = g.leaf((), name="x")
        rule = lambda node, gr: [gr]
        engine = ReverseAccumulator(g, rule, lambda p, q: p + q)
        assert engine.source_of(x, {}) == Computed(rule)
        assert engine.source_of(x, {x.id: 5}) == Supplied(5)


class TestSymbolicGrad:
    """Tests for grad()."""

    def test_gradient_nodes_are_outputs(self):
        g, a, b, out, cost = binop_graph("Mul")
        da, db = grad(g, cost, a, b)
        assert da in g.outputs and db in g.outputs
        assert da.shape == a.shape
        assert db.shape == b.shape

    def test_non_differentiable_off_path(self):
        """Only paths from the targets need derivative rules."""
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        w = g.leaf((2,), name="w", value=[1.5, 2.5])
        cost = g.apply("Sum", g.apply("Mul", g.apply("Floor", w), x))
        (dx,) = grad(g, cost, x)
        machine = TapeMachine(*compile(g))
        machine.run_all()
        np.testing.assert_allclose(machine.value(dx), [1.0, 2.0])

    def test_non_differentiable_on_constant_path(self):
        """Both machines skip rule-less ops fed only by constants."""
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        w = g.constant(np.array([1.5, 2.5]), name="w")
        cost = g.apply("Sum", g.apply("Mul", g.apply("Floor", w), x))
        direct = DirectMachine(g, cost=cost)
        direct.run_all()
        (dx,) = grad(g, cost, x)
        tape = TapeMachine(*compile(g))
        tape.run_all()
        np.testing.assert_allclose(direct.gradient(x), [1.0, 2.0])
        np.testing.assert_allclose(tape.value(dx), direct.gradient(x))

    def test_non_differentiable_on_path(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        cost = g.apply("Sum", g.apply("Floor", x))
        with pytest.raises(MissingGradientRuleError):
            grad(g, cost, x)

    def test_missing_rule_adds_no_nodes(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        cost = g.apply("Sum", g.apply("Exp", g.apply("Floor", x)))
        size = len(g)
        with pytest.raises(MissingGradientRuleError):
            grad(g, cost, x)
        assert len(g) == size

    def test_manual_gradient(self):
        g = Graph()
        x = g.leaf((2,), name="x", value=[1.0, 2.0])
        y = g.apply("Cube", x, name="y")
        cost = g.apply("Sum", y)
        (dx,) = grad(g, cost, x, manual={y: [2.0, 2.0]})
        machine = TapeMachine(*compile(g))
        machine.run_all()
        np.testing.assert_allclose(machine.value(dx), [6.0, 24.0])

    def test_slice_gradient(self):
        g = Graph()
        data = np.arange(6.0).reshape(3, 2)
        x = g.leaf((3, 2), name="x", value=data)
        cost = g.apply("Sum", g.apply("Square", g.apply("Slice", x)))
        (dx,) = grad(g, cost, x)
        machine = TapeMachine(*compile(g))
        machine.run_all()
        np.testing.assert_allclose(machine.value(dx), [[0.0, 2.0], [0.0, 0.0], [0.0, 0.0]])
