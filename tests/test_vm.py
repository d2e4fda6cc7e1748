"""Tests for the stack virtual machine."""

import random

import pytest

from stackforge.isa import INT_MAX, INT_MIN, Grammar, Program
from stackforge.vm import MachineState, Status, VirtualMachine, trunc_div, wrap_i32


def run(pairs, stack=(), variables=(), step_limit=1000, slots=4):
    program = Program.from_pairs(pairs, slots=slots)
    state = MachineState.fresh(stack, variables, slots=slots)
    return VirtualMachine(step_limit=step_limit).execute(program, state)


class TestNumerics:
    def test_wrap(self):
        assert wrap_i32(INT_MAX + 1) == INT_MIN
        assert wrap_i32(INT_MIN - 1) == INT_MAX
        assert wrap_i32(-5) == -5

    def test_trunc_div(self):
        assert trunc_div(7, 2) == 3
        assert trunc_div(-7, 2) == -3
        assert trunc_div(7, -2) == -3
        assert trunc_div(-7, -2) == 3


class TestInstructions:
    def test_addition(self):
        r = run(["ADD", "HALT"], stack=(2, 3))
        assert r.status is Status.COMPLETED
        assert r.state.stack == [5]
        assert r.steps == 2

    def test_sub_mul_div_operand_order(self):
        assert run(["SUB"], stack=(10, 3)).state.top == 7
        assert run(["MUL"], stack=(-4, 3)).state.top == -12
        assert run(["DIV"], stack=(-7, 2)).state.top == -3

    def test_overflow_wraps(self):
        assert run(["ADD"], stack=(INT_MAX, 1)).state.top == INT_MIN
        assert run(["MUL"], stack=(65536, 65536)).state.top == 0
        assert run(["DIV"], stack=(INT_MIN, -1)).state.top == INT_MIN

    def test_push_pop_dup_swap(self):
        r = run([("PUSH", 4), "DUP", ("PUSH", 1), "SWAP", "POP"])
        assert r.state.stack == [4, 1]

    def test_load_store(self):
        r = run([("STORE", 2), ("LOAD", 2), ("LOAD", 2), "ADD"], stack=(21,))
        assert r.state.stack == [42]
        assert r.state.variables[2] == 21

    def test_initial_variables(self):
        r = run([("LOAD", 0)], variables=(9,))
        assert r.state.top == 9

    def test_jz_pops_and_branches(self):
        # counts down from 3 to 0 via slot 0
        prog = [
            ("LOAD", 0),   # 0
            ("JZ", 7),     # 1
            ("LOAD", 0),   # 2
            ("PUSH", -1),  # 3
            "ADD",         # 4
            ("STORE", 0),  # 5
            ("JMP", 0),    # 6
            ("LOAD", 0),   # 7
        ]
        r = run(prog, variables=(3,))
        assert r.status is Status.COMPLETED
        assert r.state.stack == [0]

    def test_jz_not_taken_falls_through(self):
        r = run([("JZ", 2), ("PUSH", 1), "HALT"], stack=(5,))
        assert r.state.stack == [1]

    def test_implicit_halt_at_end(self):
        r = run([("PUSH", 1)])
        assert r.status is Status.COMPLETED
        assert r.steps == 1

    def test_empty_program_completes(self):
        r = VirtualMachine().execute(Program(()), MachineState.fresh((1,)))
        assert r.status is Status.COMPLETED
        assert r.steps == 0


class TestFaults:
    def test_pop_on_empty_stack(self):
        r = run(["POP", "HALT"])
        assert r.status is Status.FAULTED
        assert r.reason == "STACK_UNDERFLOW"
        assert r.fault_pc == 0

    @pytest.mark.parametrize("op", ["ADD", "SUB", "MUL", "DIV", "SWAP"])
    def test_binary_underflow(self, op):
        r = run([op], stack=(1,))
        assert r.status is Status.FAULTED
        assert r.reason == "STACK_UNDERFLOW"

    def test_dup_and_jz_underflow(self):
        assert run(["DUP"]).reason == "STACK_UNDERFLOW"
        assert run([("JZ", 0)]).reason == "STACK_UNDERFLOW"
        assert run([("STORE", 0)]).reason == "STACK_UNDERFLOW"

    def test_division_by_zero(self):
        r = run(["DIV"], stack=(1, 0))
        assert r.status is Status.FAULTED
        assert r.reason == "DIVISION_BY_ZERO"


class TestStepLimit:
    def test_self_loop_times_out_after_exact_limit(self):
        r = run([("JMP", 0)], step_limit=1000)
        assert r.status is Status.TIMED_OUT
        assert r.steps == 1000

    def test_program_finishing_on_last_step_completes(self):
        r = run([("PUSH", 1), ("PUSH", 2), "ADD"], step_limit=3)
        assert r.status is Status.COMPLETED
        assert r.steps == 3

    def test_halt_counts_as_step(self):
        r = run(["HALT"], step_limit=1)
        assert r.status is Status.COMPLETED
        assert r.steps == 1


class TestResumableExecution:
    def test_run_in_slices(self):
        program = Program.from_pairs([("PUSH", 10), ("PUSH", 2), "DIV", "DUP"])
        ex = VirtualMachine().start(program)
        assert ex.run(2) is None
        assert ex.state.stack == [10, 2]
        result = ex.run()
        assert result.status is Status.COMPLETED
        assert result.state.stack == [5, 5]
        assert ex.finished

    def test_cancel_stops_run(self):
        ex = VirtualMachine(step_limit=10_000).start(Program.from_pairs([("JMP", 0)]))
        ex.run(5)
        ex.cancel()
        result = ex.run()
        assert result.status is Status.CANCELLED
        assert result.steps == 5


class TestDeterminism:
    def test_repeated_execution_is_identical(self):
        rng = random.Random(7)
        g = Grammar(literal_min=-3, literal_max=3)
        vm = VirtualMachine(step_limit=200)
        for _ in range(300):
            p = g.random_program(rng, rng.randint(1, 15))
            stack = tuple(rng.randint(-5, 5) for _ in range(rng.randint(0, 3)))
            r1 = vm.execute(p, MachineState.fresh(stack))
            r2 = vm.execute(p, MachineState.fresh(stack))
            assert r1.status == r2.status
            assert r1.reason == r2.reason
            assert r1.state.snapshot() == r2.state.snapshot()
