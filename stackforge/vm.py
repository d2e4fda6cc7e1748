"""
Deterministic, step-bounded stack machine.

All values are signed 32-bit integers; every arithmetic result and every
pushed literal wraps modulo 2**32. DIV truncates toward zero and faults on a
zero divisor. Each executed instruction (HALT included) costs one step.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .errors import DivisionByZero, ExecutionFault, InvalidJumpTarget, StackUnderflow
from .isa import ARITHMETIC_OPS, DEFAULT_SLOTS, Op, Program

# ==============================================================================
# 1) Numeric semantics
# ==============================================================================


def wrap_i32(x: int) -> int:
    x &= 0xFFFFFFFF
    return x - 0x100000000 if x & 0x80000000 else x


def trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


# ==============================================================================
# 2) Execution state + outcome
# ==============================================================================

@dataclass
class MachineState:
    stack: List[int] = field(default_factory=list)
    variables: List[int] = field(default_factory=lambda: [0] * DEFAULT_SLOTS)
    pc: int = 0
    steps: int = 0

    @classmethod
    def fresh(
        cls, stack: Sequence[int] = (), variables: Sequence[int] = (), slots: int = DEFAULT_SLOTS
    ) -> "MachineState":
        if len(variables) > slots:
            raise ValueError(f"{len(variables)} initial variables for a {slots}-slot bank")
        bank = [wrap_i32(int(v)) for v in variables]
        bank.extend([0] * (slots - len(bank)))
        return cls(stack=[wrap_i32(int(v)) for v in stack], variables=bank)

    @property
    def top(self) -> Optional[int]:
        return self.stack[-1] if self.stack else None

    def snapshot(self) -> tuple:
        return (tuple(self.stack), tuple(self.variables), self.pc, self.steps)


class Status(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAULTED = "faulted"
    CANCELLED = "cancelled"


@dataclass
class ExecutionResult:
    status: Status
    state: MachineState
    reason: Optional[str] = None
    fault_pc: Optional[int] = None

    @property
    def completed(self) -> bool:
        return self.status is Status.COMPLETED

    @property
    def steps(self) -> int:
        return self.state.steps


# ==============================================================================
# 3) Virtual machine
# ==============================================================================

class Execution:
    """One in-flight run of a program. May be advanced in slices and resumed."""

    def __init__(
        self,
        program: Program,
        state: MachineState,
        step_limit: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if len(state.variables) < program.slots:
            state.variables.extend([0] * (program.slots - len(state.variables)))
        self.program = program
        self.state = state
        self.step_limit = step_limit
        self.result: Optional[ExecutionResult] = None
        self._cancelled = False
        self._cancel_event = cancel_event

    @property
    def finished(self) -> bool:
        return self.result is not None

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled or (self._cancel_event is not None and self._cancel_event.is_set())

    def _finish(self, status: Status, reason: Optional[str] = None, pc: Optional[int] = None) -> ExecutionResult:
        self.result = ExecutionResult(status, self.state, reason, pc)
        return self.result

    def step(self) -> Optional[ExecutionResult]:
        """Execute one instruction; returns the result once the run has ended."""
        if self.result is not None:
            return self.result
        st = self.state
        if st.pc == len(self.program):
            return self._finish(Status.COMPLETED)
        if self.cancelled:
            return self._finish(Status.CANCELLED)
        if st.steps >= self.step_limit:
            return self._finish(Status.TIMED_OUT)
        if not 0 <= st.pc < len(self.program):
            return self._finish(Status.FAULTED, InvalidJumpTarget.reason, st.pc)

        pc = st.pc
        st.steps += 1
        try:
            halted = _dispatch(self.program, st)
        except ExecutionFault as e:
            return self._finish(Status.FAULTED, e.reason, pc)
        if halted:
            return self._finish(Status.COMPLETED)
        return None

    def run(self, max_steps: Optional[int] = None) -> Optional[ExecutionResult]:
        """Run until the program ends or ``max_steps`` more steps were taken."""
        budget = max_steps
        while self.result is None:
            if budget is not None:
                if budget <= 0:
                    return None
                budget -= 1
            self.step()
        return self.result


class VirtualMachine:
    def __init__(self, step_limit: int = 1000, cancel_event: Optional[threading.Event] = None) -> None:
        if step_limit < 1:
            raise ValueError("step_limit must be positive")
        self.step_limit = step_limit
        self.cancel_event = cancel_event

    def start(self, program: Program, state: Optional[MachineState] = None) -> Execution:
        if state is None:
            state = MachineState.fresh(slots=program.slots)
        return Execution(program, state, self.step_limit, self.cancel_event)

    def execute(self, program: Program, state: Optional[MachineState] = None) -> ExecutionResult:
        result = self.start(program, state).run()
        assert result is not None
        return result


def _pop(st: MachineState, pc: int) -> int:
    if not st.stack:
        raise StackUnderflow(pc)
    return st.stack.pop()


def _need(st: MachineState, n: int, pc: int) -> None:
    if len(st.stack) < n:
        raise StackUnderflow(pc, f"need {n}, have {len(st.stack)}")


def _dispatch(program: Program, st: MachineState) -> bool:
    """Apply the instruction at ``st.pc``. Returns True on HALT."""
    pc = st.pc
    inst = program[pc]
    op, arg = inst.op, inst.arg
    s = st.stack

    if op is Op.HALT:
        return True

    if op is Op.PUSH:
        s.append(wrap_i32(arg))
    elif op is Op.POP:
        _pop(st, pc)
    elif op in ARITHMETIC_OPS:
        _need(st, 2, pc)
        b = s.pop()
        a = s.pop()
        if op is Op.ADD:
            s.append(wrap_i32(a + b))
        elif op is Op.SUB:
            s.append(wrap_i32(a - b))
        elif op is Op.MUL:
            s.append(wrap_i32(a * b))
        else:
            if b == 0:
                raise DivisionByZero(pc)
            s.append(wrap_i32(trunc_div(a, b)))
    elif op is Op.DUP:
        _need(st, 1, pc)
        s.append(s[-1])
    elif op is Op.SWAP:
        _need(st, 2, pc)
        s[-1], s[-2] = s[-2], s[-1]
    elif op is Op.LOAD:
        s.append(st.variables[arg])
    elif op is Op.STORE:
        st.variables[arg] = _pop(st, pc)
    elif op is Op.JMP:
        st.pc = _target(program, arg, pc)
        return False
    elif op is Op.JZ:
        if _pop(st, pc) == 0:
            st.pc = _target(program, arg, pc)
            return False
    else:
        raise AssertionError(f"unhandled opcode {op}")

    st.pc = pc + 1
    return False


def _target(program: Program, target: int, pc: int) -> int:
    if not 0 <= target < len(program):
        raise InvalidJumpTarget(pc, f"target {target}")
    return target
