"""
Fitness evaluation: run a program on every test case and reduce the
per-case results to one scalar (higher is better).

Per-case contribution:
    exact match                    -> MAX_REWARD (1.0)
    completed, distance d > 0      -> 1 / (1 + d)
    completed, no value to compare -> 0.0
    faulted / timed out            -> FAULT_PENALTY (-1.0)

so a faulting case is always strictly worse than any completing one. The
parsimony penalty is scaled to one case's share of the maximum aggregate,
so with parsimony * max_len < 0.5 a program exact on every case outranks
any inexact or faulting one under both the summed and the mean aggregate.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from .isa import Program
from .vm import ExecutionResult, MachineState, Status, VirtualMachine

MAX_REWARD = 1.0
EMPTY_RESULT = 0.0
FAULT_PENALTY = -1.0


@dataclass(frozen=True)
class TestCase:
    stack: Tuple[int, ...] = ()
    variables: Tuple[int, ...] = ()
    expected: Optional[int] = None
    expected_stack: Optional[Tuple[int, ...]] = None

    __test__ = False  # not a pytest class

    def __post_init__(self) -> None:
        object.__setattr__(self, "stack", tuple(self.stack))
        object.__setattr__(self, "variables", tuple(self.variables))
        if self.expected_stack is not None:
            object.__setattr__(self, "expected_stack", tuple(self.expected_stack))
        if self.expected is None and self.expected_stack is None:
            raise ValueError("test case needs an expected top-of-stack or an expected stack")

    def initial_state(self, slots: int) -> MachineState:
        return MachineState.fresh(self.stack, self.variables, slots=slots)


@dataclass(frozen=True)
class CaseResult:
    case: TestCase
    status: Status
    contribution: float
    exact: bool = False
    actual: Optional[int] = None
    reason: Optional[str] = None
    steps: int = 0


@dataclass(frozen=True)
class Score:
    fitness: float
    exact: int
    faulted: int
    timed_out: int
    cases: Tuple[CaseResult, ...] = field(default=(), repr=False)

    @property
    def n_cases(self) -> int:
        return len(self.cases)

    @property
    def solved(self) -> bool:
        return self.n_cases > 0 and self.exact == self.n_cases

    def summary(self) -> dict:
        return {
            "fitness": self.fitness,
            "exact": self.exact,
            "faulted": self.faulted,
            "timed_out": self.timed_out,
            "cases": self.n_cases,
        }


Aggregator = Callable[[Sequence[CaseResult]], float]


def sum_contributions(results: Sequence[CaseResult]) -> float:
    return float(sum(r.contribution for r in results))


def mean_contributions(results: Sequence[CaseResult]) -> float:
    if not results:
        return 0.0
    return sum_contributions(results) / len(results)


def distance(case: TestCase, state: MachineState) -> Optional[float]:
    """Distance between the final state and the case target, None if nothing comparable."""
    if case.expected_stack is not None:
        actual = state.stack
        want = case.expected_stack
        if not actual and want:
            return None
        d = abs(len(actual) - len(want))
        for a, e in zip(reversed(actual), reversed(want)):
            d += abs(a - e)
        return float(d)
    if state.top is None:
        return None
    return float(abs(state.top - case.expected))


def score_case(case: TestCase, result: ExecutionResult) -> CaseResult:
    st = result.state
    if result.status is not Status.COMPLETED:
        return CaseResult(case, result.status, FAULT_PENALTY, reason=result.reason, steps=st.steps)
    d = distance(case, st)
    if d is None:
        return CaseResult(case, result.status, EMPTY_RESULT, steps=st.steps)
    if d == 0:
        return CaseResult(case, result.status, MAX_REWARD, exact=True, actual=st.top, steps=st.steps)
    return CaseResult(case, result.status, 1.0 / (1.0 + d), actual=st.top, steps=st.steps)


class FitnessEvaluator:
    """Stateless between calls: ``evaluate`` is a pure function of the program."""

    def __init__(
        self,
        cases: Sequence[TestCase],
        step_limit: int = 1000,
        parsimony: float = 0.0,
        aggregate: Optional[Aggregator] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        if not cases:
            raise ValueError("fitness evaluation needs at least one test case")
        self.cases: Tuple[TestCase, ...] = tuple(cases)
        self.parsimony = float(parsimony)
        self.aggregate: Aggregator = aggregate or sum_contributions
        self.vm = VirtualMachine(step_limit=step_limit, cancel_event=cancel_event)
        # parsimony is charged per instruction in units of one case's reward,
        # so a summed and a mean aggregate rank programs the same way
        self.parsimony_unit = self.max_fitness / len(self.cases)

    @property
    def max_fitness(self) -> float:
        return self.aggregate(
            [CaseResult(c, Status.COMPLETED, MAX_REWARD, exact=True) for c in self.cases]
        )

    def run_case(self, program: Program, case: TestCase) -> CaseResult:
        result = self.vm.execute(program, case.initial_state(program.slots))
        return score_case(case, result)

    def evaluate(self, program: Program) -> Score:
        results: List[CaseResult] = [self.run_case(program, c) for c in self.cases]
        fitness = self.aggregate(results) - self.parsimony * self.parsimony_unit * len(program)
        return Score(
            fitness=float(fitness),
            exact=sum(1 for r in results if r.exact),
            faulted=sum(1 for r in results if r.status is Status.FAULTED),
            timed_out=sum(1 for r in results if r.status is Status.TIMED_OUT),
            cases=tuple(results),
        )

    __call__ = evaluate
