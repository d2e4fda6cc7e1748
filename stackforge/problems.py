"""
Built-in target problems. Each supplies a test-case set for the evaluator;
the engine only depends on ``cases()`` and ``aggregate()``. Override
``aggregate`` as a method to change how case results are reduced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from .fitness import CaseResult, TestCase, sum_contributions


class Problem(ABC):
    name: str = "base"
    description: str = ""

    @abstractmethod
    def cases(self) -> Sequence[TestCase]:
        pass

    def aggregate(self, results: Sequence[CaseResult]) -> float:
        return sum_contributions(results)


class BinaryProblem(Problem):
    """Two operands on the stack, one result expected on top."""

    lo: int = 0
    hi: int = 9

    @abstractmethod
    def target(self, a: int, b: int) -> int:
        pass

    def cases(self) -> List[TestCase]:
        return [
            TestCase(stack=(a, b), expected=self.target(a, b))
            for a in range(self.lo, self.hi + 1)
            for b in range(self.lo, self.hi + 1)
        ]


class AdditionProblem(BinaryProblem):
    name = "addition"
    description = "a b -> a + b"

    def target(self, a: int, b: int) -> int:
        return a + b


class DifferenceProblem(BinaryProblem):
    name = "difference"
    description = "a b -> a - b"

    def target(self, a: int, b: int) -> int:
        return a - b


class SumOfSquaresProblem(BinaryProblem):
    name = "sum_of_squares"
    description = "a b -> a*a + b*b (squared hypotenuse)"

    def target(self, a: int, b: int) -> int:
        return a * a + b * b


class DoubleProblem(Problem):
    name = "double"
    description = "n -> 2n"

    def cases(self) -> List[TestCase]:
        return [TestCase(stack=(n,), expected=2 * n) for n in range(-5, 11)]


class FibonacciProblem(Problem):
    name = "fibonacci"
    description = "n in variable slot 0 -> fib(n); needs a loop"

    def __init__(self, upto: int = 10) -> None:
        self.upto = upto

    def cases(self) -> List[TestCase]:
        out = []
        a, b = 0, 1
        for n in range(self.upto + 1):
            out.append(TestCase(variables=(n,), expected=a))
            a, b = b, a + b
        return out


PROBLEMS: Dict[str, type] = {
    p.name: p
    for p in (AdditionProblem, DifferenceProblem, SumOfSquaresProblem, DoubleProblem, FibonacciProblem)
}


def get_problem(name: str) -> Problem:
    try:
        return PROBLEMS[name]()
    except KeyError:
        raise KeyError(f"unknown problem {name!r}; choose from {', '.join(sorted(PROBLEMS))}") from None
