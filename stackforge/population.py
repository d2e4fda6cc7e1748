"""Individuals, the population container, and parent selection."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .fitness import Score
from .isa import Program


@dataclass
class Individual:
    gid: str
    program: Program
    born: int = 0
    parents: List[str] = field(default_factory=list)
    fitness: Optional[float] = None
    score: Optional[Score] = None

    @property
    def evaluated(self) -> bool:
        return self.fitness is not None

    def assign(self, score: Score) -> None:
        self.score = score
        self.fitness = score.fitness

    def invalidate(self) -> None:
        self.fitness = None
        self.score = None

    def with_program(self, program: Program) -> None:
        """Swap in a new program; any cached fitness no longer applies."""
        self.program = program
        self.invalidate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gid": self.gid,
            "born": self.born,
            "parents": list(self.parents),
            "fitness": self.fitness,
            "code_hash": self.program.code_hash(),
            "length": len(self.program),
            "jumps": self.program.jump_count(),
            "program": self.program.to_list(),
        }


def _fitness_key(ind: Individual) -> float:
    return ind.fitness if ind.fitness is not None else float("-inf")


class Population:
    """Fixed-size, generation-versioned collection of Individuals."""

    def __init__(self, members: Sequence[Individual], version: int = 0) -> None:
        self.members: List[Individual] = list(members)
        self.version = version

    def __len__(self) -> int:
        return len(self.members)

    def __iter__(self) -> Iterator[Individual]:
        return iter(self.members)

    def __getitem__(self, i: int) -> Individual:
        return self.members[i]

    def unevaluated(self) -> List[Individual]:
        return [m for m in self.members if not m.evaluated]

    def ranked(self) -> List[Individual]:
        # stable: ties keep population order
        return sorted(self.members, key=_fitness_key, reverse=True)

    def best(self) -> Individual:
        return self.ranked()[0]

    def elites(self, k: int) -> List[Individual]:
        return self.ranked()[:k] if k > 0 else []

    def fitnesses(self) -> List[float]:
        return [_fitness_key(m) for m in self.members]

    def mean_fitness(self) -> float:
        vals = [m.fitness for m in self.members if m.fitness is not None]
        return sum(vals) / len(vals) if vals else float("nan")


# ==============================================================================
# Selection
# ==============================================================================

Selector = Callable[[Population, random.Random], Individual]


def tournament_selector(size: int) -> Selector:
    def select(pop: Population, rng: random.Random) -> Individual:
        k = min(size, len(pop))
        contenders = rng.sample(range(len(pop)), k)
        # lowest index wins ties
        best = max(contenders, key=lambda i: (_fitness_key(pop[i]), -i))
        return pop[best]

    return select


def roulette_weights(fitnesses: Sequence[float]) -> List[float]:
    """Shift fitnesses so every weight is strictly positive."""
    lo = min(fitnesses)
    span = max(fitnesses) - lo
    eps = span * 1e-3 if span > 0 else 1.0
    return [f - lo + eps for f in fitnesses]


def roulette_selector() -> Selector:
    def select(pop: Population, rng: random.Random) -> Individual:
        weights = roulette_weights(pop.fitnesses())
        return rng.choices(pop.members, weights=weights, k=1)[0]

    return select


def make_selector(strategy: str, tournament_size: int = 4) -> Selector:
    if strategy == "tournament":
        return tournament_selector(tournament_size)
    if strategy == "roulette":
        return roulette_selector()
    raise ValueError(f"unknown selection strategy {strategy!r}")
