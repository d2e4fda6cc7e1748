"""GA configuration: immutable for the duration of one run, validated up front."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .isa import INT_MAX, INT_MIN, Grammar

SELECTION_STRATEGIES = ("tournament", "roulette")


@dataclass(frozen=True)
class GAConfig:
    pop_size: int = 100
    mutation_rate: float = 0.8
    crossover_rate: float = 0.7
    min_len: int = 1
    max_len: int = 16
    max_generations: int = 200
    step_limit: int = 200
    selection: str = "tournament"
    tournament_size: int = 4
    elitism: int = 2
    seed: int = 42
    stagnation_window: Optional[int] = 50
    fitness_threshold: Optional[float] = None

    slots: int = 4
    literal_min: int = -10
    literal_max: int = 10
    parsimony: float = 0.001
    immigrant_rate: float = 0.0
    workers: int = 1

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        def fail(msg: str) -> None:
            raise ConfigurationError(msg)

        if self.pop_size < 1:
            fail(f"pop_size must be >= 1, got {self.pop_size}")
        for name in ("mutation_rate", "crossover_rate", "immigrant_rate"):
            v = getattr(self, name)
            if not 0.0 <= v <= 1.0:
                fail(f"{name} must be in [0, 1], got {v}")
        if self.min_len < 1:
            fail(f"min_len must be >= 1, got {self.min_len}")
        if self.min_len > self.max_len:
            fail(f"min_len ({self.min_len}) > max_len ({self.max_len})")
        if self.max_generations < 1:
            fail(f"max_generations must be >= 1, got {self.max_generations}")
        if self.step_limit < 1:
            fail(f"step_limit must be >= 1, got {self.step_limit}")
        if self.selection not in SELECTION_STRATEGIES:
            fail(f"selection must be one of {SELECTION_STRATEGIES}, got {self.selection!r}")
        if not 1 <= self.tournament_size <= self.pop_size:
            fail(f"tournament_size must be in [1, pop_size], got {self.tournament_size}")
        if not 0 <= self.elitism <= self.pop_size:
            fail(f"elitism must be in [0, pop_size], got {self.elitism}")
        if self.stagnation_window is not None and self.stagnation_window < 1:
            fail(f"stagnation_window must be >= 1 or null, got {self.stagnation_window}")
        if self.slots < 1:
            fail(f"slots must be >= 1, got {self.slots}")
        if not INT_MIN <= self.literal_min <= self.literal_max <= INT_MAX:
            fail(f"literal range [{self.literal_min}, {self.literal_max}] is empty or not 32-bit")
        if self.parsimony < 0:
            fail(f"parsimony must be >= 0, got {self.parsimony}")
        # an exact program must outrank every inexact or faulting one
        if self.parsimony * self.max_len >= 0.5:
            fail(f"parsimony * max_len must be < 0.5, got {self.parsimony * self.max_len}")
        if self.workers < 1:
            fail(f"workers must be >= 1, got {self.workers}")

    def grammar(self) -> Grammar:
        return Grammar(slots=self.slots, literal_min=self.literal_min, literal_max=self.literal_max)

    def replace(self, **changes: Any) -> "GAConfig":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GAConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def load(cls, path: str) -> "GAConfig":
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"cannot read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"config {path} must hold a JSON object")
        return cls.from_dict(data)
