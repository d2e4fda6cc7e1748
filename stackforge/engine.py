"""
Evolution loop.

One generation walks SELECTING -> REPRODUCING -> REPLACING -> EVALUATING;
the run starts with SEEDING -> EVALUATING and termination is checked after
every evaluation. Generations are strictly sequential; only the scoring of
individuals inside one generation is fanned out to worker threads.

All randomness comes from random.Random instances seeded by derive_seed(),
keyed on (run seed, generation, slot), so results do not depend on the order
in which workers finish.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import math
import os
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import GAConfig
from .errors import ConfigurationError
from .fitness import Aggregator, FitnessEvaluator, Score, TestCase
from .isa import ISA_VERSION, Program
from .operators import Crossover, Mutator
from .population import Individual, Population, make_selector

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    SEEDING = "seeding"
    EVALUATING = "evaluating"
    SELECTING = "selecting"
    REPRODUCING = "reproducing"
    REPLACING = "replacing"
    TERMINATED = "terminated"


class Termination(str, Enum):
    SOLVED = "solved"
    EXHAUSTED = "exhausted"
    STAGNATED = "stagnated"
    CANCELLED = "cancelled"


def derive_seed(seed: int, generation: int, slot: Any) -> int:
    h = hashlib.sha256(f"{seed}:{generation}:{slot}".encode("utf-8"))
    return int.from_bytes(h.digest()[:8], "big")


# ==============================================================================
# 1) Run records
# ==============================================================================

@dataclass
class GenerationStats:
    generation: int
    best: float
    mean: float
    fault_fraction: float
    timeout_fraction: float
    evaluated: int
    best_exact: int = 0
    crossover_rejects: int = 0
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        if math.isnan(d["mean"]):
            d["mean"] = None
        return d


@dataclass
class RunResult:
    best: Optional[Individual]
    fitness: Optional[float]
    generation_found: Optional[int]
    reason: Termination
    generations: int
    history: List[GenerationStats] = field(default_factory=list, repr=False)

    @property
    def program(self) -> Optional[Program]:
        return self.best.program if self.best is not None else None

    @property
    def solved(self) -> bool:
        return self.reason is Termination.SOLVED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reason": self.reason.value,
            "fitness": self.fitness,
            "generation_found": self.generation_found,
            "generations": self.generations,
            "best": self.best.to_dict() if self.best is not None else None,
        }


class RunLogWriter:
    """Append-only JSONL log; each record is flushed and fsynced as written."""

    def __init__(self, out_path: str) -> None:
        self.out_path = out_path
        self.f = open(out_path, "a", encoding="utf-8", buffering=1)

    def write(self, obj: Dict[str, Any]) -> None:
        self.f.write(json.dumps(obj, ensure_ascii=False) + "\n")
        self.flush_fsync()

    def header(self, config: GAConfig) -> None:
        self.write({"type": "header", "isa_version": ISA_VERSION, "config": config.to_dict()})

    def generation(self, stats: GenerationStats) -> None:
        self.write({"type": "generation", **stats.to_dict()})

    def result(self, result: RunResult) -> None:
        self.write({"type": "result", **result.to_dict()})

    def flush_fsync(self) -> None:
        self.f.flush()
        try:
            os.fsync(self.f.fileno())
        except OSError:
            # not every stream supports fsync (pipes, some network filesystems)
            pass

    def close(self) -> None:
        try:
            self.flush_fsync()
        finally:
            self.f.close()

    def __enter__(self) -> "RunLogWriter":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


# ==============================================================================
# 2) Engine
# ==============================================================================

class EvolutionEngine:
    def __init__(
        self,
        config: GAConfig,
        cases: Sequence[TestCase],
        aggregate: Optional[Aggregator] = None,
        writer: Optional[RunLogWriter] = None,
        on_generation: Optional[Callable[[GenerationStats], None]] = None,
    ) -> None:
        self.cfg = config
        for k, case in enumerate(cases):
            if len(case.variables) > config.slots:
                raise ConfigurationError(
                    f"test case {k} sets {len(case.variables)} variables but slots={config.slots}"
                )
        self._cancel = threading.Event()
        self.evaluator = FitnessEvaluator(
            cases,
            step_limit=config.step_limit,
            parsimony=config.parsimony,
            aggregate=aggregate,
            cancel_event=self._cancel,
        )
        self.grammar = config.grammar()
        self.mutator = Mutator(self.grammar, config.min_len, config.max_len)
        self.crossover = Crossover(config.min_len, config.max_len)
        self.selector = make_selector(config.selection, config.tournament_size)
        self.writer = writer
        self.on_generation = on_generation

        self.phase = Phase.SEEDING
        self.population: Optional[Population] = None
        self.generation = 0
        self.best: Optional[Individual] = None
        self.best_generation: Optional[int] = None
        self.last_improvement = 0
        self.history: List[GenerationStats] = []
        self.termination: Optional[Termination] = None

    @classmethod
    def for_problem(cls, config: GAConfig, problem: Any, **kwargs: Any) -> "EvolutionEngine":
        """Build from any object exposing ``cases()`` and optionally an ``aggregate(results)`` method."""
        return cls(config, problem.cases(), aggregate=getattr(problem, "aggregate", None), **kwargs)

    def cancel(self) -> None:
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # --------------------------------------------------------------------------
    # Phases
    # --------------------------------------------------------------------------

    def seed(self) -> Population:
        self.phase = Phase.SEEDING
        rng = random.Random(derive_seed(self.cfg.seed, 0, "seed"))
        members = [self._random_individual(rng, f"g0_{i}", 0) for i in range(self.cfg.pop_size)]
        self.population = Population(members, version=0)
        return self.population

    def _random_individual(self, rng: random.Random, gid: str, born: int) -> Individual:
        length = rng.randint(self.cfg.min_len, self.cfg.max_len)
        return Individual(gid=gid, program=self.grammar.random_program(rng, length), born=born)

    def evaluate(self, pop: Population) -> bool:
        """Score every unevaluated member. Returns False if the run was cancelled mid-way."""
        self.phase = Phase.EVALUATING
        todo = pop.unevaluated()
        groups: Dict[Program, List[Individual]] = {}
        for ind in todo:
            groups.setdefault(ind.program, []).append(ind)
        programs = list(groups)

        scores = self._score_all(programs)
        if scores is None:
            return False
        for prog, score in zip(programs, scores):
            for ind in groups[prog]:
                ind.assign(score)
        return True

    def _score_all(self, programs: List[Program]) -> Optional[List[Score]]:
        if self.cfg.workers <= 1 or len(programs) <= 1:
            scores = []
            for p in programs:
                if self.cancelled:
                    return None
                scores.append(self.evaluator.evaluate(p))
        else:
            with ThreadPoolExecutor(max_workers=self.cfg.workers) as pool:
                futures = [pool.submit(self.evaluator.evaluate, p) for p in programs]
                scores = []
                for fut in futures:
                    if self.cancelled:
                        for f in futures:
                            f.cancel()
                        return None
                    scores.append(fut.result())
        # in-flight executions stop as Cancelled; those scores are not trustworthy
        if self.cancelled:
            return None
        return scores

    def select_parents(self, pop: Population, n_pairs: int) -> List[Tuple[Individual, Individual, random.Random]]:
        self.phase = Phase.SELECTING
        gen = self.generation + 1
        pairs = []
        for p in range(n_pairs):
            rng = random.Random(derive_seed(self.cfg.seed, gen, p))
            pairs.append((self.selector(pop, rng), self.selector(pop, rng), rng))
        return pairs

    def reproduce(self, pop: Population) -> List[Individual]:
        cfg = self.cfg
        gen = self.generation + 1
        elites = [dataclasses.replace(e, parents=list(e.parents)) for e in pop.elites(cfg.elitism)]
        free = cfg.pop_size - len(elites)
        n_immigrants = min(free, int(cfg.immigrant_rate * cfg.pop_size))
        n_offspring = free - n_immigrants

        pairs = self.select_parents(pop, (n_offspring + 1) // 2)
        self.phase = Phase.REPRODUCING
        offspring: List[Individual] = []
        for p, (pa, pb, rng) in enumerate(pairs):
            if rng.random() < cfg.crossover_rate:
                c1, c2, _ = self.crossover.cross(pa.program, pb.program, rng)
            else:
                c1, c2 = pa.program, pb.program
            for k, (prog, parent_ids) in enumerate(((c1, [pa.gid, pb.gid]), (c2, [pb.gid, pa.gid]))):
                if len(offspring) >= n_offspring:
                    break
                prog, _ = self.mutator.maybe_mutate(prog, rng, cfg.mutation_rate)
                if prog is pa.program or prog is pb.program:
                    parent_ids = parent_ids[:1]
                offspring.append(Individual(gid=f"g{gen}_{2 * p + k}", program=prog, born=gen, parents=parent_ids))

        rng = random.Random(derive_seed(cfg.seed, gen, "immigrants"))
        immigrants = [self._random_individual(rng, f"g{gen}_i{k}", gen) for k in range(n_immigrants)]
        return elites + offspring + immigrants

    def replace(self, members: List[Individual]) -> Population:
        self.phase = Phase.REPLACING
        if len(members) != self.cfg.pop_size:
            raise RuntimeError(f"population size {len(members)} != configured {self.cfg.pop_size}")
        self.generation += 1
        self.population = Population(members, version=self.generation)
        return self.population

    # --------------------------------------------------------------------------
    # Bookkeeping
    # --------------------------------------------------------------------------

    def _record(self, pop: Population, rejects: int) -> GenerationStats:
        n = len(pop)
        gen_best = pop.best()
        if self.best is None or gen_best.fitness > self.best.fitness:
            self.best = dataclasses.replace(gen_best, parents=list(gen_best.parents))
            self.best_generation = self.generation
            self.last_improvement = self.generation
        stats = GenerationStats(
            generation=self.generation,
            best=gen_best.fitness,
            mean=pop.mean_fitness(),
            fault_fraction=sum(1 for m in pop if m.score and m.score.faulted) / n,
            timeout_fraction=sum(1 for m in pop if m.score and m.score.timed_out) / n,
            evaluated=n,
            best_exact=gen_best.score.exact if gen_best.score else 0,
            crossover_rejects=rejects,
            size=n,
        )
        self.history.append(stats)
        logger.info(
            "gen %d best=%.4f mean=%.4f faults=%.2f timeouts=%.2f",
            stats.generation, stats.best, stats.mean, stats.fault_fraction, stats.timeout_fraction,
        )
        if self.writer is not None:
            self.writer.generation(stats)
        if self.on_generation is not None:
            self.on_generation(stats)
        return stats

    def check_termination(self) -> Optional[Termination]:
        cfg = self.cfg
        if self.best is not None:
            if cfg.fitness_threshold is not None:
                if self.best.fitness >= cfg.fitness_threshold:
                    return Termination.SOLVED
            elif self.best.score is not None and self.best.score.solved:
                return Termination.SOLVED
        if self.generation >= cfg.max_generations:
            return Termination.EXHAUSTED
        if cfg.stagnation_window is not None and self.generation - self.last_improvement >= cfg.stagnation_window:
            return Termination.STAGNATED
        if self.cancelled:
            return Termination.CANCELLED
        return None

    # --------------------------------------------------------------------------
    # Driver
    # --------------------------------------------------------------------------

    def start(self) -> bool:
        pop = self.seed()
        if not self.evaluate(pop):
            return False
        self._record(pop, 0)
        return True

    def step(self) -> bool:
        """Run one full generation. Returns False if cancelled during evaluation."""
        assert self.population is not None, "call start() first"
        before = self.crossover.rejects
        members = self.reproduce(self.population)
        pop = self.replace(members)
        if not self.evaluate(pop):
            return False
        self._record(pop, self.crossover.rejects - before)
        return True

    def run(self) -> RunResult:
        if self.writer is not None:
            self.writer.header(self.cfg)
        ok = self.population is not None or self.start()
        while ok:
            reason = self.check_termination()
            if reason is not None:
                break
            ok = self.step()
        if not ok:
            reason = Termination.CANCELLED
        return self.finish(reason)

    def finish(self, reason: Termination) -> RunResult:
        self.phase = Phase.TERMINATED
        self.termination = reason
        result = RunResult(
            best=self.best,
            fitness=self.best.fitness if self.best is not None else None,
            generation_found=self.best_generation,
            reason=reason,
            generations=self.history[-1].generation if self.history else 0,
            history=list(self.history),
        )
        logger.info("run terminated: %s after %d generations, best=%s", reason.value, result.generations, result.fitness)
        if self.writer is not None:
            self.writer.result(result)
        return result


def evolve(
    config: GAConfig,
    cases: Sequence[TestCase],
    aggregate: Optional[Aggregator] = None,
    log_path: Optional[str] = None,
) -> RunResult:
    """Convenience wrapper: one run, optionally logged to JSONL."""
    if log_path is None:
        return EvolutionEngine(config, cases, aggregate=aggregate).run()
    with RunLogWriter(log_path) as writer:
        return EvolutionEngine(config, cases, aggregate=aggregate, writer=writer).run()
