"""
Command-line harness.

Usage
-----
  python -m stackforge problems
  python -m stackforge run --problem addition --seed 7 --generations 300 --log run.jsonl
  python -m stackforge run --problem double --config ga.json --workers 4
  python -m stackforge selftest
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Any, Dict, Optional

from .config import SELECTION_STRATEGIES, GAConfig
from .engine import EvolutionEngine, GenerationStats, RunLogWriter, RunResult, Termination
from .errors import ConfigurationError
from .problems import PROBLEMS, get_problem

# CLI flag -> GAConfig field
OVERRIDES = {
    "seed": "seed",
    "generations": "max_generations",
    "pop_size": "pop_size",
    "selection": "selection",
    "workers": "workers",
    "step_limit": "step_limit",
    "max_len": "max_len",
    "elitism": "elitism",
    "stagnation": "stagnation_window",
}


def build_config(args: argparse.Namespace) -> GAConfig:
    cfg = GAConfig.load(args.config) if args.config else GAConfig()
    changes: Dict[str, Any] = {}
    for flag, name in OVERRIDES.items():
        v = getattr(args, flag, None)
        if v is not None:
            changes[name] = v
    return cfg.replace(**changes) if changes else cfg


def _reporter(every: int):
    every = max(1, every)

    def report(stats: GenerationStats) -> None:
        if stats.generation % every == 0:
            print(
                f"[gen {stats.generation}] best={stats.best:.4f} exact={stats.best_exact} "
                f"faults={stats.fault_fraction:.2f} timeouts={stats.timeout_fraction:.2f}",
                flush=True,
            )

    return report


def print_result(result: RunResult) -> None:
    print(f"RUN_DONE: reason={result.reason.value} generations={result.generations}", flush=True)
    if result.best is None:
        print("no individual was evaluated", flush=True)
        return
    print(f"best fitness={result.fitness:.4f} found at generation {result.generation_found}", flush=True)
    print(result.best.program.to_text(), flush=True)


def run_problem(cfg: GAConfig, problem_name: str, log: Optional[str], report_every: int) -> RunResult:
    problem = get_problem(problem_name)
    writer = RunLogWriter(log) if log else None
    try:
        engine = EvolutionEngine.for_problem(cfg, problem, writer=writer, on_generation=_reporter(report_every))
        try:
            return engine.run()
        except KeyboardInterrupt:
            engine.cancel()
            return engine.finish(Termination.CANCELLED)
    finally:
        if writer is not None:
            writer.close()


def cmd_run(args: argparse.Namespace) -> int:
    cfg = build_config(args)
    result = run_problem(cfg, args.problem, args.log, args.report_every)
    print_result(result)
    return 0


def cmd_selftest(args: argparse.Namespace) -> int:
    """
    Selftest validates that a short addition search runs end to end and that
    the run log holds a header, generation records and a result. It does not
    require the search to succeed.
    """
    out = args.out
    if os.path.exists(out):
        os.remove(out)
    cfg = GAConfig(pop_size=40, max_generations=args.generations, seed=args.seed, max_len=8, step_limit=50)
    result = run_problem(cfg, "addition", out, report_every=10)
    print_result(result)

    with open(out, "r", encoding="utf-8") as fh:
        lines = fh.readlines()
    if len(lines) < 3:
        print(f"SELFTEST_FAIL: run log has {len(lines)} lines", flush=True)
        return 1
    print(f"SELFTEST_OK: generations={result.generations} log_lines={len(lines)}", flush=True)
    return 0


def cmd_problems(args: argparse.Namespace) -> int:
    for name in sorted(PROBLEMS):
        print(f"{name:16s} {PROBLEMS[name].description}")
    return 0


def build_cli() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="stackforge", description="Evolve stack-machine programs")
    ap.add_argument("--log-level", default="WARNING", help="Python logging level")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p1 = sub.add_parser("run", help="Evolve a program for a built-in problem")
    p1.add_argument("--problem", choices=sorted(PROBLEMS), default="addition")
    p1.add_argument("--config", type=str, default=None, help="JSON file with GA configuration")
    p1.add_argument("--seed", type=int, default=None)
    p1.add_argument("--generations", type=int, default=None)
    p1.add_argument("--pop-size", dest="pop_size", type=int, default=None)
    p1.add_argument("--selection", choices=SELECTION_STRATEGIES, default=None)
    p1.add_argument("--workers", type=int, default=None)
    p1.add_argument("--step-limit", dest="step_limit", type=int, default=None)
    p1.add_argument("--max-len", dest="max_len", type=int, default=None)
    p1.add_argument("--elitism", type=int, default=None)
    p1.add_argument("--stagnation", type=int, default=None)
    p1.add_argument("--log", type=str, default=None, help="JSONL run log path")
    p1.add_argument("--report-every", dest="report_every", type=int, default=10)
    p1.set_defaults(func=cmd_run)

    p2 = sub.add_parser("selftest", help="Short end-to-end run with a run log")
    p2.add_argument("--seed", type=int, default=42)
    p2.add_argument("--generations", type=int, default=30)
    p2.add_argument("--out", type=str, default="stackforge_selftest.jsonl")
    p2.set_defaults(func=cmd_selftest)

    p3 = sub.add_parser("problems", help="List built-in problems")
    p3.set_defaults(func=cmd_problems)

    return ap


def main(argv: Optional[list] = None) -> int:
    ap = build_cli()
    args = ap.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")
    try:
        return int(args.func(args))
    except ConfigurationError as e:
        print(f"configuration error: {e}", file=sys.stderr, flush=True)
        return 2


if __name__ == "__main__":
    sys.exit(main())
