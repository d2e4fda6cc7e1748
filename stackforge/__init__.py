"""
stack-forge: evolutionary synthesis of programs for a small stack machine.

    from stackforge import GAConfig, EvolutionEngine
    from stackforge.problems import get_problem

    result = EvolutionEngine.for_problem(GAConfig(seed=1), get_problem("addition")).run()
    print(result.reason, result.fitness)
    print(result.program.to_text())
"""

from .config import GAConfig
from .engine import EvolutionEngine, GenerationStats, RunLogWriter, RunResult, Termination, evolve
from .errors import (
    ConfigurationError,
    DivisionByZero,
    ExecutionFault,
    InvalidJumpTarget,
    MalformedProgram,
    OperatorRepairFailure,
    StackForgeError,
    StackUnderflow,
)
from .fitness import FitnessEvaluator, Score, TestCase
from .isa import ISA_VERSION, Grammar, Instruction, Op, Program
from .operators import Crossover, Mutator
from .population import Individual, Population
from .vm import ExecutionResult, MachineState, Status, VirtualMachine

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "Crossover",
    "DivisionByZero",
    "EvolutionEngine",
    "ExecutionFault",
    "ExecutionResult",
    "FitnessEvaluator",
    "GAConfig",
    "GenerationStats",
    "Grammar",
    "ISA_VERSION",
    "Individual",
    "Instruction",
    "InvalidJumpTarget",
    "MachineState",
    "MalformedProgram",
    "Mutator",
    "Op",
    "OperatorRepairFailure",
    "Population",
    "Program",
    "RunLogWriter",
    "RunResult",
    "Score",
    "StackForgeError",
    "StackUnderflow",
    "Status",
    "Termination",
    "TestCase",
    "VirtualMachine",
    "evolve",
]
