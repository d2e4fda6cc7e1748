"""
Instruction set, program genome and the sampling grammar for valid instructions.

A Program is an immutable, validated sequence of Instructions. Jump targets
are absolute indices and must lie in [0, len(program)).
"""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from .errors import MalformedProgram

# ==============================================================================
# 1) Instruction set
# ==============================================================================

ISA_VERSION = 1

INT_MIN = -(2 ** 31)
INT_MAX = 2 ** 31 - 1
DEFAULT_SLOTS = 4


class Op(str, Enum):
    PUSH = "PUSH"
    POP = "POP"
    ADD = "ADD"
    SUB = "SUB"
    MUL = "MUL"
    DIV = "DIV"
    DUP = "DUP"
    SWAP = "SWAP"
    LOAD = "LOAD"
    STORE = "STORE"
    JMP = "JMP"
    JZ = "JZ"
    HALT = "HALT"

    def __str__(self) -> str:
        return self.value


class Operand(str, Enum):
    LITERAL = "literal"
    SLOT = "slot"
    TARGET = "target"


# New opcodes are added here and in the VM dispatch; nothing else changes.
OPERAND_KIND: Dict[Op, Optional[Operand]] = {
    Op.PUSH: Operand.LITERAL,
    Op.POP: None,
    Op.ADD: None,
    Op.SUB: None,
    Op.MUL: None,
    Op.DIV: None,
    Op.DUP: None,
    Op.SWAP: None,
    Op.LOAD: Operand.SLOT,
    Op.STORE: Operand.SLOT,
    Op.JMP: Operand.TARGET,
    Op.JZ: Operand.TARGET,
    Op.HALT: None,
}

ARITHMETIC_OPS = frozenset({Op.ADD, Op.SUB, Op.MUL, Op.DIV})
JUMP_OPS = frozenset(op for op, kind in OPERAND_KIND.items() if kind is Operand.TARGET)
NULLARY_OPS = tuple(op for op, kind in OPERAND_KIND.items() if kind is None)
UNARY_OPS = tuple(op for op, kind in OPERAND_KIND.items() if kind is not None)


def arity(op: Op) -> int:
    return 0 if OPERAND_KIND[op] is None else 1


def parse_op(name: Any) -> Op:
    if isinstance(name, Op):
        return name
    try:
        return Op(str(name).upper())
    except ValueError:
        raise MalformedProgram(f"unknown opcode {name!r}") from None


@dataclass(frozen=True)
class Instruction:
    op: Op
    arg: Optional[int] = None

    @property
    def is_jump(self) -> bool:
        return self.op in JUMP_OPS

    def with_arg(self, arg: int) -> "Instruction":
        return Instruction(self.op, arg)

    def to_tuple(self) -> Tuple[Any, ...]:
        return (self.op.value, self.arg)

    def __str__(self) -> str:
        if self.arg is None:
            return self.op.value
        return f"{self.op.value} {self.arg}"


# ==============================================================================
# 2) Program genome
# ==============================================================================

@dataclass(frozen=True)
class Program:
    instructions: Tuple[Instruction, ...]
    slots: int = DEFAULT_SLOTS

    def __post_init__(self) -> None:
        if not isinstance(self.instructions, tuple):
            object.__setattr__(self, "instructions", tuple(self.instructions))
        if self.slots < 1:
            raise MalformedProgram(f"variable bank must have at least one slot, got {self.slots}")
        n = len(self.instructions)
        for pc, inst in enumerate(self.instructions):
            _check_instruction(pc, inst, n, self.slots)

    @classmethod
    def from_pairs(cls, pairs: Iterable[Any], slots: int = DEFAULT_SLOTS) -> "Program":
        """Build from raw ``(opcode, operand)`` pairs or bare opcode names."""
        insts = []
        for item in pairs:
            if isinstance(item, Instruction):
                insts.append(item)
                continue
            if isinstance(item, (tuple, list)):
                if len(item) not in (1, 2):
                    raise MalformedProgram(f"expected (opcode[, operand]), got {item!r}")
                op = parse_op(item[0])
                arg = item[1] if len(item) == 2 else None
            else:
                op, arg = parse_op(item), None
            insts.append(Instruction(op, arg))
        return cls(tuple(insts), slots=slots)

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)

    def __getitem__(self, i: int) -> Instruction:
        return self.instructions[i]

    def replace(self, instructions: Sequence[Instruction]) -> "Program":
        return Program(tuple(instructions), slots=self.slots)

    def jump_count(self) -> int:
        return sum(1 for i in self.instructions if i.is_jump)

    def code_hash(self) -> str:
        h = hashlib.sha256()
        for inst in self.instructions:
            h.update(repr(inst.to_tuple()).encode("utf-8"))
        return h.hexdigest()[:16]

    def to_text(self) -> str:
        return "\n".join(str(i) for i in self.instructions)

    def to_list(self) -> list:
        return [list(i.to_tuple()) if i.arg is not None else [i.op.value] for i in self.instructions]


def _check_instruction(pc: int, inst: Instruction, length: int, slots: int) -> None:
    if not isinstance(inst, Instruction):
        raise MalformedProgram(f"pc={pc}: not an Instruction: {inst!r}")
    if not isinstance(inst.op, Op):
        raise MalformedProgram(f"pc={pc}: unknown opcode {inst.op!r}")
    kind = OPERAND_KIND[inst.op]
    if kind is None:
        if inst.arg is not None:
            raise MalformedProgram(f"pc={pc}: {inst.op} takes no operand, got {inst.arg!r}")
        return
    if inst.arg is None:
        raise MalformedProgram(f"pc={pc}: {inst.op} requires a {kind.value} operand")
    if isinstance(inst.arg, bool) or not isinstance(inst.arg, int):
        raise MalformedProgram(f"pc={pc}: {inst.op} operand must be int, got {inst.arg!r}")
    a = inst.arg
    if kind is Operand.LITERAL and not (INT_MIN <= a <= INT_MAX):
        raise MalformedProgram(f"pc={pc}: literal {a} outside 32-bit range")
    if kind is Operand.SLOT and not (0 <= a < slots):
        raise MalformedProgram(f"pc={pc}: slot {a} outside [0, {slots})")
    if kind is Operand.TARGET and not (0 <= a < length):
        raise MalformedProgram(f"pc={pc}: jump target {a} outside [0, {length})")


# ==============================================================================
# 3) Sampling grammar
# ==============================================================================

@dataclass(frozen=True)
class Grammar:
    """Ranges used to sample fresh valid instructions."""

    slots: int = DEFAULT_SLOTS
    literal_min: int = -10
    literal_max: int = 10
    weights: Mapping[Op, float] = field(default_factory=dict)

    def _weight(self, op: Op) -> float:
        return float(self.weights.get(op, 1.0))

    def choose_op(self, rng: random.Random, among: Sequence[Op] = tuple(Op)) -> Op:
        ops = list(among)
        if not self.weights:
            return rng.choice(ops)
        return rng.choices(ops, weights=[self._weight(o) for o in ops], k=1)[0]

    def random_operand(self, op: Op, length: int, rng: random.Random) -> Optional[int]:
        """Operand for ``op`` in a program of ``length`` instructions."""
        kind = OPERAND_KIND[op]
        if kind is None:
            return None
        if kind is Operand.LITERAL:
            return rng.randint(self.literal_min, self.literal_max)
        if kind is Operand.SLOT:
            return rng.randrange(self.slots)
        return rng.randrange(max(1, length))

    def random_instruction(
        self, rng: random.Random, length: int, among: Sequence[Op] = tuple(Op)
    ) -> Instruction:
        op = self.choose_op(rng, among)
        return Instruction(op, self.random_operand(op, length, rng))

    def random_program(self, rng: random.Random, length: int) -> Program:
        return Program(tuple(self.random_instruction(rng, length) for _ in range(length)), slots=self.slots)
