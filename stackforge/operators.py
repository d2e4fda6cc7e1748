"""
Genetic operators over Programs.

Operators never touch their inputs: every result is a freshly constructed
(and therefore re-validated) Program. Jump targets are absolute, so any edit
that moves instructions also rewrites the targets that pointed past the edit.

Mutation: one edit per program, kind drawn uniformly among those feasible at
the current length (point, insert, delete, operand). A candidate that fails
validation is discarded and another random edit is drawn; after
MAX_REPAIR_TRIES the operator raises OperatorRepairFailure.

Crossover: variable-length single point. Suffix targets are remapped by the
cut shift; a pair whose children leave the length bounds or hold an
out-of-range target is rejected and new cuts are drawn. After
MAX_REPAIR_TRIES rejections the parents are returned unrecombined.
"""

from __future__ import annotations

import random
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import MalformedProgram, OperatorRepairFailure
from .isa import NULLARY_OPS, UNARY_OPS, Grammar, Instruction, Program, arity

MAX_REPAIR_TRIES = 32

MUTATION_KINDS = ("point", "insert", "delete", "operand")

# ==============================================================================
# 1) Jump-target bookkeeping
# ==============================================================================


def shift_for_insert(insts: Sequence[Instruction], pos: int) -> List[Instruction]:
    """Targets at or past ``pos`` move up by one to follow their instruction."""
    out = []
    for inst in insts:
        if inst.is_jump and inst.arg >= pos:
            inst = inst.with_arg(inst.arg + 1)
        out.append(inst)
    return out


def delete_at(insts: Sequence[Instruction], pos: int) -> List[Instruction]:
    """Remove ``pos``; later targets move down, targets at ``pos`` land on its successor (clamped)."""
    remaining = list(insts[:pos]) + list(insts[pos + 1:])
    last = len(remaining) - 1
    out = []
    for inst in remaining:
        if inst.is_jump:
            t = inst.arg
            if t > pos:
                t -= 1
            elif t == pos:
                t = min(pos, last)
            inst = inst.with_arg(t)
        out.append(inst)
    return out


def remap_segment(insts: Sequence[Instruction], shift: int) -> List[Instruction]:
    if shift == 0:
        return list(insts)
    return [i.with_arg(i.arg + shift) if i.is_jump else i for i in insts]


# ==============================================================================
# 2) Mutation
# ==============================================================================

class Mutator:
    def __init__(self, grammar: Grammar, min_len: int, max_len: int) -> None:
        self.grammar = grammar
        self.min_len = min_len
        self.max_len = max_len
        self.counts: Dict[str, int] = {k: 0 for k in MUTATION_KINDS}
        self.retries = 0

    def feasible_kinds(self, program: Program) -> List[str]:
        n = len(program)
        kinds = ["point"] if n else []
        if n < self.max_len:
            kinds.append("insert")
        if n > self.min_len:
            kinds.append("delete")
        if any(i.arg is not None for i in program):
            kinds.append("operand")
        return kinds

    def maybe_mutate(self, program: Program, rng: random.Random, rate: float) -> Tuple[Program, Optional[str]]:
        if rng.random() >= rate:
            return program, None
        return self.mutate(program, rng)

    def mutate(self, program: Program, rng: random.Random) -> Tuple[Program, str]:
        kinds = self.feasible_kinds(program)
        if not kinds:
            raise OperatorRepairFailure(f"no mutation applies to a program of length {len(program)}")
        last_err: Optional[Exception] = None
        for _ in range(MAX_REPAIR_TRIES):
            kind = rng.choice(kinds)
            insts = getattr(self, "_" + kind)(list(program.instructions), rng)
            try:
                child = program.replace(insts)
            except MalformedProgram as e:
                last_err = e
                self.retries += 1
                continue
            if not self.min_len <= len(child) <= self.max_len:
                self.retries += 1
                continue
            self.counts[kind] += 1
            return child, kind
        raise OperatorRepairFailure(f"mutation failed after {MAX_REPAIR_TRIES} tries: {last_err}")

    def _point(self, insts: List[Instruction], rng: random.Random) -> List[Instruction]:
        pos = rng.randrange(len(insts))
        among = NULLARY_OPS if arity(insts[pos].op) == 0 else UNARY_OPS
        insts[pos] = self.grammar.random_instruction(rng, len(insts), among)
        return insts

    def _insert(self, insts: List[Instruction], rng: random.Random) -> List[Instruction]:
        pos = rng.randint(0, len(insts))
        out = shift_for_insert(insts, pos)
        out.insert(pos, self.grammar.random_instruction(rng, len(insts) + 1))
        return out

    def _delete(self, insts: List[Instruction], rng: random.Random) -> List[Instruction]:
        return delete_at(insts, rng.randrange(len(insts)))

    def _operand(self, insts: List[Instruction], rng: random.Random) -> List[Instruction]:
        candidates = [k for k, i in enumerate(insts) if i.arg is not None]
        pos = rng.choice(candidates)
        op = insts[pos].op
        insts[pos] = Instruction(op, self.grammar.random_operand(op, len(insts), rng))
        return insts


# ==============================================================================
# 3) Crossover
# ==============================================================================

class Crossover:
    def __init__(self, min_len: int, max_len: int) -> None:
        self.min_len = min_len
        self.max_len = max_len
        self.rejects = 0
        self.fallbacks = 0

    def _fits(self, n: int) -> bool:
        return self.min_len <= n <= self.max_len

    def cross(self, a: Program, b: Program, rng: random.Random) -> Tuple[Program, Program, bool]:
        """Returns ``(child1, child2, recombined)``."""
        if a.slots != b.slots:
            raise ValueError(f"parents disagree on variable bank size ({a.slots} vs {b.slots})")
        la, lb = len(a), len(b)
        for _ in range(MAX_REPAIR_TRIES):
            i = rng.randint(0, la)
            j = rng.randint(0, lb)
            n1 = i + (lb - j)
            n2 = j + (la - i)
            if not (self._fits(n1) and self._fits(n2)):
                self.rejects += 1
                continue
            c1 = list(a.instructions[:i]) + remap_segment(b.instructions[j:], i - j)
            c2 = list(b.instructions[:j]) + remap_segment(a.instructions[i:], j - i)
            try:
                return a.replace(c1), b.replace(c2), True
            except MalformedProgram:
                self.rejects += 1
        self.fallbacks += 1
        return a, b, False
