"""Tests for the instruction set and program construction."""

import random

import pytest

from stackforge.errors import MalformedProgram
from stackforge.isa import (
    INT_MAX,
    INT_MIN,
    JUMP_OPS,
    NULLARY_OPS,
    OPERAND_KIND,
    UNARY_OPS,
    Grammar,
    Instruction,
    Op,
    Operand,
    Program,
    parse_op,
)


class TestOpcodes:
    def test_operand_kind_covers_every_opcode(self):
        assert set(OPERAND_KIND) == set(Op)

    def test_arity_partitions(self):
        assert set(NULLARY_OPS) | set(UNARY_OPS) == set(Op)
        assert not set(NULLARY_OPS) & set(UNARY_OPS)
        assert JUMP_OPS == {Op.JMP, Op.JZ}

    def test_parse_op_accepts_names_case_insensitively(self):
        assert parse_op("push") is Op.PUSH
        assert parse_op(Op.HALT) is Op.HALT

    def test_parse_op_rejects_unknown(self):
        with pytest.raises(MalformedProgram):
            parse_op("NOP")


class TestProgramConstruction:
    def test_from_pairs(self):
        p = Program.from_pairs([("PUSH", 3), "DUP", ("ADD",), ("JZ", 0), "HALT"])
        assert len(p) == 5
        assert p[0] == Instruction(Op.PUSH, 3)
        assert p[1] == Instruction(Op.DUP)
        assert p[3].is_jump

    def test_unknown_opcode(self):
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("FROB", 1)])

    def test_missing_operand(self):
        with pytest.raises(MalformedProgram):
            Program.from_pairs(["PUSH"])

    def test_unexpected_operand(self):
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("ADD", 1)])

    def test_jump_target_out_of_range(self):
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("JMP", 2), "HALT"])
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("JZ", -1), "HALT"])

    def test_jump_target_last_position_is_valid(self):
        p = Program.from_pairs([("JMP", 1), "HALT"])
        assert p[0].arg == 1

    def test_slot_range_follows_bank_size(self):
        Program.from_pairs([("LOAD", 1)], slots=2)
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("LOAD", 2)], slots=2)
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("STORE", -1)])

    def test_literal_must_fit_32_bits(self):
        Program.from_pairs([("PUSH", INT_MAX), ("PUSH", INT_MIN)])
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("PUSH", INT_MAX + 1)])

    def test_non_integer_operand(self):
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("PUSH", 1.5)])
        with pytest.raises(MalformedProgram):
            Program.from_pairs([("PUSH", True)])

    def test_programs_are_immutable_and_hashable(self):
        p = Program.from_pairs(["ADD", "HALT"])
        q = Program.from_pairs(["ADD", "HALT"])
        assert p == q
        assert hash(p) == hash(q)
        assert p.code_hash() == q.code_hash()
        with pytest.raises(AttributeError):
            p.slots = 9

    def test_text_form(self):
        p = Program.from_pairs([("PUSH", -2), "ADD", ("JZ", 0)])
        assert p.to_text() == "PUSH -2\nADD\nJZ 0"


class TestGrammar:
    def test_random_programs_are_valid(self):
        rng = random.Random(0)
        g = Grammar(slots=3, literal_min=-5, literal_max=5)
        for _ in range(200):
            n = rng.randint(1, 20)
            p = g.random_program(rng, n)
            assert len(p) == n
            for inst in p:
                kind = OPERAND_KIND[inst.op]
                if kind is Operand.LITERAL:
                    assert -5 <= inst.arg <= 5
                elif kind is Operand.SLOT:
                    assert 0 <= inst.arg < 3
                elif kind is Operand.TARGET:
                    assert 0 <= inst.arg < n

    def test_weights_restrict_choice(self):
        rng = random.Random(1)
        g = Grammar(weights={op: 0.0 for op in Op if op is not Op.DUP})
        assert {g.choose_op(rng) for _ in range(50)} == {Op.DUP}
