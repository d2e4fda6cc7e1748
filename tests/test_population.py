"""Tests for individuals, the population container and selection."""

import random

import pytest

from stackforge.fitness import FitnessEvaluator, TestCase
from stackforge.isa import Program
from stackforge.population import (
    Individual,
    Population,
    make_selector,
    roulette_weights,
    tournament_selector,
)


def ind(gid, fitness):
    i = Individual(gid=gid, program=Program.from_pairs(["ADD"]))
    i.fitness = fitness
    return i


class TestIndividual:
    def test_starts_unevaluated(self):
        i = Individual(gid="x", program=Program.from_pairs(["ADD"]))
        assert not i.evaluated
        assert i.fitness is None

    def test_new_program_clears_fitness(self):
        ev = FitnessEvaluator([TestCase(stack=(1, 2), expected=3)])
        i = Individual(gid="x", program=Program.from_pairs(["ADD"]))
        i.assign(ev.evaluate(i.program))
        assert i.evaluated and i.score.solved
        i.with_program(Program.from_pairs(["SUB"]))
        assert i.fitness is None and i.score is None

    def test_to_dict(self):
        i = ind("g1_0", 2.5)
        i.parents = ["g0_1"]
        d = i.to_dict()
        assert d["gid"] == "g1_0"
        assert d["fitness"] == 2.5
        assert d["program"] == [["ADD"]]
        assert d["parents"] == ["g0_1"]

    def test_to_dict_reports_shape(self):
        prog = Program.from_pairs([("PUSH", 1), ("JZ", 0), ("JMP", 0), "HALT"])
        d = Individual(gid="x", program=prog).to_dict()
        assert d["length"] == 4
        assert d["jumps"] == 2


class TestPopulation:
    def test_ranking_and_elites(self):
        pop = Population([ind("a", 1.0), ind("b", 3.0), ind("c", 2.0)])
        assert pop.best().gid == "b"
        assert [i.gid for i in pop.elites(2)] == ["b", "c"]
        assert pop.elites(0) == []
        assert pop.mean_fitness() == pytest.approx(2.0)

    def test_ties_keep_order(self):
        pop = Population([ind("a", 1.0), ind("b", 1.0)])
        assert pop.best().gid == "a"

    def test_unevaluated(self):
        fresh = Individual(gid="z", program=Program.from_pairs(["ADD"]))
        pop = Population([ind("a", 1.0), fresh])
        assert pop.unevaluated() == [fresh]


class TestSelection:
    def test_full_tournament_picks_best(self):
        pop = Population([ind("a", 1.0), ind("b", 5.0), ind("c", -2.0)])
        select = tournament_selector(3)
        rng = random.Random(0)
        assert all(select(pop, rng).gid == "b" for _ in range(20))

    def test_tournament_of_one_is_uniform(self):
        pop = Population([ind(str(k), float(k)) for k in range(5)])
        select = tournament_selector(1)
        rng = random.Random(1)
        seen = {select(pop, rng).gid for _ in range(200)}
        assert seen == {"0", "1", "2", "3", "4"}

    def test_roulette_weights_positive(self):
        w = roulette_weights([-3.0, -1.0, 5.0])
        assert all(x > 0 for x in w)
        assert w[2] > w[1] > w[0]
        assert roulette_weights([2.0, 2.0]) == [1.0, 1.0]

    def test_roulette_favours_fitter(self):
        pop = Population([ind("low", 0.0), ind("high", 100.0)])
        select = make_selector("roulette")
        rng = random.Random(2)
        picks = [select(pop, rng).gid for _ in range(500)]
        assert picks.count("high") > picks.count("low")

    def test_selection_is_reproducible(self):
        pop = Population([ind(str(k), float(k % 3)) for k in range(10)])
        select = make_selector("tournament", 3)
        a = [select(pop, random.Random(9)).gid for _ in range(5)]
        b = [select(pop, random.Random(9)).gid for _ in range(5)]
        assert a == b

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            make_selector("rank")
