"""
Tests for weighted elimination and winner selection.

Outcomes are a pure function of stakes and seed. The pinned outcomes for
SEED follow from the SHA-256 stream blocks; a change to the
stream layout or the weight arithmetic shows up there first.
"""
import hashlib

import pytest

from wager_arena.core.errors import InvariantViolation
from wager_arena.core.selector import (
    ELIMINATION_JITTER_BPS,
    WEIGHT_SCALE,
    Candidate,
    SeedStream,
    WeightedSelector,
    base_weight,
)

SEED = bytes.fromhex("5eed" * 16)


def seeds(n):
    return [hashlib.sha256(f"seed-{i}".encode()).digest() for i in range(n)]


@pytest.fixture
def selector():
    return WeightedSelector()


class TestSeedStream:
    def test_same_seed_same_sequence(self):
        a = SeedStream(SEED, "winner")
        b = SeedStream(SEED, "winner")
        assert [a.next_int() for _ in range(5)] == [b.next_int() for _ in range(5)]

    def test_domains_are_independent(self):
        assert SeedStream(SEED, "elimination").next_int() != SeedStream(SEED, "winner").next_int()

    def test_between_is_inclusive_range(self):
        stream = SeedStream(SEED)
        values = [stream.between(3, 5) for _ in range(200)]
        assert set(values) == {3, 4, 5}

    def test_rejects_empty_seed(self):
        with pytest.raises(ValueError):
            SeedStream(b"")


class TestBaseWeight:
    def test_perfect_square(self):
        assert base_weight(100) == 10 * WEIGHT_SCALE

    def test_floors_irrational_root(self):
        assert base_weight(2) == 1_414_213

    def test_non_positive_stake_has_no_weight(self):
        assert base_weight(0) == 0


class TestElimination:
    def test_equal_stakes_deterministic_top_two(self, selector):
        """[10, 10, 10, 10] with SEED: jitter 3200, 6527, 5213, 3189 bps puts b, c on top."""
        candidates = [Candidate(name, 10) for name in ("a", "b", "c", "d")]

        first = selector.select_finalists(candidates, SEED, finalist_count=2)
        second = selector.select_finalists(candidates, SEED, finalist_count=2)

        assert first.finalists == ["b", "c"]
        assert first.eliminated == ["a", "d"]
        assert first.ranks == {"a": 3, "d": 2}
        assert [w.jitter_bps for w in first.weights] == [3200, 6527, 5213, 3189]
        assert [w.final_weight for w in first.weights] == [4_174_205, 5_226_295, 4_810_772, 4_170_727]
        assert second == first

    def test_eliminated_rank_counts_down_from_placement(self, selector):
        candidates = [Candidate(f"p{i}", 10 + i) for i in range(6)]

        result = selector.select_finalists(candidates, SEED, finalist_count=2)

        # total=6: positions 3..6 map to ranks 5..2
        best_eliminated = result.eliminated[0]
        assert result.ranks[best_eliminated] == 5
        assert all(2 <= rank <= 5 for rank in result.ranks.values())
        assert not set(result.ranks) & set(result.finalists)

    def test_jitter_within_range(self, selector):
        candidates = [Candidate(f"p{i}", 100) for i in range(8)]
        result = selector.select_finalists(candidates, SEED, finalist_count=4)

        lo, hi = ELIMINATION_JITTER_BPS
        assert all(lo <= w.jitter_bps <= hi for w in result.weights)

    def test_needs_more_candidates_than_finalists(self, selector):
        with pytest.raises(InvariantViolation):
            selector.select_finalists([Candidate("a", 1), Candidate("b", 1)], SEED, finalist_count=2)

    def test_duplicate_candidates_rejected(self, selector):
        candidates = [Candidate("a", 1), Candidate("a", 2), Candidate("b", 1)]
        with pytest.raises(InvariantViolation):
            selector.select_finalists(candidates, SEED, finalist_count=1)


class TestWinner:
    def test_single_candidate_needs_no_seed(self, selector):
        result = selector.select_winner([Candidate("a", 5)], None)
        assert result.winner == "a"
        assert result.bypassed

    def test_sole_human_among_bots_wins(self, selector):
        candidates = [Candidate("bot1", 500, is_bot=True), Candidate("human", 1), Candidate("bot2", 500, is_bot=True)]

        result = selector.select_winner(candidates, None)

        assert result.winner == "human"
        assert result.bypassed
        assert not selector.needs_randomness(candidates)

    def test_contested_draw_requires_seed(self, selector):
        candidates = [Candidate("a", 5), Candidate("b", 5)]
        assert selector.needs_randomness(candidates)
        with pytest.raises(InvariantViolation):
            selector.select_winner(candidates, None)

    def test_draw_is_deterministic(self, selector):
        candidates = [Candidate("a", 10), Candidate("b", 20), Candidate("c", 30)]

        first = selector.select_winner(candidates, SEED)
        second = selector.select_winner(candidates, SEED)

        # final weights 4_715_271, 6_310_182, 9_373_722; the draw lands in b's band
        assert first.winner == "b"
        assert (first.draw, first.total_weight) == (5_524_960, 20_399_175)
        assert [w.jitter_bps for w in first.weights] == [4911, 4110, 7114]
        assert second == first

    def test_zero_weight_falls_back_to_highest_stake(self, selector):
        candidates = [Candidate("a", 0), Candidate("b", 0)]

        result = selector.select_winner(candidates, SEED)

        assert result.anomaly
        assert result.winner == "a"

    def test_large_stake_favoured_but_not_certain(self, selector):
        """sqrt dampening: 100x the stake is roughly 10x the odds, not a lock."""
        candidates = [Candidate("whale", 10_000), Candidate("minnow", 100)]

        wins = sum(selector.select_winner(candidates, s).winner == "whale" for s in seeds(400))

        assert 300 < wins < 400
