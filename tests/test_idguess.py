"""Tests for the session-ID model, guess strategies and trial runner."""

import random

import pytest
from gmpy2 import mpz

from idguess import (
    ConfigurationError,
    GuessState,
    GuessStrategy,
    SessionMethod,
    SimulationConfig,
    UniformSource,
    advance,
    generate_valid_set,
    initial_state,
    make_guesser,
    run_trial,
)


class TestSimulationConfig:
    """Tests for SimulationConfig.validate."""

    def test_valid_config_returns_self(self):
        config = SimulationConfig(bits=8, session_count=3)
        assert config.validate() is config

    def test_total_ids_is_power_of_two(self):
        assert SimulationConfig(bits=32, session_count=1).total_ids == 2 ** 32

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"bits": 0, "session_count": 1},
            {"bits": 33, "session_count": 1},
            {"bits": 4, "session_count": 0},
            {"bits": 4, "session_count": 16},
            {"bits": 1, "session_count": 2},
            {"bits": 4, "session_count": 1, "trial_count": 0},
            {"bits": 4, "session_count": 1, "batch_size": 0},
            {"bits": 4, "session_count": 1, "requests_per_second": 0},
            {"bits": 4, "session_count": 1, "guess_strategy": "sideways"},
        ],
    )
    def test_rejects_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            SimulationConfig(**kwargs).validate()

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)

    def test_largest_session_count_accepted(self):
        SimulationConfig(bits=4, session_count=15).validate()


class TestUniformSource:
    """Tests for the RNG source."""

    def test_values_in_range(self):
        source = UniformSource.seeded(1)
        values = [source.next_uniform(10) for _ in range(2000)]
        assert min(values) >= 0
        assert max(values) < 10
        assert set(values) == set(range(10))

    def test_rejects_non_positive_max(self):
        source = UniformSource.seeded(1)
        with pytest.raises(ValueError):
            source.next_uniform(0)

    def test_power_of_two_max_is_low_bits(self):
        """A power-of-two max keeps exactly the low bits of each 32-bit draw."""
        raw = random.Random(7)
        source = UniformSource.seeded(7)
        for _ in range(100):
            assert source.next_uniform(256) == raw.getrandbits(32) & 0xFF

    def test_seeded_sources_repeat(self):
        a = UniformSource.seeded(42)
        b = UniformSource.seeded(42)
        assert [a.next_uniform(1000) for _ in range(20)] == [b.next_uniform(1000) for _ in range(20)]

    def test_default_source_uses_system_random(self):
        source = UniformSource()
        assert 0 <= source.next_uniform(2 ** 32) < 2 ** 32


class TestGenerateValidSet:
    """Tests for generate_valid_set."""

    @pytest.mark.parametrize(
        ("bits", "session_count"),
        [(1, 1), (2, 3), (3, 1), (4, 8), (4, 15), (8, 100), (16, 1000), (32, 50)],
    )
    def test_exact_size_and_range(self, bits, session_count):
        total_ids = mpz(2) ** bits
        valid = generate_valid_set(session_count, total_ids, UniformSource.seeded(bits))
        assert len(valid) == session_count
        assert all(0 <= v < total_ids for v in valid)

    def test_fresh_set_each_call(self):
        source = UniformSource.seeded(3)
        first = generate_valid_set(4, 1 << 20, source)
        second = generate_valid_set(4, 1 << 20, source)
        assert first is not second
        assert first != second


class TestGuessStrategies:
    """Tests for guess strategy state and advance."""

    @pytest.mark.parametrize("bits", [1, 2, 3, 5, 8])
    def test_increment_full_cycle(self, bits):
        total_ids = 2 ** bits
        guesser = make_guesser(GuessStrategy.INCREMENT, total_ids, UniformSource.seeded(0))
        guesses = [guesser() for _ in range(total_ids)]
        assert guesses == list(range(total_ids))

    @pytest.mark.parametrize("bits", [1, 2, 3, 5, 8])
    def test_decrement_full_cycle(self, bits):
        total_ids = 2 ** bits
        guesser = make_guesser(GuessStrategy.DECREMENT, total_ids, UniformSource.seeded(0))
        guesses = [guesser() for _ in range(total_ids)]
        assert guesses == list(range(total_ids - 1, -1, -1))
        assert sorted(guesses) == list(range(total_ids))

    def test_increment_wraps(self):
        guesser = make_guesser(GuessStrategy.INCREMENT, 4, UniformSource.seeded(0))
        assert [guesser() for _ in range(6)] == [0, 1, 2, 3, 0, 1]

    def test_decrement_wraps(self):
        guesser = make_guesser(GuessStrategy.DECREMENT, 4, UniformSource.seeded(0))
        assert [guesser() for _ in range(6)] == [3, 2, 1, 0, 3, 2]

    def test_initial_cursors(self):
        assert initial_state(GuessStrategy.RANDOM, 16).cursor is None
        assert initial_state(GuessStrategy.INCREMENT, 16).cursor == 0
        assert initial_state(GuessStrategy.DECREMENT, 16).cursor == 15

    def test_initial_state_accepts_strings(self):
        assert initial_state("increment", 8).kind is GuessStrategy.INCREMENT

    def test_advance_is_pure(self):
        state = GuessState(GuessStrategy.INCREMENT, mpz(5))
        source = UniformSource.seeded(0)
        first = advance(state, 16, source)
        second = advance(state, 16, source)
        assert first == second
        assert first[0] == 5
        assert first[1].cursor == 6
        assert state.cursor == 5

    def test_random_stays_in_range(self):
        guesser = make_guesser(GuessStrategy.RANDOM, 16, UniformSource.seeded(9))
        guesses = [guesser() for _ in range(500)]
        assert all(0 <= g < 16 for g in guesses)
        assert guesser.state.cursor is None

    def test_new_guesser_restarts_sweep(self):
        source = UniformSource.seeded(0)
        first = make_guesser(GuessStrategy.INCREMENT, 8, source)
        for _ in range(5):
            first()
        second = make_guesser(GuessStrategy.INCREMENT, 8, source)
        assert second() == 0


class TestRunTrial:
    """Tests for run_trial."""

    @pytest.mark.parametrize("seed", range(50))
    def test_static_increment_bounded_by_space(self, seed):
        config = SimulationConfig(bits=3, session_count=1,
                                  session_method=SessionMethod.STATIC,
                                  guess_strategy=GuessStrategy.INCREMENT,
                                  trial_count=1)
        outcome = run_trial(config, UniformSource.seeded(seed))
        assert 1 <= outcome.guesses_taken <= 8

    @pytest.mark.parametrize("seed", range(20))
    def test_static_decrement_bounded_by_space(self, seed):
        config = SimulationConfig(bits=4, session_count=3,
                                  guess_strategy=GuessStrategy.DECREMENT)
        outcome = run_trial(config, UniformSource.seeded(seed))
        assert 1 <= outcome.guesses_taken <= 16 - 3 + 1

    def test_static_increment_hits_smallest_valid_id(self):
        """The sweep stops on the lowest valid ID, so guesses = min(valid) + 1."""
        config = SimulationConfig(bits=6, session_count=5,
                                  guess_strategy=GuessStrategy.INCREMENT)
        valid = generate_valid_set(5, config.total_ids, UniformSource.seeded(11))
        outcome = run_trial(config, UniformSource.seeded(11))
        assert outcome.guesses_taken == min(valid) + 1

    def test_dynamic_terminates(self):
        config = SimulationConfig(bits=4, session_count=1,
                                  session_method=SessionMethod.DYNAMIC,
                                  guess_strategy=GuessStrategy.INCREMENT)
        source = UniformSource.seeded(5)
        outcomes = [run_trial(config, source).guesses_taken for _ in range(200)]
        assert all(n >= 1 for n in outcomes)

    def test_dynamic_can_exceed_space_size(self):
        """Rotation means a sweep is no longer bounded by the ID space."""
        config = SimulationConfig(bits=2, session_count=1,
                                  session_method=SessionMethod.DYNAMIC,
                                  guess_strategy=GuessStrategy.INCREMENT)
        source = UniformSource.seeded(2)
        outcomes = [run_trial(config, source).guesses_taken for _ in range(500)]
        assert max(outcomes) > 4

    def test_nearly_full_space_hits_fast(self):
        config = SimulationConfig(bits=3, session_count=7,
                                  guess_strategy=GuessStrategy.RANDOM)
        source = UniformSource.seeded(1)
        outcomes = [run_trial(config, source).guesses_taken for _ in range(200)]
        assert sum(outcomes) / len(outcomes) < 1.5
