#!/usr/bin/env python3
"""
idguess.py

Session-ID guessing model: one trial of an attacker guessing until it lands
on a live session identifier.

The ID space is {0 .. 2^B - 1} for B bits (B <= 32). S identifiers in that
space are "valid" at any moment. Two regeneration policies:

    static  - the valid set is drawn once at the start of a trial.
    dynamic - the valid set is redrawn after every missed guess.

Three guess strategies:

    random    - a uniform draw from the ID space on every guess (may repeat).
    increment - 0, 1, 2, ... wrapping at 2^B.
    decrement - 2^B - 1, 2^B - 2, ... wrapping at 0.

A trial counts guesses until one is in the valid set. Against a static set the
sweeps never waste a guess, so they need about (2^B + 1) / (S + 1) guesses.
Against a dynamic set every strategy is a fresh uniform try, about 2^B / S.

All ID arithmetic is done with gmpy2.mpz.
"""

import enum
import random
from dataclasses import dataclass

from gmpy2 import mpz


# ----- Global configuration -----

MAX_BITS = 32        # widest ID space supported
DRAW_BITS = 32       # width of each raw random draw
BATCH_SIZE = 1000    # trials per progress report
DEFAULT_TRIALS = 10000


class ConfigurationError(ValueError):
    """Raised for a simulation config the engine must not run."""


class SessionMethod(str, enum.Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"


class GuessStrategy(str, enum.Enum):
    RANDOM = "random"
    INCREMENT = "increment"
    DECREMENT = "decrement"


@dataclass(frozen=True)
class SimulationConfig:
    """
    Inputs for one simulation run.

    requests_per_second is carried for display only; the engine counts
    guesses, not time. seed=None means every worker draws from OS entropy.
    """

    bits: int
    session_count: int
    session_method: SessionMethod = SessionMethod.STATIC
    guess_strategy: GuessStrategy = GuessStrategy.RANDOM
    trial_count: int = DEFAULT_TRIALS
    batch_size: int = BATCH_SIZE
    requests_per_second: float | None = None
    seed: int | None = None

    @property
    def total_ids(self) -> mpz:
        return mpz(1) << self.bits

    def validate(self) -> "SimulationConfig":
        """Raise ConfigurationError unless every field is usable. Returns self."""
        if not isinstance(self.bits, int) or not 1 <= self.bits <= MAX_BITS:
            raise ConfigurationError(f"bits must be an integer in 1..{MAX_BITS}, got {self.bits!r}")
        if not isinstance(self.session_count, int) or self.session_count < 1:
            raise ConfigurationError(f"session_count must be >= 1, got {self.session_count!r}")
        if self.session_count >= self.total_ids:
            raise ConfigurationError(
                f"session_count must be < 2^{self.bits} = {self.total_ids}, got {self.session_count}"
            )
        if not isinstance(self.trial_count, int) or self.trial_count < 1:
            raise ConfigurationError(f"trial_count must be a positive integer, got {self.trial_count!r}")
        if not isinstance(self.batch_size, int) or self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if self.requests_per_second is not None and not self.requests_per_second > 0:
            raise ConfigurationError(
                f"requests_per_second must be positive when given, got {self.requests_per_second!r}"
            )
        try:
            SessionMethod(self.session_method)
            GuessStrategy(self.guess_strategy)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        return self


# ----- RNG source -----

class UniformSource:
    """
    Uniform integers in [0, max) from fixed-width 32-bit draws.

    Each draw is reduced with a plain modulo. When max is not a power of two
    the low residues are very slightly favoured (at most 1 part in 2^32 / max);
    this is accepted for simulation purposes.

    The default byte source is random.SystemRandom (os.urandom). Passing a
    seeded random.Random gives a reproducible, non-cryptographic stream.
    """

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng if rng is not None else random.SystemRandom()

    @classmethod
    def seeded(cls, seed) -> "UniformSource":
        return cls(random.Random(seed))

    def next_uniform(self, max_value) -> mpz:
        if max_value <= 0:
            raise ValueError(f"max_value must be positive, got {max_value}")
        return mpz(self._rng.getrandbits(DRAW_BITS)) % max_value


# ----- Session-ID model -----

def generate_valid_set(session_count: int, total_ids, source: UniformSource) -> set:
    """
    Draw session_count distinct IDs from [0, total_ids).

    Duplicate draws are thrown away and redrawn, so the cost climbs steeply
    as session_count approaches total_ids. The caller must keep
    session_count < total_ids; with session_count >= total_ids this never returns.
    """
    valid = set()
    while len(valid) < session_count:
        valid.add(source.next_uniform(total_ids))
    return valid


# ----- Guess strategies -----

@dataclass(frozen=True)
class GuessState:
    """Strategy kind plus its cursor (None for random)."""

    kind: GuessStrategy
    cursor: mpz | None = None


def initial_state(strategy: GuessStrategy, total_ids) -> GuessState:
    strategy = GuessStrategy(strategy)
    if strategy is GuessStrategy.RANDOM:
        return GuessState(strategy)
    if strategy is GuessStrategy.INCREMENT:
        return GuessState(strategy, mpz(0))
    return GuessState(strategy, mpz(total_ids) - 1)


def advance(state: GuessState, total_ids, source: UniformSource) -> tuple[mpz, GuessState]:
    """
    Produce the next guess for state.

    Returns (guess, new_state). The input state is never modified; random
    returns the same state object since it has no cursor.
    """
    if state.kind is GuessStrategy.RANDOM:
        return source.next_uniform(total_ids), state

    guess = state.cursor % total_ids
    if state.kind is GuessStrategy.INCREMENT:
        nxt = (guess + 1) % total_ids
    else:
        nxt = (guess - 1 + total_ids) % total_ids
    return guess, GuessState(state.kind, nxt)


class Guesser:
    """
    Per-trial guess generator wrapping a GuessState.

    Build a fresh one for each trial so the sweeps always restart
    from 0 (increment) or 2^B - 1 (decrement).
    """

    def __init__(self, strategy: GuessStrategy, total_ids, source: UniformSource):
        self.total_ids = mpz(total_ids)
        self.source = source
        self.state = initial_state(strategy, self.total_ids)

    def next_guess(self) -> mpz:
        guess, self.state = advance(self.state, self.total_ids, self.source)
        return guess

    __call__ = next_guess


def make_guesser(strategy: GuessStrategy, total_ids, source: UniformSource) -> Guesser:
    return Guesser(strategy, total_ids, source)


# ----- Trial runner -----

@dataclass(frozen=True)
class TrialOutcome:
    guesses_taken: int


def run_trial(config: SimulationConfig, source: UniformSource) -> TrialOutcome:
    """
    Guess until a hit and return how many guesses it took.

    There is no iteration cap: termination is probabilistic, with about
    total_ids / session_count guesses expected. config must already be
    validated (session_count >= 1).

    Under the dynamic method the valid set is regenerated in full after
    every miss; this allocation is the dominant cost of a dynamic trial.
    """
    total_ids = config.total_ids
    session_count = config.session_count
    dynamic = SessionMethod(config.session_method) is SessionMethod.DYNAMIC

    valid = generate_valid_set(session_count, total_ids, source)
    guesser = make_guesser(config.guess_strategy, total_ids, source)
    guesses = 0

    while True:
        guesses += 1
        if guesser() in valid:
            break
        if dynamic:
            valid = generate_valid_set(session_count, total_ids, source)

    return TrialOutcome(guesses_taken=guesses)
