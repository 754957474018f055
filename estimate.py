#!/usr/bin/env python3
"""
estimate.py

Closed-form expectations to set beside the simulated averages.

For B bits, S valid sessions and A requests per second:

    dynamic method, or random strategy:   E = 2^B / S
    static method with a sweep:           E = (2^B + 1) / (S + 1)

Duration is E / A seconds. Everything is exact (gmpy2.mpq) until display.
"""

from gmpy2 import mpq, mpz

from idguess import GuessStrategy, SessionMethod


SECONDS_PER_UNIT = [
    ("year", 31557600),    # 365.25 days
    ("month", 2629800),    # 30.4375 days
    ("week", 604800),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
]


def _resamples(session_method, guess_strategy) -> bool:
    """True when every guess is an independent uniform try."""
    return (SessionMethod(session_method) is SessionMethod.DYNAMIC
            or GuessStrategy(guess_strategy) is GuessStrategy.RANDOM)


def expected_guesses(bits: int, session_count: int, session_method, guess_strategy) -> mpq:
    total_ids = mpz(1) << bits
    if _resamples(session_method, guess_strategy):
        return mpq(total_ids, session_count)
    return mpq(total_ids + 1, session_count + 1)


def expected_guesses_formula(session_method, guess_strategy, with_rate: bool = False) -> str:
    if _resamples(session_method, guess_strategy):
        return "2^B / (S * A)" if with_rate else "2^B / S"
    return "(2^B + 1) / ((S + 1) * A)" if with_rate else "(2^B + 1) / (S + 1)"


def expected_duration(guesses, requests_per_second) -> mpq:
    """Seconds needed to make `guesses` requests at the given rate."""
    if requests_per_second <= 0:
        raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")
    return mpq(guesses) / mpq(requests_per_second)


def humanize_duration(seconds) -> str:
    """
    Render a duration such as "1 day, 1 hour, 1 second".

    Rounds to whole seconds first; anything under half a second is "0 seconds".
    """
    seconds = mpq(seconds)
    remaining = mpz(seconds + mpq(1, 2)) if seconds > 0 else mpz(0)
    if remaining <= 0:
        return "0 seconds"

    parts = []
    for name, size in SECONDS_PER_UNIT:
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count} {name}" if count == 1 else f"{count} {name}s")
    return ", ".join(parts)


def strategy_note(session_method, guess_strategy) -> str:
    if SessionMethod(session_method) is SessionMethod.DYNAMIC:
        return ("All guessing strategies perform equally in dynamic mode because "
                "the valid session IDs change with every guess.")
    if GuessStrategy(guess_strategy) is GuessStrategy.RANDOM:
        return ("In static mode, random guessing may result in repeated guesses "
                "and is less efficient than incremental or decremental guessing.")
    if GuessStrategy(guess_strategy) is GuessStrategy.INCREMENT:
        return "Incremental guessing avoids repeat guesses in static mode and is more efficient."
    return "Decremental guessing avoids repeat guesses in static mode and is more efficient."
