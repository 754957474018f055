#!/usr/bin/env python3
"""
simulate.py

How many guesses does it take to hit a live session ID?

Runs the parallel Monte Carlo simulation for a B-bit session-ID space with S
live sessions and prints the simulated average beside the closed-form
expectation.

Normal mode:
    - One run with the given --bits, or one run per bit width with --sweep.
    - Progress lines while the run is going; --quiet keeps one line per run.

Race mode (--race):
    - Runs the same settings three times with the same seed, once per
      guessing strategy (random, increment, decrement).

With --requests A the averages are also shown as attack durations.
Ctrl-C stops the run and prints the partial average.

Example:
    python3 simulate.py --bits 16 --sessions 4 --method static --strategy increment
    python3 simulate.py --sweep 8:20:4 --method dynamic --trials 2000 --quiet
"""

import argparse
import sys
import time

from idguess import (
    BATCH_SIZE,
    DEFAULT_TRIALS,
    MAX_BITS,
    ConfigurationError,
    GuessStrategy,
    SessionMethod,
    SimulationConfig,
)
from coordinator import Coordinator, WorkerFailure, default_worker_count
from estimate import (
    expected_duration,
    expected_guesses,
    expected_guesses_formula,
    humanize_duration,
    strategy_note,
)


MAX_REQUESTS_PER_SECOND = 100_000_000
EXIT_INTERRUPTED = 130


# ----- Input helpers -----

def parse_sweep(sweep_str):
    """
    Parse 'start:end' or 'start:end:step' into a list of bit widths.
    Example: '4:10:2' -> [4, 6, 8, 10]
    """
    try:
        fields = [int(x) for x in sweep_str.split(":")]
    except ValueError:
        raise ValueError("Sweep must be start:end or start:end:step, e.g. 4:10:2")
    if len(fields) == 2:
        fields.append(1)
    if len(fields) != 3:
        raise ValueError("Sweep must be start:end or start:end:step, e.g. 4:10:2")

    start, end, step = fields
    if start <= 0 or end <= 0 or step <= 0:
        raise ValueError("start, end, and step in sweep must be positive integers")
    if start > end:
        raise ValueError("sweep start must be <= end")

    return list(range(start, end + 1, step))


def clamp_session_count(bits: int, session_count: int) -> int:
    """Keep 1 <= S < 2^B."""
    total_ids = 2 ** bits
    if session_count >= total_ids:
        return total_ids - 1
    return max(session_count, 1)


def clamp_requests(requests):
    if requests is None:
        return None
    return min(requests, MAX_REQUESTS_PER_SECOND)


# ----- Output -----

class ProgressPrinter:
    """Prints a progress line each time the whole-percent figure moves."""

    def __init__(self, total_trials: int):
        self.total_trials = total_trials
        self.last_percent = -1

    def __call__(self, stats, fraction_complete):
        percent = int(fraction_complete * 100)
        if percent == self.last_percent:
            return
        self.last_percent = percent
        print(
            f"Progress: {percent}% | "
            f"Trials: {stats.completed_trials}/{self.total_trials} | "
            f"Avg. guesses: {stats.average_guesses:.2f}",
            flush=True,
        )


def describe(config: SimulationConfig) -> None:
    expected = expected_guesses(config.bits, config.session_count,
                                config.session_method, config.guess_strategy)
    formula = expected_guesses_formula(config.session_method, config.guess_strategy)

    print(
        f"Bits: {config.bits} | Total IDs: {config.total_ids} | "
        f"Sessions: {config.session_count} | "
        f"Method: {SessionMethod(config.session_method).value} | "
        f"Strategy: {GuessStrategy(config.guess_strategy).value}"
    )
    print(f"Expected guesses: {formula} = {float(expected):.2f}")
    if config.requests_per_second:
        seconds = expected_duration(expected, config.requests_per_second)
        print(
            f"Expected duration: {expected_guesses_formula(config.session_method, config.guess_strategy, True)}"
            f" = {float(seconds):.2f} seconds ≈ {humanize_duration(seconds)}"
        )
    print(f"Note: {strategy_note(config.session_method, config.guess_strategy)}")


def print_duration(label: str, guesses: float, requests_per_second) -> None:
    if not requests_per_second:
        return
    seconds = expected_duration(guesses, requests_per_second)
    print(f"{label}: {float(seconds):.2f} seconds ≈ {humanize_duration(seconds)}")


# ----- Runs -----

def run_one(config: SimulationConfig, num_workers: int, quiet: bool):
    """
    Run one simulation and print its results.

    Returns the final AggregateStats. Ctrl-C cancels the run and exits with
    status 130; a worker failure exits with status 1.
    """
    if not quiet:
        describe(config)

    coordinator = Coordinator(
        on_progress=None if quiet else ProgressPrinter(config.trial_count),
        num_workers=num_workers,
    )

    start_time = time.perf_counter()
    run = coordinator.start(config)
    try:
        stats = run.wait()
    except KeyboardInterrupt:
        coordinator.cancel(run)
        partial = run.stats.snapshot()
        print("")
        print(
            f"Simulation stopped. | "
            f"Trials: {partial.completed_trials}/{config.trial_count} | "
            f"Partial avg. guesses: {partial.average_guesses:.2f}"
        )
        sys.exit(EXIT_INTERRUPTED)
    except WorkerFailure as e:
        sys.stderr.write(f"Simulation failed: {e}\n")
        sys.exit(1)
    elapsed_ms = (time.perf_counter() - start_time) * 1000.0

    expected = float(expected_guesses(config.bits, config.session_count,
                                      config.session_method, config.guess_strategy))
    avg = stats.average_guesses

    if quiet:
        print(
            f"B: {config.bits} | S: {config.session_count} | "
            f"Method: {SessionMethod(config.session_method).value} | "
            f"Strategy: {GuessStrategy(config.guess_strategy).value} | "
            f"Avg. guesses: {avg:.2f} | Expected: {expected:.2f} | Ms: {elapsed_ms:.3f}"
        )
    else:
        print(
            f"Simulated avg. guesses: {avg:.2f} | Expected: {expected:.2f} | "
            f"Trials: {stats.completed_trials} | Ms: {elapsed_ms:.3f}"
        )
        print_duration("Simulated duration", avg, config.requests_per_second)
        print("")

    return stats


def build_configs(args) -> list[SimulationConfig]:
    """One config per bit width (and per strategy in race mode), with inputs clamped."""
    bit_widths = parse_sweep(args.sweep) if args.sweep else [args.bits]
    strategies = list(GuessStrategy) if args.race else [GuessStrategy(args.strategy)]

    requests = clamp_requests(args.requests)
    if requests != args.requests:
        print(f"Requests per second clamped to {requests}.")

    session_counts = {}
    for bits in bit_widths:
        session_counts[bits] = args.sessions
        if 1 <= bits <= MAX_BITS:
            session_counts[bits] = clamp_session_count(bits, args.sessions)
            if session_counts[bits] != args.sessions:
                print(f"Sessions clamped to {session_counts[bits]} for {bits} bits.")

    configs = []
    for strategy in strategies:
        for bits in bit_widths:
            configs.append(SimulationConfig(
                bits=bits,
                session_count=session_counts[bits],
                session_method=SessionMethod(args.method),
                guess_strategy=strategy,
                trial_count=args.trials,
                batch_size=args.batch_size,
                requests_per_second=requests,
                seed=args.seed,
            ))
    return configs


# ----- CLI -----

def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Monte Carlo estimate of guesses needed to hit a valid session ID."
    )
    parser.add_argument(
        "--bits",
        type=int,
        default=16,
        help="Session ID width in bits, 1..32 (default: 16).",
    )
    parser.add_argument(
        "--sessions",
        type=int,
        default=1,
        help="Number of live sessions S; clamped to 1 .. 2^B - 1 (default: 1).",
    )
    parser.add_argument(
        "--requests",
        type=float,
        default=None,
        help=f"Attacker requests per second A, at most {MAX_REQUESTS_PER_SECOND} (default: None).",
    )
    parser.add_argument(
        "--method",
        choices=[m.value for m in SessionMethod],
        default=SessionMethod.STATIC.value,
        help="static: IDs drawn once per trial; dynamic: redrawn after every miss (default: static).",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in GuessStrategy],
        default=GuessStrategy.RANDOM.value,
        help="Guessing strategy (default: random).",
    )
    parser.add_argument(
        "--trials",
        type=int,
        default=DEFAULT_TRIALS,
        help=f"Number of trials (default: {DEFAULT_TRIALS}).",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=BATCH_SIZE,
        help=f"Trials per worker progress report (default: {BATCH_SIZE}).",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker processes (default: CPU count).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for reproducible, non-cryptographic draws (default: None).",
    )
    parser.add_argument(
        "--sweep",
        type=str,
        default=None,
        help="Bit-width range start:end[:step], one run per width; overrides --bits.",
    )
    parser.add_argument(
        "--race",
        action="store_true",
        help="Race mode: run the same settings once per strategy with the same seed.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Only one summary line per run.",
    )
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    try:
        configs = build_configs(args)
    except ValueError as e:
        sys.stderr.write(f"Error parsing --sweep: {e}\n")
        sys.exit(1)

    try:
        for config in configs:
            config.validate()
    except ConfigurationError as e:
        sys.stderr.write(f"Error: {e}\n")
        sys.exit(1)

    num_workers = args.workers if args.workers is not None else default_worker_count()
    if num_workers < 1:
        sys.stderr.write("Error: --workers must be >= 1\n")
        sys.exit(1)

    current = None
    for config in configs:
        strategy = GuessStrategy(config.guess_strategy)
        if args.race and strategy is not current:
            current = strategy
            print(f"=== RACE: {strategy.value.upper()} ===")
        run_one(config, num_workers, args.quiet)


if __name__ == "__main__":
    main()
