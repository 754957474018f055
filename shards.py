#!/usr/bin/env python3
"""
shards.py

Batch executor: runs one contiguous shard of trials inside a worker process.

A shard of T trials is run in batches of K. After each batch the worker puts a
"progress" event on the result queue carrying its *cumulative* counters
(completed trials, summed guesses since the shard started). When the shard is
exhausted it puts one "done" event with the final cumulative counters and
returns.

Cumulative counters let the coordinator recover the delta from any two
snapshots, so a lost intermediate progress event costs nothing.

Events:

    ("progress", worker_id, completed_trials, total_guesses)
    ("done",     worker_id, completed_trials, total_guesses)
    ("failed",   worker_id, completed_trials, total_guesses, traceback)

The stop event is checked before every trial. A trial already in progress
always runs to the end.
"""

import random
import signal
import traceback
from dataclasses import dataclass

from idguess import SimulationConfig, UniformSource, run_trial


PROGRESS = "progress"
DONE = "done"
FAILED = "failed"


@dataclass(frozen=True)
class WorkerEvent:
    kind: str
    worker_id: int
    completed_trials: int
    total_guesses: int
    error: str | None = None


def worker_source(seed, worker_id: int) -> UniformSource:
    """Each worker gets its own stream; seeded runs key it on both seed and worker id."""
    if seed is None:
        return UniformSource(random.SystemRandom())
    return UniformSource.seeded(f"{seed}:{worker_id}")


def iter_shard(config: SimulationConfig, shard_trials: int, source: UniformSource,
               worker_id: int = 0, should_stop=None):
    """
    Run shard_trials trials and yield a WorkerEvent after every batch.

    The last event is DONE unless should_stop() turned true first, in which
    case the generator returns without a DONE event.
    """
    batch_size = config.batch_size
    completed = 0
    guesses = 0

    for start in range(0, shard_trials, batch_size):
        for _ in range(min(batch_size, shard_trials - start)):
            if should_stop is not None and should_stop():
                return
            guesses += run_trial(config, source).guesses_taken
            completed += 1

        yield WorkerEvent(PROGRESS, worker_id, completed, guesses)

    yield WorkerEvent(DONE, worker_id, completed, guesses)


def worker_loop(worker_id, config, shard_trials, result_queue, stop_event):
    """
    Worker process entry point.

    Puts plain tuples on result_queue (see module docstring). Any exception is
    reported as a "failed" event and then re-raised so the process exits
    non-zero.
    """
    # Ctrl-C is handled by the coordinator, which cancels the run.
    signal.signal(signal.SIGINT, signal.SIG_IGN)
    completed = 0
    guesses = 0
    try:
        source = worker_source(config.seed, worker_id)
        for event in iter_shard(config, shard_trials, source, worker_id, stop_event.is_set):
            completed, guesses = event.completed_trials, event.total_guesses
            result_queue.put((event.kind, worker_id, completed, guesses))
    except Exception:
        result_queue.put((FAILED, worker_id, completed, guesses, traceback.format_exc()))
        raise


def decode_event(message) -> WorkerEvent:
    kind, worker_id, completed, guesses, *rest = message
    return WorkerEvent(kind, worker_id, completed, guesses, rest[0] if rest else None)
