#!/usr/bin/env python3
"""
coordinator.py

Parallel coordinator for the session-ID guessing simulation.

The trial count is split into one contiguous shard per worker process:
floor(trials / workers) each, with the remainder added to the last shard.
Every worker runs shards.worker_loop and reports cumulative progress on one
shared queue. A single collector thread in the master process reads that
queue and folds each event into AggregateStats:

    delta = event cumulative - last cumulative seen for that worker

Only the collector (or whoever holds the coordinator lock) mutates the
statistics, so workers need no locks at all.

Run states:

    idle -> running -> completed | cancelled | failed

cancel() stops every worker and guarantees no progress/done callback fires
after it returns. The statistics gathered so far stay readable but are
not marked final. A worker that raises or dies fails the whole run; there
are no retries.
"""

import enum
import math
import multiprocessing as mp
import os
import queue
import threading
from dataclasses import dataclass, replace

from idguess import SimulationConfig
from shards import DONE, FAILED, WorkerEvent, decode_event, worker_loop


# ----- Global configuration -----

DEFAULT_WORKERS = 4     # used when the CPU count is unavailable
POLL_INTERVAL = 0.1     # seconds between liveness checks while the queue is idle
JOIN_TIMEOUT = 5.0


class WorkerFailure(RuntimeError):
    """A worker raised or exited abnormally; the run was abandoned."""


class RunState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


def default_worker_count() -> int:
    return os.cpu_count() or DEFAULT_WORKERS


def partition_trials(trial_count: int, num_workers: int) -> list[int]:
    """
    Split trial_count into num_workers contiguous shard sizes.

    Every shard gets floor(trial_count / num_workers); the last one also takes
    the remainder, so the sizes always sum to trial_count.
    """
    if num_workers < 1:
        raise ValueError(f"num_workers must be >= 1, got {num_workers}")
    if trial_count < 0:
        raise ValueError(f"trial_count must be >= 0, got {trial_count}")

    per_worker = trial_count // num_workers
    shards = [per_worker] * num_workers
    shards[-1] += trial_count % num_workers
    return shards


# ----- Aggregation -----

@dataclass
class AggregateStats:
    completed_trials: int = 0
    total_guesses: int = 0
    final: bool = False

    @property
    def average_guesses(self) -> float:
        if self.completed_trials == 0:
            return math.nan
        return self.total_guesses / self.completed_trials

    def snapshot(self) -> "AggregateStats":
        return replace(self)


@dataclass
class WorkerProgress:
    completed_trials: int = 0
    total_guesses: int = 0
    done: bool = False


class ProgressLedger:
    """
    Turns per-worker cumulative snapshots into deltas on one AggregateStats.
    """

    def __init__(self, worker_ids):
        self.stats = AggregateStats()
        self.workers = {wid: WorkerProgress() for wid in worker_ids}

    @property
    def all_done(self) -> bool:
        return all(w.done for w in self.workers.values())

    @property
    def pending(self) -> list:
        return [wid for wid, w in self.workers.items() if not w.done]

    def fold(self, event: WorkerEvent) -> tuple[int, int]:
        """
        Fold one event and return the (trials, guesses) delta it contributed.

        Raises WorkerFailure for a failed event and ValueError for events that
        could not have come from a well-behaved worker.
        """
        if event.kind == FAILED:
            raise WorkerFailure(f"worker {event.worker_id} failed:\n{event.error}")

        last = self.workers.get(event.worker_id)
        if last is None:
            raise ValueError(f"event from unknown worker {event.worker_id!r}")
        if last.done:
            raise ValueError(f"event from worker {event.worker_id} after its done event")

        delta_trials = event.completed_trials - last.completed_trials
        delta_guesses = event.total_guesses - last.total_guesses
        if delta_trials < 0 or delta_guesses < 0:
            raise ValueError(
                f"worker {event.worker_id} counters went backwards: "
                f"({last.completed_trials}, {last.total_guesses}) -> "
                f"({event.completed_trials}, {event.total_guesses})"
            )

        self.stats.completed_trials += delta_trials
        self.stats.total_guesses += delta_guesses
        last.completed_trials = event.completed_trials
        last.total_guesses = event.total_guesses
        if event.kind == DONE:
            last.done = True

        return delta_trials, delta_guesses


# ----- Runs -----

class RunHandle:
    """
    One simulation run started by a Coordinator.

    wait() blocks until the run is terminal and returns a stats snapshot,
    or raises the WorkerFailure that ended it.
    """

    def __init__(self, coordinator, config: SimulationConfig, shards: list[int], context):
        self.coordinator = coordinator
        self.config = config
        self.shards = shards
        self.state = RunState.RUNNING
        self.error = None
        self.ledger = ProgressLedger(range(len(shards)))
        self.queue = context.Queue()
        self.stop_event = context.Event()
        self.processes = {}
        self.finished = threading.Event()
        self.collector = None

    @property
    def stats(self) -> AggregateStats:
        return self.ledger.stats

    @property
    def fraction_complete(self) -> float:
        return self.stats.completed_trials / self.config.trial_count

    def cancel(self) -> None:
        self.coordinator.cancel(self)

    def wait(self, timeout=None) -> AggregateStats:
        if not self.finished.wait(timeout):
            raise TimeoutError(f"run still {self.state.value} after {timeout}s")
        if self.error is not None:
            raise self.error
        return self.stats.snapshot()


class Coordinator:
    """
    Launches worker processes for a run and folds their progress.

    on_progress(stats, fraction_complete) fires after every fold,
    on_done(stats) once when every worker has finished, and
    on_failure(error) once if the run fails. Callbacks run on the collector
    thread and receive snapshots.
    """

    def __init__(self, on_progress=None, on_done=None, on_failure=None,
                 num_workers: int | None = None, context=None,
                 poll_interval: float = POLL_INTERVAL):
        self.on_progress = on_progress
        self.on_done = on_done
        self.on_failure = on_failure
        self.num_workers = num_workers if num_workers is not None else default_worker_count()
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        self.context = context if context is not None else mp.get_context()
        self.poll_interval = poll_interval
        self.current = None
        self._lock = threading.RLock()

    @property
    def state(self) -> RunState:
        run = self.current
        return run.state if run is not None else RunState.IDLE

    @property
    def stats(self) -> AggregateStats:
        run = self.current
        return run.stats if run is not None else AggregateStats()

    def start(self, config: SimulationConfig) -> RunHandle:
        """
        Validate config and launch its workers.

        Raises ConfigurationError before anything is created. While a run is
        in progress this is a no-op that returns the running handle.
        """
        config.validate()

        with self._lock:
            if self.current is not None and self.current.state is RunState.RUNNING:
                return self.current

            # Never launch workers with nothing to do.
            workers = min(self.num_workers, config.trial_count)
            run = RunHandle(self, config, partition_trials(config.trial_count, workers), self.context)
            self.current = run

            try:
                for wid, shard_trials in enumerate(run.shards):
                    p = self.context.Process(
                        target=worker_loop,
                        args=(wid, config, shard_trials, run.queue, run.stop_event),
                        daemon=True,
                    )
                    p.start()
                    run.processes[wid] = p

                run.collector = threading.Thread(target=self._collect, args=(run,), daemon=True)
                run.collector.start()
            except BaseException as e:
                # Workers already started must not outlive a half-launched run.
                self._fail(run, WorkerFailure(f"failed to launch workers: {e!r}"))
                raise

        return run

    def cancel(self, run: RunHandle | None = None) -> None:
        """Stop a running run. Does nothing if it is already terminal."""
        with self._lock:
            run = run if run is not None else self.current
            if run is None or run.state is not RunState.RUNNING:
                return
            run.state = RunState.CANCELLED
            self._shutdown(run)
            run.finished.set()

    # ----- Collector thread -----

    def _collect(self, run: RunHandle) -> None:
        while True:
            try:
                message = run.queue.get(timeout=self.poll_interval)
            except queue.Empty:
                with self._lock:
                    if run.state is not RunState.RUNNING:
                        return
                    self._check_workers(run)
                continue
            except Exception as e:
                # A terminated worker can leave a torn message behind.
                with self._lock:
                    if run.state is RunState.RUNNING:
                        self._fail(run, WorkerFailure(f"result queue read failed: {e!r}"))
                return

            with self._lock:
                if run.state is not RunState.RUNNING:
                    return
                self._fold(run, decode_event(message))
                if run.state is not RunState.RUNNING:
                    return

    def _fold(self, run: RunHandle, event: WorkerEvent) -> None:
        try:
            run.ledger.fold(event)
        except WorkerFailure as e:
            self._fail(run, e)
            return
        except ValueError as e:
            self._fail(run, WorkerFailure(str(e)))
            return

        if event.kind == DONE:
            self._release(run, event.worker_id)

        if self.on_progress is not None:
            self.on_progress(run.stats.snapshot(), run.fraction_complete)

        if run.state is RunState.RUNNING and run.ledger.all_done:
            run.stats.final = True
            run.state = RunState.COMPLETED
            if self.on_done is not None:
                self.on_done(run.stats.snapshot())
            run.finished.set()

    def _check_workers(self, run: RunHandle) -> None:
        for wid in run.ledger.pending:
            exitcode = run.processes[wid].exitcode
            if exitcode is not None and exitcode != 0:
                self._fail(run, WorkerFailure(f"worker {wid} exited with code {exitcode}"))
                return

    def _release(self, run: RunHandle, worker_id: int) -> None:
        run.processes[worker_id].join(JOIN_TIMEOUT)

    def _fail(self, run: RunHandle, error: WorkerFailure) -> None:
        run.state = RunState.FAILED
        run.error = error
        self._shutdown(run)
        if self.on_failure is not None:
            self.on_failure(error)
        run.finished.set()

    def _shutdown(self, run: RunHandle) -> None:
        run.stop_event.set()
        for p in run.processes.values():
            if p.is_alive():
                p.terminate()
        for p in run.processes.values():
            p.join(JOIN_TIMEOUT)


def run_simulation(config: SimulationConfig, num_workers: int | None = None,
                   on_progress=None, context=None) -> AggregateStats:
    """Run config to completion and return the final statistics."""
    coordinator = Coordinator(on_progress=on_progress, num_workers=num_workers, context=context)
    run = coordinator.start(config)
    try:
        return run.wait()
    except KeyboardInterrupt:
        coordinator.cancel(run)
        raise
