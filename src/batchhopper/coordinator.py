from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable

from .aggregate import best_keyboard
from .app_logging import log_with_fields
from .config import AppConfig
from .models import (
    BatchAssignment,
    BatchComplete,
    InProgress,
    JobPhase,
    JobSpec,
    Keyboard,
    StatusReport,
    WorkerRecord,
    WorkerState,
)
from .remote import WorkerClient, WorkerProtocolError
from .utils import utc_now_iso


class BatchhopperError(Exception):
    pass


class JobAlreadyRunning(BatchhopperError):
    def __init__(self, job_name: str) -> None:
        super().__init__(f"job already in progress: {job_name}")
        self.job_name = job_name


@dataclass(slots=True)
class JobState:
    """Everything a job shares between poll loops. Guarded by Coordinator._lock."""

    spec: JobSpec | None = None
    running: bool = False
    generation: int = 0
    # next_batch counts reservations, completed counts finished batches
    next_batch: int = 0
    completed: int = 0
    reclaimed: list[int] = field(default_factory=list)
    results: list[Keyboard] = field(default_factory=list)
    workers: list[WorkerRecord] = field(default_factory=list)
    live_loops: int = 0
    stalled: bool = False


class _Action(Enum):
    SEND = "send"
    IDLE = "idle"
    STOP = "stop"


class Coordinator:
    def __init__(
        self,
        config: AppConfig,
        logger: logging.Logger,
        client_factory: Callable[[], WorkerClient] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.logger = logger
        self.client_factory = client_factory or (
            lambda: WorkerClient(timeout=config.poll.request_timeout_seconds)
        )
        self.sleep = sleep
        self._lock = threading.Lock()
        self._hosts: list[str] = []
        self._state = JobState()
        self._threads: list[threading.Thread] = []

    def add_worker(self, host: str) -> None:
        with self._lock:
            self._hosts.append(host)
            count = len(self._hosts)
        log_with_fields(self.logger, logging.INFO, "worker_added", host=host, registered=count)

    def workers(self) -> list[str]:
        with self._lock:
            return list(self._hosts)

    def start_job(self, name: str, batch_size: int, total_batches: int) -> JobSpec:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if total_batches < 0:
            raise ValueError("total_batches must be >= 0")

        spec = JobSpec(name=name, batch_size=batch_size, total_batches=total_batches)
        with self._lock:
            state = self._state
            if state.running:
                running_job = state.spec.name if state.spec else name
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "job_rejected",
                    job_name=name,
                    running_job=running_job,
                )
                raise JobAlreadyRunning(running_job)

            hosts = list(self._hosts)
            state.spec = spec
            state.running = total_batches > 0
            state.generation += 1
            state.next_batch = 0
            state.completed = 0
            state.reclaimed = []
            state.stalled = state.running and not hosts
            if self.config.job.clear_results_on_start:
                state.results = []
            state.workers = [WorkerRecord(host=host) for host in hosts]
            generation = state.generation

            loops = [PollLoop(self, generation, idx, host) for idx, host in enumerate(hosts)] if state.running else []
            state.live_loops = len(loops)
            self._threads = [
                threading.Thread(target=loop.run, name=f"poll-{loop.index}-{loop.host}", daemon=True)
                for loop in loops
            ]
            threads = list(self._threads)

        log_with_fields(
            self.logger,
            logging.INFO,
            "job_started",
            job_name=name,
            batch_size=batch_size,
            total_batches=total_batches,
            workers=hosts,
        )
        if total_batches == 0:
            log_with_fields(self.logger, logging.INFO, "job_completed", job_name=name, completed=0)
        elif not hosts:
            log_with_fields(self.logger, logging.ERROR, "job_stalled", job_name=name, reason="no_workers")

        for thread in threads:
            thread.start()
        return spec

    def status(self) -> StatusReport:
        with self._lock:
            state = self._state
            if state.spec is None:
                phase = JobPhase.INIT
            elif state.running:
                phase = JobPhase.RUNNING
            else:
                phase = JobPhase.COMPLETE
            return StatusReport(
                phase=phase,
                job_name=state.spec.name if state.spec else None,
                completed=state.completed,
                total_batches=state.spec.total_batches if state.spec else 0,
                best=best_keyboard(state.results),
                stalled=state.stalled,
                workers=tuple(replace(record) for record in state.workers),
            )

    def wait(self, timeout: float | None = None) -> bool:
        """Block until every poll loop of the current job has exited."""
        with self._lock:
            threads = list(self._threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
            if thread.is_alive():
                return False
        return True

    # Everything below runs on poll loop threads.

    def _is_current(self, loop: PollLoop) -> bool:
        return self._state.running and self._state.generation == loop.generation

    def _record(self, loop: PollLoop) -> WorkerRecord:
        return self._state.workers[loop.index]

    def _current_spec(self) -> JobSpec:
        spec = self._state.spec
        if spec is None:
            raise RuntimeError("no job has been started")
        return spec

    def _observe(self, loop: PollLoop, worker_state: WorkerState, progress: int | None = None) -> bool:
        with self._lock:
            if not self._is_current(loop):
                return False
            record = self._record(loop)
            record.state = worker_state
            record.progress = progress
            record.last_seen_at = utc_now_iso()
            return True

    def _reserve(self, loop: PollLoop) -> BatchAssignment | None:
        state = self._state
        spec = self._current_spec()
        if loop.outstanding is not None:
            number = loop.outstanding
            log_with_fields(
                self.logger,
                logging.WARNING,
                "batch_resent",
                job_name=spec.name,
                host=loop.host,
                batch_number=number,
            )
        elif state.reclaimed:
            number = state.reclaimed.pop(0)
        elif state.next_batch < spec.total_batches:
            number = state.next_batch
            state.next_batch += 1
        else:
            return None

        loop.outstanding = number
        record = self._record(loop)
        record.state = WorkerState.WORKING
        record.current_batch = number
        return BatchAssignment(
            job_name=spec.name,
            device_name=loop.host,
            batch_size=spec.batch_size,
            batch_number=number,
        )

    def _finish_job(self, loop: PollLoop) -> None:
        state = self._state
        spec = self._current_spec()
        state.running = False
        self._record(loop).state = WorkerState.DONE
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_completed",
            job_name=spec.name,
            completed=state.completed,
            results=len(state.results),
            host=loop.host,
        )

    def _assign_or_idle(self, loop: PollLoop) -> tuple[_Action, BatchAssignment | None]:
        state = self._state
        spec = self._current_spec()
        assignment = self._reserve(loop)
        if assignment is not None:
            return _Action.SEND, assignment
        if state.completed >= spec.total_batches:
            self._finish_job(loop)
            return _Action.STOP, None
        record = self._record(loop)
        record.state = WorkerState.IDLE
        record.current_batch = None
        return _Action.IDLE, None

    def _next_batch(self, loop: PollLoop) -> tuple[_Action, BatchAssignment | None]:
        with self._lock:
            if not self._is_current(loop):
                return _Action.STOP, None
            record = self._record(loop)
            record.last_seen_at = utc_now_iso()
            record.progress = None
            return self._assign_or_idle(loop)

    def _complete_batch(
        self,
        loop: PollLoop,
        keyboards: tuple[Keyboard, ...],
    ) -> tuple[_Action, BatchAssignment | None]:
        with self._lock:
            state = self._state
            if not self._is_current(loop):
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "stale_batch_discarded",
                    host=loop.host,
                    keyboards=len(keyboards),
                    reason="job_not_running",
                )
                return _Action.STOP, None
            spec = self._current_spec()

            record = self._record(loop)
            record.last_seen_at = utc_now_iso()
            record.progress = None
            if loop.outstanding is None:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "stale_batch_discarded",
                    job_name=spec.name,
                    host=loop.host,
                    keyboards=len(keyboards),
                    reason="no_outstanding_batch",
                )
                return self._assign_or_idle(loop)

            batch_number = loop.outstanding
            loop.outstanding = None
            state.completed += 1
            state.results.extend(keyboards)
            record.batches_completed += 1
            record.current_batch = None
            log_with_fields(
                self.logger,
                logging.INFO,
                "batch_completed",
                job_name=spec.name,
                host=loop.host,
                batch_number=batch_number,
                keyboards=len(keyboards),
                completed=state.completed,
                total_batches=spec.total_batches,
            )
            if state.completed >= spec.total_batches:
                self._finish_job(loop)
                return _Action.STOP, None
            return self._assign_or_idle(loop)

    def _loop_exited(self, loop: PollLoop, error: str | None) -> None:
        with self._lock:
            state = self._state
            if state.generation != loop.generation:
                return
            state.live_loops -= 1
            record = self._record(loop)
            if error is None:
                record.state = WorkerState.DONE
                record.current_batch = None
            else:
                record.state = WorkerState.FAILED
                record.last_error = error
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "worker_failed",
                    host=loop.host,
                    error=error,
                    batch_number=loop.outstanding,
                )
                if loop.outstanding is not None and state.running:
                    state.reclaimed.append(loop.outstanding)
                    state.reclaimed.sort()
                    log_with_fields(
                        self.logger,
                        logging.WARNING,
                        "batch_reclaimed",
                        host=loop.host,
                        batch_number=loop.outstanding,
                    )
                loop.outstanding = None
                record.current_batch = None

            if state.running and state.live_loops == 0:
                state.stalled = True
                spec = self._current_spec()
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "job_stalled",
                    job_name=spec.name,
                    completed=state.completed,
                    total_batches=spec.total_batches,
                    reason="all_workers_failed",
                )


class PollLoop:
    """Drives one worker through a job: poll, hand out batches, collect results."""

    def __init__(self, coordinator: Coordinator, generation: int, index: int, host: str) -> None:
        self.coordinator = coordinator
        self.generation = generation
        self.index = index
        self.host = host
        # batch currently held by this worker; guarded by the coordinator lock
        self.outstanding: int | None = None

    def run(self) -> None:
        client: WorkerClient | None = None
        error: str | None = None
        try:
            client = self.coordinator.client_factory()
            while self.step(client):
                pass
        except WorkerProtocolError as exc:
            error = str(exc)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            if client is not None:
                client.close()
            self.coordinator._loop_exited(self, error)

    def step(self, client: WorkerClient) -> bool:
        coordinator = self.coordinator
        interval = coordinator.config.poll.interval_seconds
        status = client.fetch_status(self.host)

        if isinstance(status, InProgress):
            if not coordinator._observe(self, WorkerState.WORKING, progress=status.completed):
                return False
            coordinator.sleep(interval)
            return True

        if isinstance(status, BatchComplete):
            action, assignment = coordinator._complete_batch(self, status.keyboards)
        else:
            action, assignment = coordinator._next_batch(self)

        if action is _Action.STOP:
            return False
        if action is _Action.IDLE or assignment is None:
            coordinator.sleep(interval)
            return True

        client.send_assignment(self.host, assignment)
        log_with_fields(
            coordinator.logger,
            logging.INFO,
            "batch_assigned",
            job_name=assignment.job_name,
            host=self.host,
            batch_number=assignment.batch_number,
            batch_size=assignment.batch_size,
        )
        return True
