from __future__ import annotations

import queue
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import replace
from threading import Lock
from typing import Callable, Optional, Sequence

from .classifier import classify
from .config import PipelineSettings, load_settings
from .error_codes import TRANSIENT_ERROR_CODES, ErrorCode
from .errors import BatchValidationError, InvalidURLError
from .jobs import ReferenceProcessor
from .logging_utils import _pipeline_event
from .models import BatchReport, Failed, JobResult, Reference
from .utils import log_line

Processor = Callable[[Reference], JobResult]

DEADLINE_BEFORE_START = "Batch deadline exceeded before this reference was processed"
DEADLINE_WHILE_RUNNING = "Batch deadline exceeded while this reference was processing"


def validate_batch(references: Sequence[Reference], settings: PipelineSettings) -> None:
    """Reject a batch before any job runs."""

    if not references:
        raise BatchValidationError("No references provided")
    if len(references) > settings.max_batch_size:
        raise BatchValidationError(
            f"Batch of {len(references)} references exceeds the maximum batch size "
            f"of {settings.max_batch_size}"
        )
    seen: set[int] = set()
    for reference in references:
        if reference.id in seen:
            raise BatchValidationError(f"Duplicate reference id {reference.id} in batch")
        seen.add(reference.id)


def clamp_concurrency(requested: Optional[int], ceiling: int, batch_length: int) -> int:
    value = requested if requested is not None and requested > 0 else 1
    return max(1, min(value, ceiling, batch_length))



def _deadline_failure(reference: Reference, *, started: bool) -> Failed:
    return Failed(
        reference=reference,
        error=DEADLINE_WHILE_RUNNING if started else DEADLINE_BEFORE_START,
        error_code=ErrorCode.BATCH_DEADLINE,
        attempts=1 if started else 0,
    )


class BatchExecutor:
    """
    Bounded worker pool over one batch of references.

    - Workers pull from a shared queue until it is exhausted; each item is
      claimed by exactly one worker.
    - Results travel back on a second queue, so workers share no other state.
    - A failing item never takes its worker (or the pool) down with it.
    - The run returns at the batch deadline. References still queued fail
      with ``batch_deadline`` instead of starting, and references still being
      processed fail with ``batch_deadline`` too; their late results are
      discarded.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        processor: Optional[Processor] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._processor: Processor = processor or ReferenceProcessor(settings)
        self._sleep = sleep
        self._clock = clock
        self._lock = Lock()
        self._in_flight: int = 0
        self._peak_in_flight: int = 0
        self._accepting: bool = False
        self._running: dict[int, Reference] = {}

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    def _bound_processor(
        self, deadline: float, settings: Optional[PipelineSettings] = None
    ) -> Processor:
        """Hand the batch deadline (and optional settings) to the default processor."""

        processor = self._processor
        if not isinstance(processor, ReferenceProcessor):
            return processor
        if settings is None:
            return replace(processor, deadline=deadline)
        return replace(processor, deadline=deadline, settings=settings)

    def _remaining(self, deadline: float) -> float:
        return max(0.0, deadline - self._clock())

    def run(
        self,
        references: Sequence[Reference],
        concurrency: Optional[int] = None,
        *,
        entrypoint: str = "server",
    ) -> BatchReport:
        settings = self._settings
        validate_batch(references, settings)

        started = self._clock()
        deadline = started + settings.batch_timeout_seconds
        ceiling = settings.concurrency_ceiling(entrypoint)
        requested = concurrency if concurrency is not None else settings.default_concurrency

        results: "queue.Queue[JobResult]" = queue.Queue()
        pending: "queue.Queue[Reference]" = queue.Queue()

        for reference in references:
            try:
                classify(reference.source_url)
            except InvalidURLError as exc:
                results.put(
                    Failed(reference=reference, error=exc.message, error_code=exc.error_code)
                )
                continue
            pending.put(reference)

        dispatchable = pending.qsize()
        workers = clamp_concurrency(requested, ceiling, max(1, dispatchable))
        _pipeline_event(
            "state",
            phase="batch",
            kind="start",
            references=len(references),
            dispatchable=dispatchable,
            invalid=len(references) - dispatchable,
            requested_concurrency=requested,
            workers=workers,
            ceiling=ceiling,
        )
        log_line(
            f"Processing batch of {len(references)} references with concurrency {workers}"
        )

        with self._lock:
            self._accepting = True
            self._running = {}
        running: dict[int, Reference] = {}
        if dispatchable:
            processor = self._bound_processor(deadline)
            pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="refpack-worker")
            try:
                futures = [
                    pool.submit(self._worker_loop, index, pending, results, deadline, processor)
                    for index in range(workers)
                ]
                done, not_done = wait(futures, timeout=self._remaining(deadline))
            finally:
                # Stragglers keep their threads but can no longer report.
                pool.shutdown(wait=False, cancel_futures=True)
            with self._lock:
                self._accepting = False
                running = dict(self._running)
            for future in done:
                future.result()
            if not_done:
                _pipeline_event(
                    "state",
                    phase="batch",
                    kind="deadline",
                    abandoned=len(running),
                    unstarted=pending.qsize(),
                )
                log_line(
                    f"[BATCH] Deadline reached with {len(running)} references still processing"
                )

        collected: dict[int, JobResult] = {}
        arrival: list[int] = []
        while not results.empty():
            result = results.get_nowait()
            if result.id not in collected:
                arrival.append(result.id)
            collected[result.id] = result

        for reference in references:
            if reference.id not in collected:
                collected[reference.id] = _deadline_failure(
                    reference, started=reference.id in running
                )
                arrival.append(reference.id)

        if settings.replay_transient_failures:
            self._replay_transient(collected, deadline)

        report = BatchReport(
            results=tuple(collected[ref_id] for ref_id in arrival),
            elapsed_seconds=self._clock() - started,
        )
        _pipeline_event(
            "state",
            phase="batch",
            kind="summary",
            total=len(report.results),
            succeeded=report.succeeded,
            failed=report.failed,
            peak_in_flight=self.peak_in_flight,
            elapsed_seconds=round(report.elapsed_seconds, 3),
        )
        log_line(f"Batch completed: {report.succeeded} succeeded, {report.failed} failed")
        return report

    def _worker_loop(
        self,
        index: int,
        pending: "queue.Queue[Reference]",
        results: "queue.Queue[JobResult]",
        deadline: float,
        processor: Processor,
    ) -> None:
        handled = 0
        while self._clock() < deadline:
            with self._lock:
                if not self._accepting:
                    break
                try:
                    reference = pending.get_nowait()
                except queue.Empty:
                    break
                self._running[reference.id] = reference

            result = self._run_one(reference, processor)
            handled += 1
            with self._lock:
                self._running.pop(reference.id, None)
                if self._accepting:
                    results.put(result)

        _pipeline_event("state", phase="worker", kind="drained", worker=index, handled=handled)

    def _run_one(self, reference: Reference, processor: Processor) -> JobResult:
        with self._lock:
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        try:
            return processor(reference)
        except Exception as exc:  # noqa: BLE001
            _pipeline_event("error", phase="worker", reference_id=reference.id, error=repr(exc))
            return Failed(
                reference=reference,
                error=f"Unexpected error: {exc}",
                error_code=ErrorCode.INTERNAL,
            )
        finally:
            with self._lock:
                self._in_flight -= 1

    def _replay_transient(self, collected: dict[int, JobResult], deadline: float) -> None:
        """Give transient failures one more sequential try.

        A replay only uses the attempts a reference has left under the retry
        ceiling, so a reference that already made every attempt is skipped.
        Each replay is cut off at the batch deadline like the first pass.
        """

        settings = self._settings
        candidates = [
            result
            for result in sorted(collected.values(), key=lambda item: item.id)
            if isinstance(result, Failed) and result.error_code in TRANSIENT_ERROR_CODES
        ]
        if not candidates:
            return

        _pipeline_event("state", phase="replay", kind="start", candidates=len(candidates))
        recovered = 0
        exhausted = 0
        replayed_count = 0
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="refpack-replay")
        try:
            for position, failed in enumerate(candidates):
                attempts_left = settings.render_max_attempts - failed.attempts
                if attempts_left < 1:
                    exhausted += 1
                    continue
                if replayed_count:
                    self._sleep(settings.replay_delay_seconds)
                if self._clock() >= deadline:
                    _pipeline_event(
                        "state",
                        phase="replay",
                        kind="deadline",
                        remaining=len(candidates) - position,
                    )
                    break
                replayed_count += 1
                processor = self._bound_processor(
                    deadline, replace(settings, render_max_retries=attempts_left - 1)
                )
                future = pool.submit(self._run_one, failed.reference, processor)
                done, _ = wait([future], timeout=self._remaining(deadline))
                if not done:
                    _pipeline_event(
                        "state",
                        phase="replay",
                        kind="deadline",
                        reference_id=failed.id,
                        remaining=len(candidates) - position,
                    )
                    break
                replayed = future.result()
                if isinstance(replayed, Failed):
                    replayed = Failed(
                        reference=replayed.reference,
                        error=replayed.error,
                        error_code=replayed.error_code,
                        attempts=min(
                            failed.attempts + replayed.attempts, settings.render_max_attempts
                        ),
                    )
                else:
                    recovered += 1
                collected[failed.id] = replayed
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        _pipeline_event(
            "state",
            phase="replay",
            kind="summary",
            candidates=len(candidates),
            replayed=replayed_count,
            exhausted=exhausted,
            recovered=recovered,
        )


def run_batch(
    references: Sequence[Reference],
    concurrency: Optional[int] = None,
    *,
    settings: Optional[PipelineSettings] = None,
    processor: Optional[Processor] = None,
    entrypoint: str = "server",
) -> BatchReport:
    """Process ``references`` and return a report with one result per reference."""

    executor = BatchExecutor(settings or load_settings(), processor)
    return executor.run(references, concurrency, entrypoint=entrypoint)


__all__ = ["BatchExecutor", "run_batch", "validate_batch", "clamp_concurrency"]
