from __future__ import annotations

import threading
import time
from dataclasses import replace

import pytest

from app.refpack import batch
from app.refpack.batch import BatchExecutor, clamp_concurrency, run_batch
from app.refpack.error_codes import ErrorCode
from app.refpack.errors import BatchValidationError, FetchTimeoutError
from app.refpack.jobs import ReferenceProcessor
from app.refpack.models import Downloaded, Failed
from app.refpack.renderer import RenderOutcome
from tests.fakes import PDF_BYTES, ScriptedProcessor, make_reference


def _references(count: int) -> list:
    return [make_reference(index) for index in range(1, count + 1)]


def test_one_timing_out_host_fails_only_its_reference(settings) -> None:
    processor = ScriptedProcessor({3: [ErrorCode.TIMEOUT, ErrorCode.TIMEOUT]})

    report = run_batch(_references(5), 2, settings=settings, processor=processor)

    assert len(report.results) == 5
    assert report.succeeded == 4
    assert report.failed == 1
    failed = report.by_id()[3]
    assert isinstance(failed, Failed)
    assert failed.error_code == ErrorCode.TIMEOUT
    # First pass plus the replay pass.
    assert failed.attempts == 2
    assert processor.calls.count(3) == 2


def test_every_reference_gets_exactly_one_result(settings) -> None:
    processor = ScriptedProcessor()

    report = run_batch(_references(40), 7, settings=settings, processor=processor)

    assert sorted(result.id for result in report.results) == list(range(1, 41))
    assert sorted(processor.calls) == list(range(1, 41))


def test_replay_recovers_transient_failures(settings) -> None:
    processor = ScriptedProcessor({2: [ErrorCode.NETWORK, None], 4: [ErrorCode.PROTOCOL, None]})

    report = run_batch(_references(5), 3, settings=settings, processor=processor)

    assert report.failed == 0
    assert isinstance(report.by_id()[2], Downloaded)
    assert isinstance(report.by_id()[4], Downloaded)


def test_replay_can_be_disabled(settings) -> None:
    processor = ScriptedProcessor({2: [ErrorCode.NETWORK, None]})

    report = run_batch(
        _references(3),
        2,
        settings=replace(settings, replay_transient_failures=False),
        processor=processor,
    )

    assert report.failed == 1
    assert processor.calls.count(2) == 1


def test_non_transient_failures_are_not_replayed(settings) -> None:
    processor = ScriptedProcessor({2: [ErrorCode.BLOCKED, None]})

    report = run_batch(_references(3), 2, settings=settings, processor=processor)

    assert report.failed == 1
    assert report.by_id()[2].error_code == ErrorCode.BLOCKED
    assert processor.calls.count(2) == 1


def test_oversized_batch_is_rejected_before_any_job(settings) -> None:
    processor = ScriptedProcessor()

    with pytest.raises(BatchValidationError) as excinfo:
        run_batch(_references(260), 5, settings=settings, processor=processor)

    assert "maximum batch size of 250" in excinfo.value.message
    assert processor.calls == []


def test_empty_batch_is_rejected(settings) -> None:
    with pytest.raises(BatchValidationError):
        run_batch([], settings=settings, processor=ScriptedProcessor())


def test_duplicate_ids_are_rejected(settings) -> None:
    references = [make_reference(1), make_reference(1, "https://example.org/other")]

    with pytest.raises(BatchValidationError):
        run_batch(references, settings=settings, processor=ScriptedProcessor())


def test_invalid_urls_fail_without_dispatch(settings) -> None:
    processor = ScriptedProcessor()
    references = [make_reference(1), make_reference(2, "ftp://example.org/file"), make_reference(3)]

    report = run_batch(references, 2, settings=settings, processor=processor)

    assert report.by_id()[2].error_code == ErrorCode.INVALID_URL
    assert 2 not in processor.calls
    assert report.succeeded == 2


def test_processor_exception_is_isolated(settings) -> None:
    def processor(reference):
        if reference.id == 2:
            raise RuntimeError("worker exploded")
        return Downloaded(reference=reference, output_name=f"{reference.id}.pdf", output_bytes=PDF_BYTES)

    report = run_batch(_references(4), 2, settings=settings, processor=processor)

    assert report.succeeded == 3
    failed = report.by_id()[2]
    assert failed.error_code == ErrorCode.INTERNAL
    assert "worker exploded" in failed.error


def test_in_flight_jobs_never_exceed_concurrency(settings) -> None:
    lock = threading.Lock()
    state = {"current": 0, "peak": 0}

    def processor(reference):
        with lock:
            state["current"] += 1
            state["peak"] = max(state["peak"], state["current"])
        time.sleep(0.01)
        with lock:
            state["current"] -= 1
        return Downloaded(reference=reference, output_name=f"{reference.id}.pdf", output_bytes=PDF_BYTES)

    executor = BatchExecutor(settings, processor)
    report = executor.run(_references(12), 3)

    assert report.succeeded == 12
    assert 1 <= state["peak"] <= 3
    assert 1 <= executor.peak_in_flight <= 3


def test_cli_entrypoint_uses_interactive_ceiling(settings, monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict] = []
    monkeypatch.setattr(batch, "_pipeline_event", lambda *args, **kwargs: events.append(kwargs))

    run_batch(_references(10), 10, settings=settings, processor=ScriptedProcessor(), entrypoint="cli")

    start = next(event for event in events if event.get("kind") == "start")
    assert start["ceiling"] == settings.interactive_max_concurrency
    assert start["workers"] == settings.interactive_max_concurrency


def test_references_left_at_deadline_fail_without_starting(settings) -> None:
    now = [0.0]

    def processor(reference):
        now[0] = 10_000.0
        return Downloaded(reference=reference, output_name=f"{reference.id}.pdf", output_bytes=PDF_BYTES)

    executor = BatchExecutor(settings, processor, clock=lambda: now[0])
    report = executor.run(_references(3), 1)

    assert len(report.results) == 3
    assert isinstance(report.by_id()[1], Downloaded)
    for ref_id in (2, 3):
        result = report.by_id()[ref_id]
        assert result.error_code == ErrorCode.BATCH_DEADLINE
        assert result.attempts == 0


def test_direct_documents_are_never_rendered(settings) -> None:
    rendered: list[str] = []
    fetched: list[str] = []

    def fetch(url, settings, **kwargs):
        fetched.append(url)
        return PDF_BYTES

    def render(url, settings, **kwargs):
        rendered.append(url)
        return RenderOutcome(pdf_bytes=PDF_BYTES, attempts=1, navigation_tier="domcontentloaded")

    processor = ReferenceProcessor(settings, fetch=fetch, render=render)
    references = [
        make_reference(1, "https://example.org/paper.pdf"),
        make_reference(2, "https://news.example/story"),
        make_reference(3, "https://example.org/report.PDF"),
    ]

    report = run_batch(references, 2, settings=settings, processor=processor)

    assert report.succeeded == 3
    assert sorted(fetched) == ["https://example.org/paper.pdf", "https://example.org/report.PDF"]
    assert rendered == ["https://news.example/story"]


def test_report_serialises_in_id_order(settings) -> None:
    processor = ScriptedProcessor({1: [ErrorCode.HTTP_ERROR]})

    payload = run_batch(_references(3), 3, settings=settings, processor=processor).to_dict()

    assert [item["id"] for item in payload["results"]] == [1, 2, 3]
    assert payload["processed"] == 2
    assert payload["failed"] == 1
    assert payload["results"][0]["errorCode"] == ErrorCode.HTTP_ERROR


@pytest.mark.parametrize(
    "requested, ceiling, length, expected",
    [
        (None, 20, 5, 1),
        (0, 20, 5, 1),
        (10, 20, 5, 5),
        (30, 20, 100, 20),
        (3, 4, 100, 3),
    ],
)
def test_clamp_concurrency(requested, ceiling, length, expected) -> None:
    assert clamp_concurrency(requested, ceiling, length) == expected


def test_run_returns_at_the_deadline_while_a_job_is_still_running(settings) -> None:
    release = threading.Event()

    def processor(reference):
        if reference.id == 1:
            release.wait(timeout=3)
        return Downloaded(reference=reference, output_name=f"{reference.id}.pdf", output_bytes=PDF_BYTES)

    started = time.monotonic()
    try:
        report = run_batch(
            _references(3), 1, settings=replace(settings, batch_timeout_seconds=1), processor=processor
        )
    finally:
        release.set()
    elapsed = time.monotonic() - started

    assert elapsed < 2.0
    assert len(report.results) == 3
    running = report.by_id()[1]
    assert running.error_code == ErrorCode.BATCH_DEADLINE
    assert running.attempts == 1
    assert "while this reference was processing" in running.error
    for ref_id in (2, 3):
        assert report.by_id()[ref_id].error_code == ErrorCode.BATCH_DEADLINE
        assert report.by_id()[ref_id].attempts == 0


def test_default_processor_receives_the_batch_deadline(settings) -> None:
    deadlines: list = []

    def fetch(url, settings, **kwargs):
        deadlines.append(kwargs["deadline"])
        return PDF_BYTES

    processor = ReferenceProcessor(settings, fetch=fetch)
    executor = BatchExecutor(settings, processor, clock=lambda: 50.0)

    executor.run([make_reference(1, "https://example.org/paper.pdf")], 1)

    assert deadlines == [50.0 + settings.batch_timeout_seconds]


def test_exhausted_references_are_not_replayed(settings) -> None:
    processor = ScriptedProcessor({3: [ErrorCode.TIMEOUT, None]}, attempts=settings.render_max_attempts)

    report = run_batch(_references(3), 2, settings=settings, processor=processor)

    failed = report.by_id()[3]
    assert failed.error_code == ErrorCode.TIMEOUT
    assert failed.attempts == settings.render_max_attempts
    assert processor.calls.count(3) == 1


def test_replayed_attempts_never_exceed_the_ceiling(settings) -> None:
    processor = ScriptedProcessor({3: [ErrorCode.NETWORK, ErrorCode.NETWORK]}, attempts=2)

    report = run_batch(_references(3), 2, settings=settings, processor=processor)

    assert processor.calls.count(3) == 2
    assert report.by_id()[3].attempts == settings.render_max_attempts


def test_replay_renders_with_the_attempts_left(settings) -> None:
    seen: list[tuple] = []

    def render(url, settings, **kwargs):
        seen.append((settings.render_max_attempts, kwargs["deadline"]))
        if len(seen) == 1:
            raise FetchTimeoutError("navigation timed out")
        return RenderOutcome(pdf_bytes=PDF_BYTES, attempts=1, navigation_tier="load")

    processor = ReferenceProcessor(settings, render=render)

    report = run_batch(_references(1), 1, settings=settings, processor=processor)

    assert isinstance(report.by_id()[1], Downloaded)
    assert [max_attempts for max_attempts, _ in seen] == [3, 2]
    assert seen[0][1] == seen[1][1] is not None
