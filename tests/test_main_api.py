from __future__ import annotations

import base64
import importlib
import io
import sys
import zipfile

import pytest

from app.refpack import batch, config
from app.refpack.error_codes import ErrorCode
from app.refpack.errors import ArchiveTimeoutError, ArchiveTooLargeError
from tests.fakes import PDF_BYTES, ScriptedProcessor
from tests.test_extraction import ARTICLE_HTML


def _reload_main_module():
    if "app.main" in sys.modules:
        del sys.modules["app.main"]
    return importlib.import_module("app.main")


def _client_with_processor(monkeypatch: pytest.MonkeyPatch, processor: ScriptedProcessor):
    main = _reload_main_module()

    def _run_batch(references, concurrency=None, *, settings=None, entrypoint="server"):
        return batch.run_batch(
            references,
            concurrency,
            settings=settings,
            processor=processor,
            entrypoint=entrypoint,
        )

    monkeypatch.setattr(main, "run_batch", _run_batch)
    return main, main.app.test_client()


def _references(count: int) -> list[dict]:
    return [
        {"id": index, "title": f"Source {index}", "sourceUrl": f"https://example.org/articles/{index}"}
        for index in range(1, count + 1)
    ]


def test_extract_references(monkeypatch: pytest.MonkeyPatch) -> None:
    main = _reload_main_module()
    monkeypatch.setattr(main, "fetch_article_html", lambda url: ARTICLE_HTML)
    client = main.app.test_client()

    resp = client.post("/api/extract-references", json={"wikiUrl": "https://en.wikipedia.org/wiki/Alan_Turing"})

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["articleTitle"] == "Alan Turing"
    assert [ref["id"] for ref in data["references"]] == [1, 2]
    assert data["references"][0]["sourceUrl"] == "https://example.org/enigma.pdf"


@pytest.mark.parametrize("body", [{}, {"wikiUrl": "https://example.org/wiki/Alan_Turing"}])
def test_extract_references_rejects_bad_urls(body: dict) -> None:
    client = _reload_main_module().app.test_client()

    resp = client.post("/api/extract-references", json=body)

    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False


def test_process_single_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    main = _reload_main_module()
    monkeypatch.setattr(main, "ReferenceProcessor", lambda settings: ScriptedProcessor())
    client = main.app.test_client()

    resp = client.post("/api/process-reference", json=_references(1)[0])

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["status"] == "downloaded"
    assert base64.b64decode(data["pdfBase64"]) == PDF_BYTES


def test_process_single_reference_validates_payload() -> None:
    client = _reload_main_module().app.test_client()

    resp = client.post("/api/process-reference", json={"title": "no id"})

    assert resp.status_code == 400


def test_batch_returns_report_and_archive(monkeypatch: pytest.MonkeyPatch) -> None:
    processor = ScriptedProcessor({2: [ErrorCode.BLOCKED]})
    _, client = _client_with_processor(monkeypatch, processor)

    resp = client.post("/api/process-references-batch", json={"references": _references(3), "batchSize": 2})

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["processed"] == 2
    assert data["failed"] == 1
    assert [item["status"] for item in data["results"]] == ["downloaded", "failed", "downloaded"]
    with zipfile.ZipFile(io.BytesIO(base64.b64decode(data["zipBase64"]))) as archive:
        assert archive.namelist() == ["1 - Source 1.pdf", "3 - Source 3.pdf"]


def test_batch_with_no_successes_has_no_archive(monkeypatch: pytest.MonkeyPatch) -> None:
    processor = ScriptedProcessor({1: [ErrorCode.HTTP_ERROR], 2: [ErrorCode.HTTP_ERROR]})
    _, client = _client_with_processor(monkeypatch, processor)

    resp = client.post("/api/process-references-batch", json={"references": _references(2)})

    data = resp.get_json()
    assert resp.status_code == 200
    assert data["processed"] == 0
    assert "zipBase64" not in data


def test_batch_archive_failure_keeps_report(monkeypatch: pytest.MonkeyPatch) -> None:
    main, client = _client_with_processor(monkeypatch, ScriptedProcessor())

    def _too_large(results, settings):
        raise ArchiveTooLargeError("ZIP archive exceeds maximum size limit (500MB)")

    monkeypatch.setattr(main, "assemble_results", _too_large)

    resp = client.post("/api/process-references-batch", json={"references": _references(2)})

    data = resp.get_json()
    assert resp.status_code == 200
    assert data["processed"] == 2
    assert data["archiveError"]["errorCode"] == ErrorCode.ARCHIVE_TOO_LARGE


def test_oversized_batch_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    processor = ScriptedProcessor()
    _, client = _client_with_processor(monkeypatch, processor)

    resp = client.post("/api/process-references-batch", json={"references": _references(260)})

    assert resp.status_code == 400
    assert "250" in resp.get_json()["error"]
    assert processor.calls == []


def test_empty_batch_is_rejected() -> None:
    client = _reload_main_module().app.test_client()

    resp = client.post("/api/process-references-batch", json={"references": []})

    assert resp.status_code == 400


def _file(ref_id: int, name: str, content: bytes = PDF_BYTES) -> dict:
    return {"id": ref_id, "filename": name, "contentBase64": base64.b64encode(content).decode("ascii")}


def test_create_zip() -> None:
    client = _reload_main_module().app.test_client()

    resp = client.post("/api/create-zip", json={"files": [_file(2, "b.pdf"), _file(1, "a.pdf")]})

    assert resp.status_code == 200
    payload = base64.b64decode(resp.get_json()["zipBase64"])
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        assert archive.namelist() == ["a.pdf", "b.pdf"]


def test_create_zip_rejects_empty_and_undecodable() -> None:
    client = _reload_main_module().app.test_client()

    assert client.post("/api/create-zip", json={"files": []}).status_code == 400
    resp = client.post(
        "/api/create-zip",
        json={"files": [{"id": 1, "filename": "a.pdf", "contentBase64": "***"}]},
    )
    assert resp.status_code == 400
    assert resp.get_json()["errorCode"] == ErrorCode.ARCHIVE_EMPTY


def test_create_zip_count_ceiling(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "MAX_BATCH_SIZE", 1)
    client = _reload_main_module().app.test_client()

    resp = client.post("/api/create-zip", json={"files": [_file(1, "a.pdf"), _file(2, "b.pdf")]})

    assert resp.status_code == 400
    assert "Maximum 1 files" in resp.get_json()["error"]


@pytest.mark.parametrize(
    "error, status",
    [
        (ArchiveTooLargeError("ZIP archive exceeds maximum size limit (500MB)"), 413),
        (ArchiveTimeoutError("ZIP creation timeout: archive took longer than 240s"), 504),
    ],
)
def test_create_zip_maps_archive_errors(monkeypatch: pytest.MonkeyPatch, error: Exception, status: int) -> None:
    main = _reload_main_module()

    def _fail(entries, settings):
        raise error

    monkeypatch.setattr(main, "assemble", _fail)
    client = main.app.test_client()

    resp = client.post("/api/create-zip", json={"files": [_file(1, "a.pdf")]})

    assert resp.status_code == status


def test_export_csv() -> None:
    client = _reload_main_module().app.test_client()

    resp = client.post(
        "/api/export-csv",
        json={
            "articleTitle": "Alan Turing",
            "results": [{"id": 1, "title": "One", "sourceUrl": "https://example.org/1", "status": "downloaded", "outputName": "1 - One.pdf"}],
        },
    )

    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert "refs-Alan_Turing.csv" in resp.headers["Content-Disposition"]
    body = resp.get_data(as_text=True)
    assert body.splitlines()[1] == "1,One,https://example.org/1,downloaded,,1 - One.pdf"
