from __future__ import annotations

import pytest

from jobcodex.core.extraction import USER_MESSAGES
from jobcodex.core.runtime import PipelineRuntime
from jobcodex.db.repositories import Repository
from jobcodex.errors import CodexNotFoundError, NotFoundError

RAW = {"items": [{"text": "Go", "source_quote": "Go"}]}
CLASSIFICATION = {"items": [{"category": "technical_skills", "text": "Go", "source_quote": "Go", "confidence": 0.9}]}
SYNTHESIS = {
    "basics": {"title": "Site Reliability Engineer", "company": "Hooli", "location": "Berlin", "work_mode": "on-site"},
    "requirements": {"technical_skills": ["Go"]},
}
POSTING = "Site Reliability Engineer at Hooli, Berlin. On-site. " + "We run Go services at scale. " * 8


@pytest.fixture(autouse=True)
def scripted(gateway) -> None:
    gateway.script_extraction(raw=RAW, classification=CLASSIFICATION, synthesis=SYNTHESIS)


def test_start_is_idempotent(runtime: PipelineRuntime) -> None:
    summary = runtime.start()
    assert summary["codexes"] == 4
    assert summary["seeded_codexes"] == 0


def test_submit_unit_runs_in_background(runtime: PipelineRuntime) -> None:
    handle = runtime.submit_unit(POSTING)

    unit = handle.future.result(timeout=10)

    assert unit["status"] == "completed"
    assert unit["codex_id"] == "job-card-v2.1"
    assert runtime.wait_for_unit(handle.unit_id)["structured_record"]["data"]["basics"]["work_mode"] == "onsite"


def test_submit_unit_rejects_unknown_codex(runtime: PipelineRuntime) -> None:
    with pytest.raises(CodexNotFoundError):
        runtime.submit_unit(POSTING, "missing-codex")
    assert runtime.list_units() == []


def test_submit_document_strips_html(runtime: PipelineRuntime, gateway) -> None:
    html = f"<html><body><h1>Careers</h1><p>{POSTING}</p><script>analytics()</script></body></html>"

    handle = runtime.submit_document(html.encode(), "text/html")
    unit = runtime.wait_for_unit(handle.unit_id, timeout=10)

    assert unit["status"] == "completed"
    assert unit["source_kind"] == "html"
    raw_text = gateway.calls[0][1]["text"]
    assert raw_text.startswith("Careers\nSite Reliability Engineer")
    assert "analytics" not in raw_text


def test_short_document_becomes_failed_unit(runtime: PipelineRuntime, gateway) -> None:
    handle = runtime.submit_document(b"Go developer", "text/plain")

    unit = handle.future.result()

    assert unit["status"] == "failed"
    assert unit["processing_error"] == USER_MESSAGES["input"]
    assert gateway.calls == []
    events = runtime.list_unit_events(handle.unit_id)
    assert events[-1]["step"] == "input"
    assert "at least 200 required" in events[-1]["message"]


def test_unsupported_document_type_becomes_failed_unit(runtime: PipelineRuntime) -> None:
    handle = runtime.submit_document(b"%PDF-1.7", "application/pdf")
    assert handle.future.result()["status"] == "failed"


def test_submit_url(runtime: PipelineRuntime, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("jobcodex.core.runtime.fetch_url_text", lambda url, timeout, min_chars: POSTING)

    handle = runtime.submit_url("https://jobs.example/sre")
    unit = runtime.wait_for_unit(handle.unit_id, timeout=10)

    assert unit["status"] == "completed"
    assert unit["source_kind"] == "url"
    assert unit["source_ref"] == "https://jobs.example/sre"


def test_resubmit_and_delete_require_terminal_units(runtime: PipelineRuntime) -> None:
    handle = runtime.submit_unit(POSTING)
    runtime.wait_for_unit(handle.unit_id, timeout=10)

    again = runtime.resubmit_unit(handle.unit_id)
    assert again.unit_id != handle.unit_id
    assert runtime.wait_for_unit(again.unit_id, timeout=10)["status"] == "completed"

    runtime.delete_unit(handle.unit_id)
    with pytest.raises(NotFoundError):
        runtime.get_unit(handle.unit_id)
    with pytest.raises(NotFoundError):
        runtime.resubmit_unit(handle.unit_id)


def test_submit_batch_validates_input(runtime: PipelineRuntime) -> None:
    with pytest.raises(ValueError):
        runtime.submit_batch([])
    with pytest.raises(ValueError):
        runtime.submit_batch([POSTING], concurrency=0)
    with pytest.raises(NotFoundError):
        runtime.get_batch("missing")


def test_submit_batch_lists_units_in_order(runtime: PipelineRuntime) -> None:
    texts = [f"{POSTING} Opening {index}" for index in range(4)]

    handle = runtime.submit_batch(texts, concurrency=2)
    batch = handle.future.result(timeout=30)

    assert batch["status"] == "completed"
    units = runtime.list_batch_units(handle.batch_id)
    assert len(units) == 4
    assert {unit["batch_id"] for unit in units} == {handle.batch_id}
    assert runtime.get_batch(handle.batch_id)["status_counts"] == {"completed": 4}


def test_tailor_units_requires_completed_records(runtime: PipelineRuntime) -> None:
    failed = runtime.submit_document(b"short", "text/plain")
    done = runtime.submit_unit(POSTING)
    runtime.wait_for_unit(done.unit_id, timeout=10)

    with pytest.raises(ValueError, match="has no completed record"):
        runtime.tailor_units(failed.unit_id, done.unit_id)
    with pytest.raises(NotFoundError):
        runtime.tailor_units("missing", done.unit_id)


def test_settled_units_are_not_retained(runtime: PipelineRuntime) -> None:
    handles = [runtime.submit_unit(f"{POSTING} Opening {index}") for index in range(5)]
    rejected = runtime.submit_document(b"short", "text/plain")
    for handle in handles:
        runtime.wait_for_unit(handle.unit_id, timeout=10)

    # done callbacks run on the worker threads; shutdown waits for them
    runtime.shutdown()

    assert runtime._futures == {}
    assert runtime.wait_for_unit(handles[0].unit_id, timeout=1)["status"] == "completed"
    assert runtime.wait_for_unit(rejected.unit_id, timeout=1)["status"] == "failed"


def test_wait_for_batch_member_polls_database(runtime: PipelineRuntime) -> None:
    handle = runtime.submit_batch([POSTING, f"{POSTING} Second opening"], concurrency=1)
    member = runtime.list_batch_units(handle.batch_id)[1]

    unit = runtime.wait_for_unit(member["id"], timeout=30)

    assert unit["status"] == "completed"
    handle.future.result(timeout=30)


def test_wait_for_unit_times_out_on_unscheduled_unit(runtime: PipelineRuntime) -> None:
    with runtime.session_factory() as db:
        unit_id = Repository(db).create_unit(source_text=POSTING, codex_id="job-card-v2.1").id

    with pytest.raises(TimeoutError, match="still pending"):
        runtime.wait_for_unit(unit_id, timeout=0.2)
