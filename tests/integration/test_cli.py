from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from jobcodex.cli import app as cli_app
from jobcodex.core.runtime import PipelineRuntime

POSTING = "Data Engineer at Umbrella. Remote. Spark and Python required."
RAW = {"items": [{"text": "Spark", "source_quote": "Spark and Python required"}]}
CLASSIFICATION = {
    "items": [
        {"category": "technical_skills", "text": "Spark", "source_quote": "Spark and Python required", "confidence": 0.9}
    ]
}
SYNTHESIS = {
    "basics": {"title": "Data Engineer", "company": "Umbrella", "location": "Remote", "work_mode": "Remote"},
    "requirements": {"technical_skills": ["Spark", "Python"]},
}

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_runtime(runtime: PipelineRuntime, gateway, monkeypatch: pytest.MonkeyPatch) -> PipelineRuntime:
    gateway.script_extraction(raw=RAW, classification=CLASSIFICATION, synthesis=SYNTHESIS)
    monkeypatch.setattr(cli_app, "_RUNTIME", runtime)
    monkeypatch.setattr(cli_app, "configure_logging", lambda *args: None)
    return runtime


def test_codex_list() -> None:
    result = runner.invoke(cli_app.app, ["codex", "list"])

    assert result.exit_code == 0
    assert [item["id"] for item in json.loads(result.stdout)] == [
        "job-card-v1",
        "job-card-v2.1",
        "resume-card-v1",
        "resume-tailor-v1",
    ]


def test_codex_show_unknown_id_is_usage_error() -> None:
    result = runner.invoke(cli_app.app, ["codex", "show", "--id", "job-card-v9"])
    assert result.exit_code == 2


def test_extract_text_waits_for_record() -> None:
    result = runner.invoke(cli_app.app, ["extract", "--text", POSTING, "--codex", "job-card-v2.1"])

    assert result.exit_code == 0
    unit = json.loads(result.stdout)
    assert unit["status"] == "completed"
    assert unit["structured_record"]["data"]["basics"]["work_mode"] == "remote"


def test_extract_failure_exits_non_zero() -> None:
    result = runner.invoke(cli_app.app, ["extract", "--text", "FAIL " + POSTING])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["status"] == "error"


def test_extract_needs_exactly_one_source() -> None:
    result = runner.invoke(cli_app.app, ["extract", "--text", POSTING, "--url", "https://jobs.example/1"])
    assert result.exit_code == 2


def test_batch_run_reports_each_unit(tmp_path) -> None:
    files = []
    for index in range(3):
        path = tmp_path / f"posting-{index}.txt"
        path.write_text(POSTING, encoding="utf-8")
        files.append(str(path))

    result = runner.invoke(cli_app.app, ["batch", "run", *files, "--concurrency", "2"])

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["batch"]["status"] == "completed"
    assert [unit["status"] for unit in payload["units"]] == ["completed"] * 3


def test_tailor_requires_a_record_pair() -> None:
    result = runner.invoke(cli_app.app, ["tailor", "--resume-unit", "only-one"])
    assert result.exit_code == 2


def test_match_ranks_resume_files(tmp_path) -> None:
    job_file = tmp_path / "job.json"
    job_file.write_text(json.dumps(SYNTHESIS), encoding="utf-8")
    strong = tmp_path / "strong.json"
    strong.write_text(json.dumps({"technical_skills": ["Spark", "Python"]}), encoding="utf-8")
    weak = tmp_path / "weak.json"
    weak.write_text(json.dumps({"technical_skills": ["Spark"]}), encoding="utf-8")

    result = runner.invoke(
        cli_app.app,
        ["match", "--job-file", str(job_file), "--resume-file", str(strong), "--resume-file", str(weak)],
    )

    assert result.exit_code == 0
    body = json.loads(result.stdout)
    assert body["total_matches"] == 1
    assert body["matches"][0]["candidate_id"] == "strong"
    assert body["matches"][0]["overlap_score"] == 100


def test_match_needs_a_job() -> None:
    result = runner.invoke(cli_app.app, ["match", "--resume-unit", "abc"])
    assert result.exit_code == 2
