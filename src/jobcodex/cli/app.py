from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
import uvicorn

from jobcodex.api.app import create_app
from jobcodex.config import get_settings
from jobcodex.core.matching import MIN_OVERLAP_SCORE
from jobcodex.core.runtime import PipelineRuntime
from jobcodex.errors import ConfigurationError, NotFoundError
from jobcodex.logging_config import configure_logging
from jobcodex.types import Codex, TailorOptions

app = typer.Typer(help="jobcodex CLI")
codex_app = typer.Typer(help="Inspect and import codexes")
unit_app = typer.Typer(help="Processing unit status")
batch_app = typer.Typer(help="Batch extraction")

app.add_typer(codex_app, name="codex")
app.add_typer(unit_app, name="unit")
app.add_typer(batch_app, name="batch")

MIME_BY_SUFFIX = {
    ".html": "text/html",
    ".htm": "text/html",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
}

_RUNTIME: PipelineRuntime | None = None


def get_runtime() -> PipelineRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = PipelineRuntime(get_settings())
        _RUNTIME.start()
    return _RUNTIME


def echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _mime_type(path: Path) -> str:
    return MIME_BY_SUFFIX.get(path.suffix.lower(), "text/plain")


def _load_record(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise typer.BadParameter(f"{path} must contain a JSON object")
    return payload


@app.command("init")
def init_cmd() -> None:
    """Create the database and seed the built-in codexes."""
    configure_logging()
    runtime = PipelineRuntime(get_settings())
    result = runtime.start()
    runtime.shutdown()
    echo({"ok": True, **result})


@codex_app.command("list")
def codex_list() -> None:
    configure_logging()
    runtime = get_runtime()
    echo(
        [
            {"id": codex.id, "version": codex.version, "record_kind": codex.record_kind, "name": codex.name}
            for codex in runtime.list_codexes()
        ]
    )


@codex_app.command("show")
def codex_show(codex_id: str = typer.Option(..., "--id")) -> None:
    configure_logging()
    try:
        codex = get_runtime().get_codex(codex_id)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc
    echo(codex.model_dump(mode="json"))


@codex_app.command("import")
def codex_import(file: Path = typer.Option(..., "--file", exists=True, readable=True)) -> None:
    """Import one codex or a list of codexes from a JSON file."""
    configure_logging()
    runtime = get_runtime()
    payload = json.loads(file.read_text(encoding="utf-8"))
    items = payload if isinstance(payload, list) else [payload]

    imported = []
    for item in items:
        try:
            codex = runtime.put_codex(Codex.model_validate(item))
        except (ConfigurationError, ValueError) as exc:
            raise typer.BadParameter(str(exc)) from exc
        imported.append({"id": codex.id, "version": codex.version})
    echo({"imported": imported})


@app.command("extract")
def extract_cmd(
    file: Path | None = typer.Option(None, "--file", exists=True, readable=True),
    text: str | None = typer.Option(None, "--text"),
    url: str | None = typer.Option(None, "--url"),
    codex_id: str | None = typer.Option(None, "--codex"),
    resume: bool = typer.Option(False, "--resume", help="Use the default resume codex"),
    wait: bool = typer.Option(True, "--wait/--no-wait"),
    timeout: float = typer.Option(300.0, "--timeout"),
) -> None:
    """Extract one document into a structured record."""
    configure_logging()
    sources = [value for value in (file, text, url) if value]
    if len(sources) != 1:
        raise typer.BadParameter("pass exactly one of --file, --text or --url")

    runtime = get_runtime()
    if codex_id is None and resume:
        codex_id = runtime.settings.default_resume_codex_id
    try:
        if file is not None:
            handle = runtime.submit_document(file.read_bytes(), _mime_type(file), codex_id)
        elif url is not None:
            handle = runtime.submit_url(url, codex_id)
        else:
            handle = runtime.submit_unit(text or "", codex_id)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    unit = runtime.wait_for_unit(handle.unit_id, timeout=timeout) if wait else runtime.get_unit(handle.unit_id)
    echo(unit)
    if unit["status"] in {"error", "failed"}:
        raise typer.Exit(code=1)


@unit_app.command("status")
def unit_status(unit_id: str = typer.Option(..., "--unit-id")) -> None:
    configure_logging()
    try:
        echo(get_runtime().get_unit(unit_id))
    except NotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc


@unit_app.command("events")
def unit_events(unit_id: str = typer.Option(..., "--unit-id")) -> None:
    configure_logging()
    try:
        echo(get_runtime().list_unit_events(unit_id))
    except NotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc


@batch_app.command("run")
def batch_run(
    files: list[Path] = typer.Argument(..., exists=True, readable=True),
    codex_id: str | None = typer.Option(None, "--codex"),
    concurrency: int | None = typer.Option(None, "--concurrency", min=1),
) -> None:
    """Extract every file as one batch and wait for it to finish."""
    configure_logging()
    runtime = get_runtime()
    texts = [path.read_text(encoding="utf-8") for path in files]
    try:
        handle = runtime.submit_batch(texts, codex_id, concurrency)
    except (ConfigurationError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    handle.future.result()
    echo(
        {
            "batch": runtime.get_batch(handle.batch_id),
            "units": [
                {"id": unit["id"], "status": unit["status"], "processing_error": unit["processing_error"]}
                for unit in runtime.list_batch_units(handle.batch_id)
            ],
        }
    )


@batch_app.command("status")
def batch_status(batch_id: str = typer.Option(..., "--batch-id")) -> None:
    configure_logging()
    try:
        echo(get_runtime().get_batch(batch_id))
    except NotFoundError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command("tailor")
def tailor_cmd(
    resume_unit: str | None = typer.Option(None, "--resume-unit"),
    job_unit: str | None = typer.Option(None, "--job-unit"),
    resume_file: Path | None = typer.Option(None, "--resume-file", exists=True, readable=True),
    job_file: Path | None = typer.Option(None, "--job-file", exists=True, readable=True),
    language: str = typer.Option("en", "--language"),
    style: str = typer.Option("modern", "--style"),
    cover_letter: bool = typer.Option(False, "--cover-letter"),
    rationale: bool = typer.Option(False, "--rationale"),
) -> None:
    """Tailor a parsed resume to a parsed job, from unit ids or record files."""
    configure_logging()
    runtime = get_runtime()
    try:
        options = TailorOptions(
            language=language,
            style=style,
            include_cover_letter=cover_letter,
            include_rationale=rationale,
        )
        if resume_file is not None and job_file is not None:
            result = runtime.tailor(_load_record(resume_file), _load_record(job_file), options)
        elif resume_unit and job_unit:
            result = runtime.tailor_units(resume_unit, job_unit, options)
        else:
            raise typer.BadParameter("pass --resume-unit/--job-unit or --resume-file/--job-file")
    except (NotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    echo(result.model_dump(mode="json"))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("match")
def match_cmd(
    job_unit: str | None = typer.Option(None, "--job-unit"),
    resume_units: list[str] | None = typer.Option(
        None, "--resume-unit", help="Repeatable; defaults to every completed resume"
    ),
    job_file: Path | None = typer.Option(None, "--job-file", exists=True, readable=True),
    resume_files: list[Path] | None = typer.Option(None, "--resume-file", exists=True, readable=True),
    min_score: int = typer.Option(MIN_OVERLAP_SCORE, "--min-score", min=0, max=100),
) -> None:
    """Rank resumes against a job by skill overlap."""
    configure_logging()
    runtime = get_runtime()
    try:
        if job_file is not None:
            if not resume_files:
                raise typer.BadParameter("--job-file needs at least one --resume-file")
            resumes = {path.stem: _load_record(path) for path in resume_files}
            matches = runtime.match(_load_record(job_file), resumes, min_score=min_score)
        elif job_unit:
            matches = runtime.match_units(job_unit, resume_units or None, min_score=min_score)
        else:
            raise typer.BadParameter("pass --job-unit or --job-file")
    except (ConfigurationError, NotFoundError, ValueError) as exc:
        raise typer.BadParameter(str(exc)) from exc

    echo({"matches": [item.model_dump(mode="json") for item in matches], "total_matches": len(matches)})


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
