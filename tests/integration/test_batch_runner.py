from __future__ import annotations

import asyncio

import pytest

from jobcodex.config import get_settings
from jobcodex.core.batch import BatchRunner, chunked
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.db.repositories import Repository
from jobcodex.db.session import SessionLocal
from jobcodex.errors import NotFoundError

RAW = {"items": [{"text": "Python", "source_quote": "Python"}]}
CLASSIFICATION = {
    "items": [{"category": "technical_skills", "text": "Python", "source_quote": "Python", "confidence": 0.9}]
}
SYNTHESIS = {
    "basics": {"title": "Backend Engineer", "company": "Initech", "location": "Aarhus", "work_mode": "hybrid"},
    "requirements": {"technical_skills": ["Python"]},
}


def _create_batch(texts: list[str], concurrency: int) -> tuple[str, list[str]]:
    with SessionLocal() as db:
        repo = Repository(db)
        batch = repo.create_batch(codex_id="job-card-v2.1", total_units=len(texts), concurrency=concurrency)
        unit_ids = [repo.create_unit(source_text=text, codex_id="job-card-v2.1", batch_id=batch.id).id for text in texts]
    return batch.id, unit_ids


def _runner(registry: CodexRegistry, gateway) -> BatchRunner:
    return BatchRunner(SessionLocal, registry=registry, gateway=gateway, settings=get_settings())


def test_chunked_splits_into_fixed_size_groups() -> None:
    assert list(chunked(["a", "b", "c", "d", "e"], 2)) == [["a", "b"], ["c", "d"], ["e"]]
    assert list(chunked([], 3)) == []
    with pytest.raises(ValueError):
        list(chunked(["a"], 0))


def test_progress_advances_once_per_chunk(registry: CodexRegistry, gateway) -> None:
    gateway.script_extraction(raw=RAW, classification=CLASSIFICATION, synthesis=SYNTHESIS)
    batch_id, unit_ids = _create_batch([f"Backend Engineer {index} using Python" for index in range(7)], 3)
    progress: list[int] = []

    batch = asyncio.run(_runner(registry, gateway).run(batch_id, unit_ids, 3, on_progress=progress.append))

    assert progress == [3, 6, 7]
    assert batch["status"] == "completed"
    assert batch["completed_units"] == 7
    assert batch["completed_at"] is not None
    with SessionLocal() as db:
        statuses = Repository(db).count_batch_statuses(batch_id)
    assert statuses == {"completed": 7}


def test_concurrency_caps_units_in_flight(registry: CodexRegistry, slow_gateway) -> None:
    slow = slow_gateway.script_extraction(raw=RAW, classification=CLASSIFICATION, synthesis=SYNTHESIS)
    batch_id, unit_ids = _create_batch([f"Backend Engineer {index} using Python" for index in range(6)], 2)

    asyncio.run(_runner(registry, slow).run(batch_id, unit_ids, 2))

    assert slow.max_in_flight <= 2
    assert len(slow.calls) == 18


def test_failing_units_do_not_fail_the_batch(registry: CodexRegistry, gateway) -> None:
    gateway.script_extraction(raw=RAW, classification=CLASSIFICATION, synthesis=SYNTHESIS)
    texts = ["FAIL one using Python", "Backend Engineer using Python", "FAIL two using Python", "   "]
    batch_id, unit_ids = _create_batch(texts, 2)

    batch = asyncio.run(_runner(registry, gateway).run(batch_id, unit_ids, 2))

    assert batch["status"] == "completed"
    assert batch["completed_units"] == 4
    with SessionLocal() as db:
        statuses = Repository(db).count_batch_statuses(batch_id)
    assert statuses == {"error": 2, "completed": 1, "failed": 1}


def test_unknown_batch_raises(registry: CodexRegistry, gateway) -> None:
    with pytest.raises(NotFoundError):
        asyncio.run(_runner(registry, gateway).run("missing-batch", [], 2))
