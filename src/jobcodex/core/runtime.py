from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from jobcodex.config import Settings, get_settings
from jobcodex.core.batch import BatchRunner
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.core.document_reader import fetch_url_text, read_document
from jobcodex.core.events import EventBus
from jobcodex.core.extraction import ExtractionOrchestrator
from jobcodex.core.lifecycle import TERMINAL_STATES
from jobcodex.core import matching
from jobcodex.core.tailoring import TransformationOrchestrator
from jobcodex.db.init import init_database
from jobcodex.db.repositories import Repository, batch_to_dict, event_to_dict, unit_to_dict
from jobcodex.db.session import SessionLocal
from jobcodex.errors import DocumentReadError, NotFoundError
from jobcodex.llm.gateway import CompletionGateway
from jobcodex.types import CandidateMatch, Codex, StructuredRecord, TailorOptions, TailorResult

logger = logging.getLogger(__name__)

DOCUMENT_SOURCE_KINDS = {"text/html": "html", "application/xhtml+xml": "html"}
UNIT_PAGE_SIZE = 200
WAIT_POLL_SEC = 0.05


@dataclass(slots=True)
class UnitHandle:
    unit_id: str
    future: Future


@dataclass(slots=True)
class BatchHandle:
    batch_id: str
    future: Future


def _settled(value: Any) -> Future:
    future: Future = Future()
    future.set_result(value)
    return future


class PipelineRuntime:
    """Owns the codex registry, the event bus and the worker pools.

    Units are fire-and-forget: ``submit_*`` persists a pending unit and returns
    a handle whose future settles when the unit reaches a terminal state.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        gateway: Any | None = None,
        event_bus: EventBus | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.gateway = gateway or CompletionGateway(self.settings)
        self.event_bus = event_bus or EventBus()
        self.registry = CodexRegistry(session_factory)
        self.executor = ThreadPoolExecutor(
            max_workers=self.settings.worker_pool_size,
            thread_name_prefix="jobcodex-unit",
        )
        # batches get their own threads so a running batch never occupies a unit worker
        self.batch_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="jobcodex-batch")
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._started = False

    def start(self) -> dict[str, int]:
        summary = init_database()
        summary.update(self.registry.initialize())
        self._started = True
        logger.info("Pipeline runtime started %s", summary)
        return summary

    def shutdown(self, *, wait: bool = True) -> None:
        self.batch_executor.shutdown(wait=wait)
        self.executor.shutdown(wait=wait)
        logger.info("Pipeline runtime stopped")

    def list_codexes(self) -> list[Codex]:
        return self.registry.list()

    def get_codex(self, codex_id: str) -> Codex:
        return self.registry.get(codex_id)

    def put_codex(self, codex: Codex) -> Codex:
        return self.registry.put(codex)

    def submit_unit(
        self,
        source_text: str,
        codex_id: str | None = None,
        source_kind: str = "text",
        *,
        source_ref: str = "",
    ) -> UnitHandle:
        codex_id = codex_id or self.settings.default_job_codex_id
        self.registry.get(codex_id)

        with self.session_factory() as db:
            unit = Repository(db).create_unit(
                source_text=source_text,
                codex_id=codex_id,
                source_kind=source_kind,
                source_ref=source_ref,
            )
        unit_id = unit.id
        future = self.executor.submit(self._process_unit, unit_id)
        with self._lock:
            self._futures[unit_id] = future
        future.add_done_callback(lambda _: self._forget(unit_id))
        logger.info("Unit submitted unit_id=%s codex_id=%s source_kind=%s", unit_id, codex_id, source_kind)
        return UnitHandle(unit_id=unit_id, future=future)

    def submit_document(self, data: bytes | str, mime_type: str, codex_id: str | None = None) -> UnitHandle:
        source_kind = DOCUMENT_SOURCE_KINDS.get(mime_type.split(";", 1)[0].strip().lower(), "text")
        try:
            document = read_document(data, mime_type, min_chars=self.settings.min_extracted_chars)
        except DocumentReadError as exc:
            return self._reject_input(str(exc), codex_id, source_kind=source_kind, source_ref=mime_type)
        return self.submit_unit(document.text, codex_id, source_kind, source_ref=mime_type)

    def submit_url(self, url: str, codex_id: str | None = None) -> UnitHandle:
        try:
            text = fetch_url_text(
                url,
                self.settings.fetch_timeout_sec,
                min_chars=self.settings.min_extracted_chars,
            )
        except DocumentReadError as exc:
            return self._reject_input(str(exc), codex_id, source_kind="url", source_ref=url)
        return self.submit_unit(text, codex_id, "url", source_ref=url)

    def resubmit_unit(self, unit_id: str) -> UnitHandle:
        with self.session_factory() as db:
            unit = Repository(db).get_unit(unit_id)
            if unit is None:
                raise NotFoundError(f"unit {unit_id} not found")
            if unit.status not in TERMINAL_STATES:
                raise ValueError(f"unit {unit_id} is still {unit.status}")
            source = (unit.source_text, unit.codex_id, unit.source_kind, unit.source_ref)

        text, codex_id, source_kind, source_ref = source
        handle = self.submit_unit(text, codex_id, source_kind, source_ref=source_ref)
        logger.info("Unit resubmitted unit_id=%s new_unit_id=%s", unit_id, handle.unit_id)
        return handle

    def wait_for_unit(self, unit_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Block until the unit is terminal.

        Settled futures are dropped as soon as they finish, so units without a
        tracked future (batch members, already finished units) are polled from the database.
        """
        with self._lock:
            future = self._futures.get(unit_id)
        if future is not None:
            future.result(timeout=timeout)
            return self.get_unit(unit_id)

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            unit = self.get_unit(unit_id)
            if unit["status"] in TERMINAL_STATES:
                return unit
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"unit {unit_id} is still {unit['status']} after {timeout}s")
            time.sleep(WAIT_POLL_SEC)

    def get_unit(self, unit_id: str) -> dict[str, Any]:
        with self.session_factory() as db:
            unit = Repository(db).get_unit(unit_id)
            if unit is None:
                raise NotFoundError(f"unit {unit_id} not found")
            return unit_to_dict(unit)

    def list_units(
        self,
        *,
        status: str | None = None,
        codex_id: str | None = None,
        batch_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            units = Repository(db).list_units(
                status=status,
                codex_id=codex_id,
                batch_id=batch_id,
                limit=limit,
                offset=offset,
            )
            return [unit_to_dict(unit) for unit in units]

    def list_unit_events(self, unit_id: str) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            repo = Repository(db)
            if repo.get_unit(unit_id) is None:
                raise NotFoundError(f"unit {unit_id} not found")
            return [event_to_dict(event) for event in repo.list_unit_events(unit_id)]

    def delete_unit(self, unit_id: str) -> None:
        with self.session_factory() as db:
            repo = Repository(db)
            unit = repo.get_unit(unit_id)
            if unit is None:
                raise NotFoundError(f"unit {unit_id} not found")
            if unit.status not in TERMINAL_STATES:
                raise ValueError(f"unit {unit_id} is still {unit.status}")
            repo.delete_unit(unit_id)
        with self._lock:
            self._futures.pop(unit_id, None)

    def submit_batch(
        self,
        texts: list[str],
        codex_id: str | None = None,
        concurrency: int | None = None,
    ) -> BatchHandle:
        if not texts:
            raise ValueError("a batch needs at least one text")
        concurrency = concurrency or self.settings.batch_concurrency
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        codex_id = codex_id or self.settings.default_job_codex_id
        self.registry.get(codex_id)

        with self.session_factory() as db:
            repo = Repository(db)
            batch = repo.create_batch(codex_id=codex_id, total_units=len(texts), concurrency=concurrency)
            unit_ids = [
                repo.create_unit(source_text=text, codex_id=codex_id, batch_id=batch.id).id for text in texts
            ]

        future = self.batch_executor.submit(self._run_batch, batch.id, unit_ids, concurrency)
        logger.info("Batch submitted batch_id=%s units=%s concurrency=%s", batch.id, len(unit_ids), concurrency)
        return BatchHandle(batch_id=batch.id, future=future)

    def get_batch(self, batch_id: str) -> dict[str, Any]:
        with self.session_factory() as db:
            repo = Repository(db)
            batch = repo.get_batch(batch_id)
            if batch is None:
                raise NotFoundError(f"batch {batch_id} not found")
            payload = batch_to_dict(batch)
            payload["status_counts"] = repo.count_batch_statuses(batch_id)
            return payload

    def list_batch_units(self, batch_id: str) -> list[dict[str, Any]]:
        with self.session_factory() as db:
            repo = Repository(db)
            if repo.get_batch(batch_id) is None:
                raise NotFoundError(f"batch {batch_id} not found")
            return [unit_to_dict(unit) for unit in repo.list_batch_units(batch_id)]

    def tailor(
        self,
        resume_record: StructuredRecord | dict[str, Any],
        job_record: StructuredRecord | dict[str, Any],
        options: TailorOptions | None = None,
    ) -> TailorResult:
        orchestrator = TransformationOrchestrator(registry=self.registry, gateway=self.gateway, settings=self.settings)
        return orchestrator.tailor(resume_record, job_record, options)

    def tailor_units(self, resume_unit_id: str, job_unit_id: str, options: TailorOptions | None = None) -> TailorResult:
        return self.tailor(self._completed_record(resume_unit_id), self._completed_record(job_unit_id), options)

    def match(
        self,
        job_record: StructuredRecord | dict[str, Any],
        resume_records: dict[str, StructuredRecord | dict[str, Any]],
        *,
        min_score: int = matching.MIN_OVERLAP_SCORE,
    ) -> list[CandidateMatch]:
        return matching.match(job_record, resume_records, aliases=self._skill_aliases(), min_score=min_score)

    def match_units(
        self,
        job_unit_id: str,
        resume_unit_ids: list[str] | None = None,
        *,
        min_score: int = matching.MIN_OVERLAP_SCORE,
    ) -> list[CandidateMatch]:
        """Rank resume units against a job unit; without ids, every completed resume unit is a candidate."""
        job_record = self._record_of_kind(job_unit_id, "job")
        if resume_unit_ids is None:
            resume_unit_ids = self._completed_resume_unit_ids()
        resumes = {unit_id: self._record_of_kind(unit_id, "resume") for unit_id in resume_unit_ids}
        return self.match(job_record, resumes, min_score=min_score)

    def _record_of_kind(self, unit_id: str, record_kind: str) -> dict[str, Any]:
        unit = self.get_unit(unit_id)
        if self.registry.get(unit["codex_id"]).record_kind != record_kind:
            raise ValueError(f"unit {unit_id} was not extracted with a {record_kind} codex")
        return self._completed_record(unit_id)

    def _skill_aliases(self) -> dict[str, str]:
        return matching.skill_aliases(codex for codex in self.registry.list() if codex.record_kind in {"job", "resume"})

    def _completed_resume_unit_ids(self) -> list[str]:
        resume_codexes = [codex.id for codex in self.registry.list() if codex.record_kind == "resume"]
        unit_ids: list[str] = []
        with self.session_factory() as db:
            repo = Repository(db)
            for codex_id in resume_codexes:
                offset = 0
                while True:
                    page = repo.list_units(status="completed", codex_id=codex_id, limit=UNIT_PAGE_SIZE, offset=offset)
                    unit_ids.extend(unit.id for unit in page)
                    if len(page) < UNIT_PAGE_SIZE:
                        break
                    offset += UNIT_PAGE_SIZE
        return unit_ids

    def _completed_record(self, unit_id: str) -> dict[str, Any]:
        unit = self.get_unit(unit_id)
        if unit["status"] != "completed" or not unit["structured_record"]:
            raise ValueError(f"unit {unit_id} has no completed record (status {unit['status']})")
        return unit["structured_record"]

    def _process_unit(self, unit_id: str) -> dict[str, Any]:
        with self.session_factory() as db:
            orchestrator = ExtractionOrchestrator(
                db,
                registry=self.registry,
                gateway=self.gateway,
                settings=self.settings,
                event_bus=self.event_bus,
            )
            return orchestrator.process(unit_id)

    def _run_batch(self, batch_id: str, unit_ids: list[str], concurrency: int) -> dict[str, Any]:
        runner = BatchRunner(
            self.session_factory,
            registry=self.registry,
            gateway=self.gateway,
            settings=self.settings,
            event_bus=self.event_bus,
        )
        return asyncio.run(runner.run(batch_id, unit_ids, concurrency))

    def _reject_input(self, reason: str, codex_id: str | None, *, source_kind: str, source_ref: str) -> UnitHandle:
        codex_id = codex_id or self.settings.default_job_codex_id
        self.registry.get(codex_id)
        with self.session_factory() as db:
            unit = Repository(db).create_unit(
                source_text="",
                codex_id=codex_id,
                source_kind=source_kind,
                source_ref=source_ref,
            )
            orchestrator = ExtractionOrchestrator(
                db,
                registry=self.registry,
                gateway=self.gateway,
                settings=self.settings,
                event_bus=self.event_bus,
            )
            result = orchestrator.mark_input_failed(unit.id, reason)
        return UnitHandle(unit_id=unit.id, future=_settled(result))

    def _forget(self, unit_id: str) -> None:
        with self._lock:
            self._futures.pop(unit_id, None)
