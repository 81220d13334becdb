from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from jobcodex.db.models import BatchJob, CodexEntry, ProcessingUnit, UnitEvent
from jobcodex.errors import ConfigurationError
from jobcodex.types import Codex


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def codex_from_entry(entry: CodexEntry) -> Codex:
    try:
        return Codex.model_validate(
            {
                "id": entry.id,
                "version": entry.version,
                "name": entry.name,
                "description": entry.description,
                "record_kind": entry.record_kind,
                "output_schema": entry.output_schema_json,
                "prompts": entry.prompts_json,
                "categories": entry.categories_json,
                "critical_fields": entry.critical_fields_json,
                "normalization_rules": entry.normalization_rules_json,
                "missing_rules": entry.missing_rules_json,
            }
        )
    except ValidationError as exc:
        raise ConfigurationError(f"codex '{entry.id}' is malformed: {exc.error_count()} validation error(s)") from exc


def unit_to_dict(unit: ProcessingUnit) -> dict[str, Any]:
    return {
        "id": unit.id,
        "status": unit.status,
        "source_kind": unit.source_kind,
        "source_ref": unit.source_ref,
        "codex_id": unit.codex_id,
        "batch_id": unit.batch_id,
        "structured_record": unit.structured_record_json,
        "processing_error": unit.processing_error,
        "created_at": _iso(unit.created_at),
        "started_at": _iso(unit.started_at),
        "completed_at": _iso(unit.completed_at),
    }


def batch_to_dict(batch: BatchJob) -> dict[str, Any]:
    return {
        "id": batch.id,
        "status": batch.status,
        "codex_id": batch.codex_id,
        "total_units": batch.total_units,
        "completed_units": batch.completed_units,
        "concurrency": batch.concurrency,
        "error": batch.error,
        "created_at": _iso(batch.created_at),
        "completed_at": _iso(batch.completed_at),
    }


def event_to_dict(event: UnitEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "unit_id": event.unit_id,
        "step": event.step,
        "level": event.level,
        "message": event.message,
        "details": event.details_json,
        "created_at": _iso(event.created_at),
    }


class Repository:
    def __init__(self, session: Session):
        self.session = session

    def get_codex_entry(self, codex_id: str) -> CodexEntry | None:
        return self.session.get(CodexEntry, codex_id)

    def list_codex_entries(self) -> list[CodexEntry]:
        statement = select(CodexEntry).order_by(CodexEntry.id.asc())
        return list(self.session.scalars(statement).all())

    def save_codex(self, codex: Codex) -> CodexEntry:
        entry = self.session.get(CodexEntry, codex.id)
        if entry is None:
            entry = CodexEntry(id=codex.id)
            self.session.add(entry)

        payload = codex.model_dump(mode="json")
        entry.version = payload["version"]
        entry.name = payload["name"]
        entry.description = payload["description"]
        entry.record_kind = payload["record_kind"]
        entry.output_schema_json = payload["output_schema"]
        entry.prompts_json = payload["prompts"]
        entry.categories_json = payload["categories"]
        entry.critical_fields_json = payload["critical_fields"]
        entry.normalization_rules_json = payload["normalization_rules"]
        entry.missing_rules_json = payload["missing_rules"]

        self.session.commit()
        self.session.refresh(entry)
        return entry

    def count_units_for_codex(self, codex_id: str) -> int:
        statement = select(func.count()).select_from(ProcessingUnit).where(ProcessingUnit.codex_id == codex_id)
        return int(self.session.scalar(statement) or 0)

    def create_unit(
        self,
        *,
        source_text: str,
        codex_id: str,
        source_kind: str = "text",
        source_ref: str = "",
        batch_id: str | None = None,
    ) -> ProcessingUnit:
        unit = ProcessingUnit(
            source_text=source_text,
            source_kind=source_kind,
            source_ref=source_ref,
            codex_id=codex_id,
            batch_id=batch_id,
            status="pending",
        )
        self.session.add(unit)
        self.session.commit()
        self.session.refresh(unit)
        return unit

    def get_unit(self, unit_id: str) -> ProcessingUnit | None:
        return self.session.get(ProcessingUnit, unit_id)

    def list_units(
        self,
        *,
        status: str | None = None,
        codex_id: str | None = None,
        batch_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ProcessingUnit]:
        statement = select(ProcessingUnit)
        if status:
            statement = statement.where(ProcessingUnit.status == status)
        if codex_id:
            statement = statement.where(ProcessingUnit.codex_id == codex_id)
        if batch_id:
            statement = statement.where(ProcessingUnit.batch_id == batch_id)
        statement = statement.order_by(ProcessingUnit.created_at.desc(), ProcessingUnit.id.asc())
        return list(self.session.scalars(statement.limit(limit).offset(offset)).all())

    def list_batch_units(self, batch_id: str) -> list[ProcessingUnit]:
        statement = (
            select(ProcessingUnit)
            .where(ProcessingUnit.batch_id == batch_id)
            .order_by(ProcessingUnit.created_at.asc(), ProcessingUnit.id.asc())
        )
        return list(self.session.scalars(statement).all())

    def count_batch_statuses(self, batch_id: str) -> dict[str, int]:
        statement = (
            select(ProcessingUnit.status, func.count())
            .where(ProcessingUnit.batch_id == batch_id)
            .group_by(ProcessingUnit.status)
        )
        return {status: int(count) for status, count in self.session.execute(statement).all()}

    def update_unit(
        self,
        unit_id: str,
        *,
        status: str | None = None,
        structured_record: dict[str, Any] | None = None,
        clear_record: bool = False,
        processing_error: str | None = None,
        error_detail: str | None = None,
        started: bool = False,
        completed: bool = False,
    ) -> ProcessingUnit:
        unit = self.session.get(ProcessingUnit, unit_id)
        if not unit:
            raise ValueError(f"unit {unit_id} not found")

        if status is not None:
            unit.status = status
        if structured_record is not None:
            unit.structured_record_json = structured_record
        if clear_record:
            unit.structured_record_json = None
        if processing_error is not None:
            unit.processing_error = processing_error
        if error_detail is not None:
            unit.error_detail = error_detail
        if started:
            unit.started_at = datetime.now(UTC)
        if completed:
            unit.completed_at = datetime.now(UTC)

        self.session.commit()
        self.session.refresh(unit)
        return unit

    def delete_unit(self, unit_id: str) -> bool:
        unit = self.session.get(ProcessingUnit, unit_id)
        if not unit:
            return False
        self.session.execute(delete(UnitEvent).where(UnitEvent.unit_id == unit_id))
        self.session.delete(unit)
        self.session.commit()
        return True

    def create_batch(self, *, codex_id: str, total_units: int, concurrency: int) -> BatchJob:
        batch = BatchJob(
            codex_id=codex_id,
            total_units=total_units,
            completed_units=0,
            concurrency=concurrency,
            status="pending",
        )
        self.session.add(batch)
        self.session.commit()
        self.session.refresh(batch)
        return batch

    def get_batch(self, batch_id: str) -> BatchJob | None:
        return self.session.get(BatchJob, batch_id)

    def update_batch(
        self,
        batch_id: str,
        *,
        status: str | None = None,
        completed_units: int | None = None,
        error: str | None = None,
        completed: bool = False,
    ) -> BatchJob:
        batch = self.session.get(BatchJob, batch_id)
        if not batch:
            raise ValueError(f"batch {batch_id} not found")

        if status is not None:
            batch.status = status
        if completed_units is not None:
            if completed_units < batch.completed_units:
                raise ValueError("completed_units cannot decrease")
            batch.completed_units = completed_units
        if error is not None:
            batch.error = error
        if completed:
            batch.completed_at = datetime.now(UTC)

        self.session.commit()
        self.session.refresh(batch)
        return batch

    def append_unit_event(
        self,
        *,
        unit_id: str,
        step: str,
        message: str,
        level: str = "info",
        details: dict[str, Any] | None = None,
    ) -> UnitEvent:
        event = UnitEvent(unit_id=unit_id, step=step, message=message, level=level, details_json=details or {})
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def list_unit_events(self, unit_id: str) -> list[UnitEvent]:
        statement = select(UnitEvent).where(UnitEvent.unit_id == unit_id).order_by(UnitEvent.id.asc())
        return list(self.session.scalars(statement).all())
