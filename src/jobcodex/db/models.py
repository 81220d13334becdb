from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from jobcodex.db.base import Base, TimestampMixin


def new_id() -> str:
    return str(uuid.uuid4())


class CodexEntry(TimestampMixin, Base):
    __tablename__ = "codexes"

    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    version: Mapped[str] = mapped_column(String(40), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    record_kind: Mapped[str] = mapped_column(String(20), nullable=False)
    output_schema_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    prompts_json: Mapped[dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)
    categories_json: Mapped[dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)
    critical_fields_json: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    normalization_rules_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    missing_rules_json: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)


class BatchJob(TimestampMixin, Base):
    __tablename__ = "batch_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    status: Mapped[str] = mapped_column(String(40), default="pending", nullable=False)
    codex_id: Mapped[str] = mapped_column(String(120), nullable=False)
    total_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_units: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    concurrency: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ProcessingUnit(TimestampMixin, Base):
    __tablename__ = "processing_units"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    status: Mapped[str] = mapped_column(String(40), default="pending", nullable=False, index=True)
    source_text: Mapped[str] = mapped_column(Text, default="", nullable=False)
    source_kind: Mapped[str] = mapped_column(String(20), default="text", nullable=False)
    source_ref: Mapped[str] = mapped_column(String(1000), default="", nullable=False)
    codex_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    structured_record_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    batch_id: Mapped[str | None] = mapped_column(
        ForeignKey("batch_jobs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UnitEvent(TimestampMixin, Base):
    __tablename__ = "unit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    unit_id: Mapped[str] = mapped_column(ForeignKey("processing_units.id", ondelete="CASCADE"), index=True)
    step: Mapped[str] = mapped_column(String(80), nullable=False)
    level: Mapped[str] = mapped_column(String(20), default="info", nullable=False)
    message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    details_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
