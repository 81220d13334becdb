from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from jobcodex.core.matching import MIN_OVERLAP_SCORE
from jobcodex.types import CandidateMatch, SourceKind, TailorOptions


class UnitCreateRequest(BaseModel):
    source_text: str
    codex_id: str | None = None
    source_kind: SourceKind = "text"


class UnitFromUrlRequest(BaseModel):
    url: str
    codex_id: str | None = None


class UnitResponse(BaseModel):
    id: str
    status: str
    source_kind: str
    source_ref: str = ""
    codex_id: str
    batch_id: str | None = None
    structured_record: dict[str, Any] | None = None
    processing_error: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


class UnitEventResponse(BaseModel):
    id: int
    unit_id: str
    step: str
    level: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: str | None = None


class BatchCreateRequest(BaseModel):
    texts: list[str] = Field(min_length=1)
    codex_id: str | None = None
    concurrency: int | None = Field(default=None, ge=1)


class BatchResponse(BaseModel):
    id: str
    status: str
    codex_id: str
    total_units: int
    completed_units: int
    concurrency: int
    error: str | None = None
    status_counts: dict[str, int] = Field(default_factory=dict)
    created_at: str | None = None
    completed_at: str | None = None


class TailorRequest(BaseModel):
    resume_record: dict[str, Any] | None = None
    job_record: dict[str, Any] | None = None
    resume_unit_id: str | None = None
    job_unit_id: str | None = None
    options: TailorOptions = Field(default_factory=TailorOptions)


class MatchRequest(BaseModel):
    job_unit_id: str | None = None
    resume_unit_ids: list[str] | None = None
    job_record: dict[str, Any] | None = None
    resume_records: dict[str, dict[str, Any]] | None = None
    min_score: int = Field(default=MIN_OVERLAP_SCORE, ge=0, le=100)


class MatchResponse(BaseModel):
    matches: list[CandidateMatch]
    total_matches: int


ExportFormat = Literal["json", "csv"]
