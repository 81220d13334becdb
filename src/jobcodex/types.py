from __future__ import annotations

from typing import Any, Literal

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel, Field, field_validator, model_validator

from jobcodex.core.field_paths import WILDCARD, parse_path

LLMProvider = Literal["openai", "local"]
Severity = Literal["info", "warn", "error"]
RuleKind = Literal["ALIAS_MAP", "CURRENCY_RANGE", "DATE_ISO", "HOURS_PER_WEEK", "DURATION_DAYS"]
RecordKind = Literal["job", "resume", "tailor"]
SourceKind = Literal["text", "html", "url", "pdf", "docx", "vision"]
UnitStatus = Literal["pending", "processing", "extracting", "validating", "completed", "error", "failed"]
TailorLanguage = Literal["en", "da"]
TailorStyle = Literal["conservative", "modern", "impact"]
SkillPriority = Literal["must_have", "nice_to_have"]


def _check_confidence(value: float) -> float:
    if value < 0 or value > 1:
        raise ValueError("confidence must be between 0 and 1")
    return value


class NormalizationRule(BaseModel):
    target_path: str
    rule_kind: RuleKind
    aliases: dict[str, str] = Field(default_factory=dict)
    output_path: str | None = None

    @field_validator("target_path", "output_path")
    @classmethod
    def validate_paths(cls, value: str | None) -> str | None:
        if value is not None:
            parse_path(value)
        return value

    @model_validator(mode="after")
    def validate_rule(self) -> "NormalizationRule":
        if self.rule_kind == "ALIAS_MAP" and not self.aliases:
            raise ValueError(f"ALIAS_MAP rule for '{self.target_path}' needs at least one alias")
        # one output_path cannot hold the results of several matches
        if self.output_path and WILDCARD in parse_path(self.target_path):
            raise ValueError(f"rule for '{self.target_path}' cannot set output_path on a wildcard target")
        if self.output_path and WILDCARD in parse_path(self.output_path):
            raise ValueError(f"output_path '{self.output_path}' must not contain a wildcard")
        return self


class MissingFieldRule(BaseModel):
    path: str
    severity: Severity
    message: str

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        parse_path(value)
        return value


class Codex(BaseModel):
    id: str = Field(min_length=1, max_length=120)
    version: str
    name: str
    description: str = ""
    record_kind: RecordKind
    output_schema: dict[str, Any]
    prompts: dict[str, str] = Field(default_factory=dict)
    categories: dict[str, str] = Field(default_factory=dict)
    critical_fields: list[str] = Field(default_factory=list)
    normalization_rules: list[NormalizationRule] = Field(default_factory=list)
    missing_rules: list[MissingFieldRule] = Field(default_factory=list)

    @field_validator("output_schema")
    @classmethod
    def validate_schema_root(cls, value: dict[str, Any]) -> dict[str, Any]:
        if value.get("type") != "object":
            raise ValueError("output_schema must describe an object")
        try:
            Draft202012Validator.check_schema(value)
        except SchemaError as exc:
            raise ValueError(f"output_schema is not a valid JSON Schema: {exc.message}") from exc
        return value

    @field_validator("critical_fields")
    @classmethod
    def validate_critical_fields(cls, value: list[str]) -> list[str]:
        for path in value:
            parse_path(path)
        return value

    @field_validator("categories")
    @classmethod
    def validate_categories(cls, value: dict[str, str]) -> dict[str, str]:
        for path in value.values():
            parse_path(path)
        return value

    def same_content(self, other: "Codex") -> bool:
        return self.model_dump() == other.model_dump()


class Evidence(BaseModel):
    field: str
    quote: str
    page: int | None = None


class Flag(BaseModel):
    path: str
    severity: Severity
    message: str


class StructuredRecord(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)
    evidence: list[Evidence] = Field(default_factory=list)
    confidence: dict[str, float] = Field(default_factory=dict)
    missing_fields: list[Flag] = Field(default_factory=list)

    def flagged_paths(self) -> set[str]:
        return {flag.path for flag in self.missing_fields}

    def add_flag(self, path: str, severity: Severity, message: str) -> bool:
        if path in self.flagged_paths():
            return False
        self.missing_fields.append(Flag(path=path, severity=severity, message=message))
        return True


class RawItem(BaseModel):
    text: str
    source_quote: str = ""


class RawExtraction(BaseModel):
    items: list[RawItem] = Field(default_factory=list)


class ClassifiedItem(BaseModel):
    category: str
    text: str
    source_quote: str
    confidence: float

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _check_confidence(value)


class TailorOptions(BaseModel):
    language: TailorLanguage = "en"
    style: TailorStyle = "modern"
    include_cover_letter: bool = False
    include_rationale: bool = False


class CoverageMatrixEntry(BaseModel):
    model_config = {"frozen": True}

    jd_item: str
    resume_evidence: str = ""
    resume_ref: str = ""
    confidence: float
    notes: str = ""

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, value: float) -> float:
        return _check_confidence(value)


class TailorDiff(BaseModel):
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    reordered: list[str] = Field(default_factory=list)
    rephrased: list[str] = Field(default_factory=list)


class TailorWarning(BaseModel):
    severity: Severity
    message: str
    path: str | None = None


class AtsReport(BaseModel):
    keyword_coverage: list[str] = Field(default_factory=list)
    missing_keywords: list[str] = Field(default_factory=list)
    format_warnings: list[str] = Field(default_factory=list)


class ChangeRationale(BaseModel):
    path: str
    rationale: str


class TailoredBundle(BaseModel):
    tailored_resume: dict[str, Any]
    cover_letter: str | None = None
    coverage: list[CoverageMatrixEntry] = Field(default_factory=list)
    coverage_score: float = 0.0
    diff: TailorDiff = Field(default_factory=TailorDiff)
    warnings: list[TailorWarning] = Field(default_factory=list)
    ats_report: AtsReport = Field(default_factory=AtsReport)
    rationales: list[ChangeRationale] | None = None


class TailorResult(BaseModel):
    ok: bool
    errors: list[str] = Field(default_factory=list)
    bundle: TailoredBundle | None = None


class MatchedSkill(BaseModel):
    canonical_name: str
    raw_label: str
    priority: SkillPriority


class MissingSkill(BaseModel):
    canonical_name: str
    priority: SkillPriority
    severity: Literal["critical", "preferred"]


class CandidateMatch(BaseModel):
    candidate_id: str
    overlap_score: int = Field(ge=0, le=100)
    matched_skills: list[MatchedSkill] = Field(default_factory=list)
    missing_skills: list[MissingSkill] = Field(default_factory=list)
    total_job_skills: int = 0
    total_candidate_skills: int = 0
    must_have_matches: int = 0
    must_have_required: int = 0
    nice_to_have_matches: int = 0
    nice_to_have_total: int = 0


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)
