from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from jobcodex.config import Settings, get_settings
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.core.evidence import validate_evidence
from jobcodex.core.flagging import missing_field_flags, schema_flags
from jobcodex.core.tailor_report import (
    STYLE_MAX_BULLETS,
    build_ats_report,
    bullet_cap_warnings,
    check_immutable_facts,
    compute_diff,
    coverage_warnings,
    extract_job_keywords,
    flatten_text,
)
from jobcodex.errors import ConfigurationError, GatewayError, ImmutableFactViolation
from jobcodex.llm.gateway import CompletionGateway
from jobcodex.llm.prompts import (
    ALIGN_INSTRUCTIONS,
    COVER_LETTER_INSTRUCTIONS,
    FINALIZE_INSTRUCTIONS,
    RATIONALE_INSTRUCTIONS,
    REWRITE_INSTRUCTIONS,
)
from jobcodex.types import (
    AtsReport,
    ChangeRationale,
    Codex,
    CoverageMatrixEntry,
    Evidence,
    StructuredRecord,
    TailoredBundle,
    TailorOptions,
    TailorResult,
    TailorWarning,
)

logger = logging.getLogger(__name__)

FINALIZE_SHAPE = {
    "type": "object",
    "properties": {
        "warnings": {"type": "array", "items": TailorWarning.model_json_schema()},
        "format_warnings": {"type": "array", "items": {"type": "string"}},
    },
}
COVER_LETTER_SHAPE = {
    "type": "object",
    "required": ["cover_letter"],
    "properties": {"cover_letter": {"type": "string"}},
}
RATIONALE_SHAPE = {
    "type": "object",
    "required": ["rationales"],
    "properties": {"rationales": {"type": "array", "items": ChangeRationale.model_json_schema()}},
}


def record_data(record: StructuredRecord | dict[str, Any]) -> dict[str, Any]:
    """Accept a StructuredRecord, its JSON dump, or bare record data."""
    if isinstance(record, StructuredRecord):
        return record.data
    if isinstance(record.get("data"), dict) and "evidence" in record:
        return record["data"]
    return record


class TransformationOrchestrator:
    """Tailors a parsed resume to a parsed job in four passes: align, rewrite, finalize, extras.

    A pass that fails is recorded in ``errors`` and later passes work with what
    is left. Only a failed rewrite or a changed employment fact withholds the bundle.
    """

    def __init__(
        self,
        *,
        registry: CodexRegistry,
        gateway: Any | None = None,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.settings = settings or get_settings()
        self.gateway = gateway or CompletionGateway(self.settings)

    def tailor(
        self,
        resume_record: StructuredRecord | dict[str, Any],
        job_record: StructuredRecord | dict[str, Any],
        options: TailorOptions | None = None,
    ) -> TailorResult:
        options = options or TailorOptions()
        resume = record_data(resume_record)
        job = record_data(job_record)

        try:
            codex = self.registry.get(self.settings.tailor_codex_id)
            if codex.record_kind != "tailor":
                raise ConfigurationError(f"codex '{codex.id}' does not configure tailoring")
        except ConfigurationError as exc:
            logger.error("Tailoring is not configured: %s", exc)
            return TailorResult(ok=False, errors=[f"{type(exc).__name__}: {exc}"])

        errors: list[str] = []
        warnings: list[TailorWarning] = []
        keywords = extract_job_keywords(job)

        coverage: list[CoverageMatrixEntry] = []
        coverage_score = 0.0
        try:
            coverage, coverage_score, dropped = self._align(codex, resume, job)
            for entry in dropped:
                warnings.append(
                    TailorWarning(
                        severity="warn",
                        message=f"Coverage evidence for '{entry.jd_item}' was not found in the resume",
                        path="coverage.matrix",
                    )
                )
        except GatewayError as exc:
            logger.warning("Align pass failed: %s", exc)
            errors.append(f"Align pass failed: {exc}")

        try:
            tailored = self._rewrite(codex, resume, job, coverage, options)
        except GatewayError as exc:
            logger.warning("Rewrite pass failed: %s", exc)
            errors.append(f"Rewrite pass failed: {exc}")
            return TailorResult(ok=False, errors=errors)

        try:
            check_immutable_facts(resume, tailored)
        except ImmutableFactViolation as exc:
            logger.warning("Tailored resume changed employment facts: %s", exc)
            errors.append(f"ImmutableFactViolation: {exc}")
            return TailorResult(ok=False, errors=errors)

        ats_report = self._finalize(codex, tailored, coverage, coverage_score, keywords, options, warnings, errors)

        cover_letter = None
        if options.include_cover_letter and self.settings.tailor_cover_letter_enabled:
            cover_letter = self._cover_letter(codex, tailored, job, options, warnings)

        rationales = None
        if options.include_rationale:
            rationales = self._rationales(codex, resume, tailored, job, warnings)

        bundle = TailoredBundle(
            tailored_resume=tailored,
            cover_letter=cover_letter,
            coverage=coverage,
            coverage_score=coverage_score,
            diff=compute_diff(resume, tailored),
            warnings=warnings,
            ats_report=ats_report,
            rationales=rationales,
        )
        logger.info(
            "Tailoring finished ok=%s coverage=%s warnings=%s errors=%s",
            not errors,
            len(coverage),
            len(warnings),
            len(errors),
        )
        return TailorResult(ok=not errors, errors=errors, bundle=bundle)

    def _align(
        self,
        codex: Codex,
        resume: dict[str, Any],
        job: dict[str, Any],
    ) -> tuple[list[CoverageMatrixEntry], float, list[CoverageMatrixEntry]]:
        shape = codex.output_schema.get("properties", {}).get("coverage", {"type": "object"})
        data = self.gateway.complete(
            codex.prompts.get("aligner_system", ""),
            {"instructions": ALIGN_INSTRUCTIONS, "resume": resume, "job": job},
            shape,
            task="align",
        )
        matrix = data.get("matrix") if isinstance(data, dict) else None
        if not isinstance(matrix, list):
            raise GatewayError("align output has no matrix array", kind="malformed_output")

        entries: list[CoverageMatrixEntry] = []
        for item in matrix:
            try:
                entries.append(CoverageMatrixEntry.model_validate(item))
            except ValidationError:
                continue

        # coverage quotes go through the same verbatim check as extraction evidence
        citations = StructuredRecord(
            evidence=[
                Evidence(field=f"coverage.matrix[{index}]", quote=entry.resume_evidence)
                for index, entry in enumerate(entries)
            ]
        )
        report = validate_evidence(citations, flatten_text(resume), [])
        verified = {item.field for item in report.kept}
        kept = [entry for index, entry in enumerate(entries) if f"coverage.matrix[{index}]" in verified]
        dropped = [entry for index, entry in enumerate(entries) if f"coverage.matrix[{index}]" not in verified]

        score = data.get("coverage_score")
        if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 1:
            score = sum(entry.confidence for entry in kept) / len(kept) if kept else 0.0
        return kept, float(score), dropped

    def _rewrite(
        self,
        codex: Codex,
        resume: dict[str, Any],
        job: dict[str, Any],
        coverage: list[CoverageMatrixEntry],
        options: TailorOptions,
    ) -> dict[str, Any]:
        tailored_schema = codex.output_schema.get("properties", {}).get("tailored_resume", {"type": "object"})
        data = self.gateway.complete(
            codex.prompts.get("tailor_system", ""),
            {
                "instructions": REWRITE_INSTRUCTIONS,
                "resume": resume,
                "job": job,
                "coverage": [entry.model_dump() for entry in coverage],
                "language": options.language,
                "style": options.style,
                "max_bullets": STYLE_MAX_BULLETS[options.style],
            },
            {"type": "object", "required": ["tailored_resume"], "properties": {"tailored_resume": tailored_schema}},
            task="rewrite",
        )
        tailored = data.get("tailored_resume") if isinstance(data, dict) else None
        if not isinstance(tailored, dict):
            raise GatewayError("rewrite output has no tailored_resume object", kind="malformed_output")

        meta = tailored.setdefault("meta", {})
        if isinstance(meta, dict):
            meta.setdefault("language", options.language)
            meta.setdefault("style", options.style)
        return tailored

    def _finalize(
        self,
        codex: Codex,
        tailored: dict[str, Any],
        coverage: list[CoverageMatrixEntry],
        coverage_score: float,
        keywords: list[str],
        options: TailorOptions,
        warnings: list[TailorWarning],
        errors: list[str],
    ) -> AtsReport:
        tailored_schema = codex.output_schema.get("properties", {}).get("tailored_resume")
        if tailored_schema:
            for flag in schema_flags(tailored, tailored_schema):
                warnings.append(TailorWarning(severity=flag.severity, message=flag.message, path=flag.path))

        bundle_view = {
            "tailored_resume": tailored,
            "coverage": {"matrix": [entry.model_dump() for entry in coverage], "coverage_score": coverage_score},
        }
        for flag in missing_field_flags(bundle_view, codex.missing_rules):
            warnings.append(TailorWarning(severity=flag.severity, message=flag.message, path=flag.path))

        warnings.extend(coverage_warnings(coverage, self.settings.coverage_confidence_threshold))
        warnings.extend(bullet_cap_warnings(tailored, options.style))
        report = build_ats_report(tailored, keywords)

        try:
            data = self.gateway.complete(
                codex.prompts.get("finalizer_system", ""),
                {
                    "instructions": FINALIZE_INSTRUCTIONS,
                    "tailored_resume": tailored,
                    "coverage": bundle_view["coverage"],
                    "job_keywords": keywords,
                },
                FINALIZE_SHAPE,
                task="finalize",
            )
        except GatewayError as exc:
            logger.warning("Finalize pass failed: %s", exc)
            errors.append(f"Finalize pass failed: {exc}")
            return report

        model_warnings = data.get("warnings") or []
        format_warnings = data.get("format_warnings") or []
        if not isinstance(model_warnings, list) or not isinstance(format_warnings, list):
            logger.warning("Finalize pass returned non-list warnings")
            errors.append("Finalize pass failed: warnings and format_warnings must be arrays")
            return report

        for item in model_warnings:
            try:
                warnings.append(TailorWarning.model_validate(item))
            except ValidationError:
                continue
        for item in format_warnings:
            if isinstance(item, str) and item.strip() and item not in report.format_warnings:
                report.format_warnings.append(item)
        return report

    def _cover_letter(
        self,
        codex: Codex,
        tailored: dict[str, Any],
        job: dict[str, Any],
        options: TailorOptions,
        warnings: list[TailorWarning],
    ) -> str | None:
        try:
            data = self.gateway.complete(
                codex.prompts.get("cover_letter_system", ""),
                {
                    "instructions": COVER_LETTER_INSTRUCTIONS,
                    "tailored_resume": tailored,
                    "job": job,
                    "language": options.language,
                },
                COVER_LETTER_SHAPE,
                task="cover_letter",
            )
        except GatewayError as exc:
            logger.warning("Cover letter generation failed: %s", exc)
            warnings.append(TailorWarning(severity="info", message=f"Cover letter could not be generated: {exc}"))
            return None

        letter = data.get("cover_letter")
        if not isinstance(letter, str) or not letter.strip():
            warnings.append(TailorWarning(severity="info", message="Cover letter could not be generated: empty output"))
            return None
        return letter.strip()

    def _rationales(
        self,
        codex: Codex,
        resume: dict[str, Any],
        tailored: dict[str, Any],
        job: dict[str, Any],
        warnings: list[TailorWarning],
    ) -> list[ChangeRationale] | None:
        try:
            data = self.gateway.complete(
                codex.prompts.get("rationale_system", ""),
                {
                    "instructions": RATIONALE_INSTRUCTIONS,
                    "resume": resume,
                    "tailored_resume": tailored,
                    "job": job,
                },
                RATIONALE_SHAPE,
                task="rationale",
            )
        except GatewayError as exc:
            logger.warning("Rationale generation failed: %s", exc)
            warnings.append(TailorWarning(severity="info", message=f"Change rationales could not be generated: {exc}"))
            return None

        items = data.get("rationales") or []
        if not isinstance(items, list):
            logger.warning("Rationale pass returned %s instead of a list", type(items).__name__)
            warnings.append(
                TailorWarning(
                    severity="info",
                    message="Change rationales could not be generated: rationales must be an array",
                )
            )
            return None

        rationales: list[ChangeRationale] = []
        for item in items:
            try:
                rationales.append(ChangeRationale.model_validate(item))
            except ValidationError:
                continue
        return rationales
