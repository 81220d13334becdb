from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session

from jobcodex.config import Settings, get_settings
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.core.events import EventBus
from jobcodex.core.evidence import validate_evidence
from jobcodex.core.flagging import flag_record
from jobcodex.core.lifecycle import UnitLifecycle
from jobcodex.core.normalization import normalize_record
from jobcodex.db.repositories import Repository, event_to_dict, unit_to_dict
from jobcodex.errors import ConfigurationError, GatewayError, InvalidTransition, NotFoundError
from jobcodex.llm.gateway import CompletionGateway
from jobcodex.llm.prompts import (
    CLASSIFICATION_INSTRUCTIONS,
    CLASSIFICATION_SYSTEM,
    RAW_EXTRACTION_INSTRUCTIONS,
    RAW_EXTRACTION_SYSTEM,
    SYNTHESIS_INSTRUCTIONS,
)
from jobcodex.types import ClassifiedItem, Codex, Evidence, RawExtraction, StructuredRecord

logger = logging.getLogger(__name__)

USER_MESSAGES = {
    "input": "No usable text could be read from this document.",
    "configuration": "This document cannot be processed with the selected codex.",
    "gateway": "The extraction service could not process this document. Please resubmit it.",
    "unexpected": "An unexpected error occurred while processing this document.",
}

CLASSIFICATION_SHAPE = {
    "type": "object",
    "required": ["items"],
    "properties": {"items": {"type": "array", "items": ClassifiedItem.model_json_schema()}},
}


def build_record(data: dict[str, Any], classified: list[ClassifiedItem], codex: Codex) -> StructuredRecord:
    """Assemble the synthesis output and the Pass-2 citations into one record.

    Model-supplied ``missing_fields`` are discarded; flags are computed locally.
    """
    payload = dict(data)
    raw_evidence = payload.pop("evidence", None)
    raw_confidence = payload.pop("confidence", None)
    payload.pop("missing_fields", None)

    evidence: list[Evidence] = []
    seen: set[tuple[str, str]] = set()

    def add(item: Evidence) -> None:
        key = (item.field, item.quote.strip().lower())
        if not item.quote.strip() or key in seen:
            return
        seen.add(key)
        evidence.append(item)

    confidence: dict[str, float] = {}
    for item in classified:
        path = codex.categories[item.category]
        add(Evidence(field=path, quote=item.source_quote))
        confidence[path] = min(confidence.get(path, 1.0), item.confidence)

    if isinstance(raw_evidence, list):
        for entry in raw_evidence:
            try:
                add(Evidence.model_validate(entry))
            except ValidationError:
                continue

    if isinstance(raw_confidence, dict):
        for path, value in raw_confidence.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            if 0 <= value <= 1:
                confidence[str(path)] = float(value)

    return StructuredRecord(data=payload, evidence=evidence, confidence=confidence)


class ExtractionOrchestrator:
    def __init__(
        self,
        session: Session,
        *,
        registry: CodexRegistry,
        gateway: Any | None = None,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.registry = registry
        self.gateway = gateway or CompletionGateway(self.settings)
        self.event_bus = event_bus

    def process(self, unit_id: str) -> dict[str, Any]:
        unit = self.repo.get_unit(unit_id)
        if unit is None:
            raise NotFoundError(f"unit {unit_id} not found")
        if unit.status != "pending":
            raise InvalidTransition(unit.status, "processing")
        if not unit.source_text.strip():
            return self.mark_input_failed(unit_id, "source text is empty")

        lifecycle = UnitLifecycle(unit.status)
        source_text = unit.source_text
        self._advance(lifecycle, unit_id, "processing", started=True)

        try:
            codex = self.registry.get(unit.codex_id)
            if codex.record_kind == "tailor":
                raise ConfigurationError(f"codex '{codex.id}' configures tailoring, not extraction")
            if not codex.prompts.get("system"):
                raise ConfigurationError(f"codex '{codex.id}' has no system prompt")
            self._log(unit_id, "codex", f"Using codex {codex.id}@{codex.version}")

            self._advance(lifecycle, unit_id, "extracting")
            record = self._extract(unit_id, source_text, codex)

            self._advance(lifecycle, unit_id, "validating")
            self._post_process(unit_id, record, codex, source_text)

            self._advance(
                lifecycle,
                unit_id,
                "completed",
                structured_record=record.model_dump(mode="json"),
                completed=True,
            )
        except Exception as exc:
            return self._fail(lifecycle, unit_id, exc)

        logger.info("Unit completed unit_id=%s flags=%s", unit_id, len(record.missing_fields))
        return self.serialize_unit(unit_id)

    def mark_input_failed(self, unit_id: str, reason: str) -> dict[str, Any]:
        unit = self.repo.get_unit(unit_id)
        if unit is None:
            raise NotFoundError(f"unit {unit_id} not found")

        lifecycle = UnitLifecycle(unit.status)
        logger.warning("Input acquisition failed unit_id=%s reason=%s", unit_id, reason)
        self._advance(
            lifecycle,
            unit_id,
            "failed",
            processing_error=USER_MESSAGES["input"],
            error_detail=reason,
            completed=True,
        )
        self._log(unit_id, "input", reason, level="error")
        return self.serialize_unit(unit_id)

    def serialize_unit(self, unit_id: str) -> dict[str, Any]:
        unit = self.repo.get_unit(unit_id)
        if not unit:
            raise NotFoundError(f"unit {unit_id} not found")
        return unit_to_dict(unit)

    def _extract(self, unit_id: str, source_text: str, codex: Codex) -> StructuredRecord:
        text = source_text[: self.settings.source_text_limit]

        raw = self._raw_pass(text, codex)
        self._log(unit_id, "pass_1", f"Extracted {len(raw.items)} raw item(s)")

        classified = self._classification_pass(text, raw, codex)
        self._log(unit_id, "pass_2", f"Classified {len(classified)} item(s)")

        record = self._synthesis_pass(text, classified, codex)
        self._log(unit_id, "pass_3", f"Synthesized record with {len(record.data)} top-level field(s)")
        return record

    def _raw_pass(self, text: str, codex: Codex) -> RawExtraction:
        data = self._call(
            "raw_extraction",
            codex.prompts.get("raw_extraction_system", RAW_EXTRACTION_SYSTEM),
            {"instructions": RAW_EXTRACTION_INSTRUCTIONS, "text": text},
            RawExtraction.model_json_schema(),
        )
        try:
            return RawExtraction.model_validate(data)
        except ValidationError as exc:
            raise GatewayError(
                f"raw extraction output has the wrong shape ({exc.error_count()} error(s))",
                kind="malformed_output",
            ) from exc

    def _classification_pass(self, text: str, raw: RawExtraction, codex: Codex) -> list[ClassifiedItem]:
        data = self._call(
            "classification",
            codex.prompts.get("classification_system", CLASSIFICATION_SYSTEM),
            {
                "instructions": CLASSIFICATION_INSTRUCTIONS,
                "categories": list(codex.categories),
                "text": text,
                "raw_items": [item.model_dump() for item in raw.items],
            },
            CLASSIFICATION_SHAPE,
        )
        items = data.get("items")
        if not isinstance(items, list):
            raise GatewayError("classification output has no items array", kind="malformed_output")

        classified: list[ClassifiedItem] = []
        for entry in items:
            try:
                item = ClassifiedItem.model_validate(entry)
            except ValidationError:
                continue
            if item.category not in codex.categories:
                continue
            classified.append(item)

        if len(classified) < len(items):
            logger.info("Skipped %s unusable classification item(s)", len(items) - len(classified))
        return classified

    def _synthesis_pass(self, text: str, classified: list[ClassifiedItem], codex: Codex) -> StructuredRecord:
        instructions = "\n\n".join(part for part in (codex.prompts.get("user", ""), SYNTHESIS_INSTRUCTIONS) if part)
        data = self._call(
            "synthesis",
            codex.prompts["system"],
            {
                "instructions": instructions,
                "schema": codex.output_schema,
                "text": text,
                "classification": [item.model_dump() for item in classified],
            },
            codex.output_schema,
        )
        return build_record(data, classified, codex)

    def _call(
        self,
        task: str,
        system_prompt: str,
        payload: dict[str, Any],
        response_shape: dict[str, Any],
    ) -> dict[str, Any]:
        logger.info("Running %s pass", task)
        data = self.gateway.complete(system_prompt, payload, response_shape, task=task)
        if not isinstance(data, dict):
            raise GatewayError(f"{task} output is not a JSON object", kind="malformed_output")
        return data

    def _post_process(self, unit_id: str, record: StructuredRecord, codex: Codex, source_text: str) -> None:
        normalized = normalize_record(record, codex.normalization_rules)
        self._log(
            unit_id,
            "normalize",
            f"Normalized {len(normalized.applied)} value(s); kept {len(normalized.failed)} raw",
            details={"applied": normalized.applied, "kept_raw": normalized.failed},
        )

        evidence = validate_evidence(record, source_text, codex.critical_fields)
        self._log(
            unit_id,
            "evidence",
            f"Kept {len(evidence.kept)} evidence quote(s); dropped {len(evidence.dropped)}",
            details={
                "dropped": [mismatch.evidence.quote for mismatch in evidence.dropped],
                "flagged": evidence.flagged_paths,
            },
        )

        flag_record(record, codex, threshold=self.settings.confidence_threshold)
        self._log(unit_id, "flagging", f"Record carries {len(record.missing_fields)} flag(s)")

    def _advance(self, lifecycle: UnitLifecycle, unit_id: str, target: str, **fields: Any) -> None:
        if not lifecycle.can_move_to(target):
            raise InvalidTransition(lifecycle.status, target)
        previous = lifecycle.status
        self.repo.update_unit(unit_id, status=target, **fields)
        lifecycle.move_to(target)
        self._log(unit_id, "status", f"{previous} -> {target}", details={"status": target})

    def _fail(self, lifecycle: UnitLifecycle, unit_id: str, exc: Exception) -> dict[str, Any]:
        self.session.rollback()
        if isinstance(exc, ConfigurationError):
            logger.error("Unit configuration error unit_id=%s error=%s", unit_id, exc)
            category = "configuration"
        elif isinstance(exc, GatewayError):
            logger.warning("Unit gateway error unit_id=%s kind=%s error=%s", unit_id, exc.kind, exc)
            category = "gateway"
        else:
            logger.exception("Unit failed unit_id=%s", unit_id)
            category = "unexpected"

        detail = f"{type(exc).__name__}: {exc}"
        self._advance(
            lifecycle,
            unit_id,
            "error",
            processing_error=USER_MESSAGES[category],
            error_detail=detail,
            clear_record=True,
            completed=True,
        )
        self._log(
            unit_id,
            "error",
            detail,
            level="error",
            details={"category": category, "kind": getattr(exc, "kind", None)},
        )
        return self.serialize_unit(unit_id)

    def _log(
        self,
        unit_id: str,
        step: str,
        message: str,
        *,
        level: str = "info",
        details: dict[str, Any] | None = None,
    ) -> None:
        event = self.repo.append_unit_event(unit_id=unit_id, step=step, message=message, level=level, details=details)
        if self.event_bus is not None:
            self.event_bus.publish(unit_id, event_to_dict(event))
