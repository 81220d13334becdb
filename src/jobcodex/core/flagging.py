from __future__ import annotations

import logging
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from jobcodex.core.field_paths import format_path, has_value
from jobcodex.errors import ConfigurationError
from jobcodex.types import Codex, Flag, MissingFieldRule, StructuredRecord

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.8


def missing_field_flags(
    data: dict[str, Any],
    rules: list[MissingFieldRule],
    existing: set[str] | None = None,
) -> list[Flag]:
    seen = set(existing or ())
    flags: list[Flag] = []
    for rule in rules:
        if rule.path in seen or has_value(data, rule.path):
            continue
        flags.append(Flag(path=rule.path, severity=rule.severity, message=rule.message))
        seen.add(rule.path)
    return flags


def low_confidence_message(value: float) -> str:
    return f"low confidence ({round(value * 100)}%) - please verify"


def schema_flags(data: dict[str, Any], schema: dict[str, Any]) -> list[Flag]:
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ConfigurationError(f"output schema is invalid: {exc.message}") from exc

    flags: list[Flag] = []
    validator = Draft202012Validator(schema)
    for error in sorted(validator.iter_errors(data), key=lambda item: list(item.absolute_path)):
        location = list(error.absolute_path)
        if error.validator == "required":
            missing = error.message.split("'")[1] if "'" in error.message else ""
            path = format_path([*location, missing]) if missing else format_path(location)
            message = "required by schema"
        else:
            path = format_path(location) or "$"
            message = f"schema: {error.message}"
        flags.append(Flag(path=path, severity="warn", message=message))
    return flags


def flag_record(
    record: StructuredRecord,
    codex: Codex,
    *,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> StructuredRecord:
    for flag in missing_field_flags(record.data, codex.missing_rules, record.flagged_paths()):
        record.add_flag(flag.path, flag.severity, flag.message)

    for path, value in record.confidence.items():
        if value < threshold:
            record.add_flag(path, "warn", low_confidence_message(value))

    for flag in schema_flags(record.data, codex.output_schema):
        record.add_flag(flag.path, flag.severity, flag.message)

    logger.debug("Record carries %s flag(s) after flagging", len(record.missing_fields))
    return record
