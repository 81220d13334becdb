from __future__ import annotations

import pytest

from jobcodex.core.codex_defaults import JOB_CARD_V2_SCHEMA, job_card_v2_1
from jobcodex.core.evidence import NO_EVIDENCE_MESSAGE, quote_in_source, validate_evidence
from jobcodex.core.field_paths import has_value
from jobcodex.core.flagging import flag_record, low_confidence_message, missing_field_flags, schema_flags
from jobcodex.errors import ConfigurationError
from jobcodex.types import Evidence, StructuredRecord

SOURCE = "Senior Frontend Engineer\n5+ years of React experience required\nStrong communication skills"
CRITICAL = ["requirements.experience_required", "requirements.technical_skills", "requirements.soft_skills"]


def test_quote_in_source_is_case_insensitive_and_rejects_blank_quotes() -> None:
    assert quote_in_source("5+ YEARS of react", SOURCE)
    assert not quote_in_source("10 years of Python", SOURCE)
    assert not quote_in_source("   ", SOURCE)


def test_validate_evidence_keeps_only_quotes_present_in_source() -> None:
    record = StructuredRecord(
        data={"requirements": {"experience_required": "5+ years of React experience"}},
        evidence=[
            Evidence(field="requirements.experience_required", quote="5+ years of React experience required"),
            Evidence(field="requirements.technical_skills", quote="10 years of Python"),
            Evidence(field="requirements.soft_skills", quote=" "),
        ],
    )

    report = validate_evidence(record, SOURCE, CRITICAL)

    assert [item.quote for item in record.evidence] == ["5+ years of React experience required"]
    assert all(item.quote.lower() in SOURCE.lower() for item in record.evidence)
    assert {mismatch.reason for mismatch in report.dropped} == {"quote not found in source", "empty quote"}
    assert report.flagged_paths == []


def test_dropped_evidence_flags_critical_field_that_still_has_content() -> None:
    record = StructuredRecord(
        data={"requirements": {"technical_skills": ["Python"]}},
        evidence=[Evidence(field="requirements.technical_skills", quote="10 years of Python")],
    )

    report = validate_evidence(record, SOURCE, CRITICAL)

    assert record.evidence == []
    assert report.flagged_paths == ["requirements.technical_skills"]
    flag = record.missing_fields[0]
    assert flag.path == "requirements.technical_skills"
    assert flag.severity == "warn"
    assert flag.message == NO_EVIDENCE_MESSAGE


def test_leaf_name_evidence_counts_for_critical_field() -> None:
    record = StructuredRecord(
        data={"requirements": {"soft_skills": ["communication"]}},
        evidence=[Evidence(field="soft_skills", quote="Strong communication skills")],
    )

    validate_evidence(record, SOURCE, CRITICAL)

    assert record.missing_fields == []


def test_missing_field_flags_cover_exactly_the_empty_paths() -> None:
    codex = job_card_v2_1()
    data = {"basics": {"title": "Engineer", "company": "  "}, "requirements": {"technical_skills": []}}

    flags = missing_field_flags(data, codex.missing_rules)

    flagged = {flag.path for flag in flags}
    for rule in codex.missing_rules:
        assert (rule.path in flagged) == (not has_value(data, rule.path))


def test_missing_field_flags_skip_paths_already_flagged() -> None:
    codex = job_card_v2_1()
    flags = missing_field_flags({}, codex.missing_rules, existing={"basics.title"})
    assert "basics.title" not in {flag.path for flag in flags}


def test_low_confidence_message_format() -> None:
    assert low_confidence_message(0.62) == "low confidence (62%) - please verify"


def test_schema_flags_report_required_and_type_errors() -> None:
    flags = schema_flags({"basics": {"title": 5}}, JOB_CARD_V2_SCHEMA)

    by_path = {flag.path: flag.message for flag in flags}
    assert by_path["basics.company"] == "required by schema"
    assert by_path["basics.work_mode"] == "required by schema"
    assert by_path["basics.title"].startswith("schema: ")


def test_schema_flags_reject_invalid_schema() -> None:
    with pytest.raises(ConfigurationError):
        schema_flags({}, {"type": "object", "properties": {"a": {"type": "nope"}}})


def test_flag_record_keeps_paths_unique() -> None:
    codex = job_card_v2_1()
    record = StructuredRecord(
        data={"basics": {"company": "Acme", "location": "Remote", "work_mode": "remote"}},
        confidence={"basics.title": 0.5, "basics.company": 0.4, "basics.location": 0.95},
    )
    record.add_flag("basics.company", "warn", "already flagged")

    flag_record(record, codex, threshold=0.8)

    paths = [flag.path for flag in record.missing_fields]
    assert len(paths) == len(set(paths))
    flags = {flag.path: flag for flag in record.missing_fields}
    assert flags["basics.title"].severity == "error"
    assert flags["basics.company"].message == "already flagged"
    assert "basics.location" not in flags
    assert flags["contact.email"].message == "Contact email is missing"


def test_flag_record_adds_low_confidence_flags() -> None:
    codex = job_card_v2_1()
    record = StructuredRecord(
        data={
            "basics": {"title": "Engineer", "company": "Acme", "location": "Remote", "work_mode": "remote"},
            "requirements": {"experience_required": "3 years"},
        },
        confidence={"requirements.experience_required": 0.62},
    )

    flag_record(record, codex)

    flags = {flag.path: flag for flag in record.missing_fields}
    assert flags["requirements.experience_required"].message == "low confidence (62%) - please verify"
    assert flags["requirements.experience_required"].severity == "warn"
