from __future__ import annotations

import logging
from dataclasses import dataclass, field

from jobcodex.core.field_paths import has_value, references
from jobcodex.types import Evidence, StructuredRecord

logger = logging.getLogger(__name__)

NO_EVIDENCE_MESSAGE = "no source evidence found"


@dataclass(slots=True, frozen=True)
class EvidenceMismatch:
    evidence: Evidence
    reason: str


@dataclass(slots=True)
class EvidenceReport:
    kept: list[Evidence] = field(default_factory=list)
    dropped: list[EvidenceMismatch] = field(default_factory=list)
    flagged_paths: list[str] = field(default_factory=list)


def quote_in_source(quote: str, source_text: str) -> bool:
    if not quote or not quote.strip():
        return False
    return quote.lower() in source_text.lower()


def validate_evidence(
    record: StructuredRecord,
    source_text: str,
    critical_fields: list[str],
) -> EvidenceReport:
    """Drop citations that cannot be found verbatim in the source, then flag bare critical fields.

    Mutates ``record`` in place.
    """
    report = EvidenceReport()
    haystack = source_text.lower()

    for item in record.evidence:
        if not item.quote.strip():
            report.dropped.append(EvidenceMismatch(evidence=item, reason="empty quote"))
        elif item.quote.lower() in haystack:
            report.kept.append(item)
        else:
            report.dropped.append(EvidenceMismatch(evidence=item, reason="quote not found in source"))

    record.evidence = report.kept
    if report.dropped:
        logger.info("Dropped %s unverifiable evidence quote(s)", len(report.dropped))

    for path in critical_fields:
        if not has_value(record.data, path):
            continue
        if any(references(item.field, path) for item in record.evidence):
            continue
        if record.add_flag(path, "warn", NO_EVIDENCE_MESSAGE):
            report.flagged_paths.append(path)

    return report
