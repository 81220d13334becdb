from __future__ import annotations

import difflib
import re
from typing import Any

from jobcodex.core.field_paths import resolve
from jobcodex.errors import ImmutableFactViolation
from jobcodex.types import AtsReport, CoverageMatrixEntry, TailorDiff, TailorWarning

STYLE_MAX_BULLETS = {"conservative": 5, "modern": 6, "impact": 7}
IMMUTABLE_FIELDS = ("employer", "title", "start_date", "end_date")
KEYWORD_PATHS = (
    "basics.title",
    "requirements.technical_skills",
    "requirements.soft_skills",
    "requirements.must_have",
    "requirements.nice_to_have",
    "preferred_skills",
    "competencies.*",
)
REPHRASE_RATIO = 0.6
MAX_BULLET_CHARS = 300
_BULLET_PREFIX = re.compile(r"^\s*(?:[-*•▪◦]|\d+[.)])\s*")


def flatten_text(value: Any) -> str:
    parts: list[str] = []

    def walk(item: Any) -> None:
        if isinstance(item, dict):
            for child in item.values():
                walk(child)
        elif isinstance(item, (list, tuple)):
            for child in item:
                walk(child)
        elif isinstance(item, str):
            if item.strip():
                parts.append(item)
        elif item is not None and not isinstance(item, bool):
            parts.append(str(item))

    walk(value)
    return "\n".join(parts)


def contains_term(text: str, term: str) -> bool:
    pattern = rf"(?<![a-z0-9]){re.escape(term.lower())}(?![a-z0-9])"
    return re.search(pattern, text.lower()) is not None


def extract_job_keywords(job: dict[str, Any]) -> list[str]:
    keywords: list[str] = []
    seen: set[str] = set()

    def add(value: Any) -> None:
        if isinstance(value, list):
            for item in value:
                add(item)
        elif isinstance(value, str) and value.strip():
            key = value.strip().lower()
            if key not in seen:
                seen.add(key)
                keywords.append(value.strip())

    for path in KEYWORD_PATHS:
        value = resolve(job, path)
        if value:
            add(value)
    return keywords


def _bullets(value: Any) -> list[str]:
    if isinstance(value, str):
        lines = value.splitlines()
    elif isinstance(value, list):
        lines = [item for item in value if isinstance(item, str)]
    else:
        return []
    cleaned = [_BULLET_PREFIX.sub("", line).strip() for line in lines]
    return [line for line in cleaned if line]


def source_experience(resume: dict[str, Any]) -> list[dict[str, Any]]:
    """Roles of a parsed resume in tailored-resume vocabulary (``company`` becomes ``employer``)."""
    roles = resume.get("experience")
    if not isinstance(roles, list):
        roles = resume.get("work_experience")
    if not isinstance(roles, list):
        return []

    normalized: list[dict[str, Any]] = []
    for role in roles:
        if not isinstance(role, dict):
            continue
        normalized.append(
            {
                "employer": role.get("employer") or role.get("company"),
                "title": role.get("title"),
                "start_date": role.get("start_date"),
                "end_date": role.get("end_date"),
                "bullets": _bullets(role.get("description")) + _bullets(role.get("achievements")),
            }
        )
    return normalized


def _fact(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def check_immutable_facts(source_resume: dict[str, Any], tailored_resume: dict[str, Any]) -> None:
    source = source_experience(source_resume)
    tailored = tailored_resume.get("experience", [])
    if not isinstance(tailored, list):
        raise ImmutableFactViolation(["experience must be a list of roles"])

    violations: list[str] = []
    if len(tailored) != len(source):
        violations.append(f"experience has {len(tailored)} role(s) but the source resume has {len(source)}")

    for index, (original, rewritten) in enumerate(zip(source, tailored)):
        if not isinstance(rewritten, dict):
            violations.append(f"experience[{index}] is not an object")
            continue
        for field in IMMUTABLE_FIELDS:
            expected, actual = _fact(original.get(field)), _fact(rewritten.get(field))
            if expected != actual:
                violations.append(f"experience[{index}].{field} changed from {expected!r} to {actual!r}")

    if violations:
        raise ImmutableFactViolation(violations)


def _summary(resume: dict[str, Any]) -> str:
    for key in ("summary", "professional_summary"):
        value = resume.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def compute_diff(source_resume: dict[str, Any], tailored_resume: dict[str, Any]) -> TailorDiff:
    before = [bullet for role in source_experience(source_resume) for bullet in role["bullets"]]
    after = [bullet for role in source_experience(tailored_resume) for bullet in role["bullets"]]
    if _summary(source_resume):
        before.insert(0, _summary(source_resume))
    if _summary(tailored_resume):
        after.insert(0, _summary(tailored_resume))

    before_keys = [item.lower() for item in before]
    after_keys = [item.lower() for item in after]
    common = set(before_keys) & set(after_keys)

    diff = TailorDiff()
    kept_before = [key for key in before_keys if key in common]
    kept_after = [key for key in after_keys if key in common]
    matcher = difflib.SequenceMatcher(a=kept_before, b=kept_after, autojunk=False)
    in_place = {kept_after[block.b + offset] for block in matcher.get_matching_blocks() for offset in range(block.size)}
    for item, key in zip(after, after_keys):
        if key in common and key not in in_place and item not in diff.reordered:
            diff.reordered.append(item)

    removed_pool = [item for item, key in zip(before, before_keys) if key not in common]
    for item, key in zip(after, after_keys):
        if key in common:
            continue
        best = max(
            removed_pool,
            key=lambda candidate: difflib.SequenceMatcher(a=candidate.lower(), b=key).ratio(),
            default=None,
        )
        if best is not None and difflib.SequenceMatcher(a=best.lower(), b=key).ratio() >= REPHRASE_RATIO:
            diff.rephrased.append(item)
            removed_pool.remove(best)
        else:
            diff.added.append(item)
    diff.removed.extend(removed_pool)
    return diff


def coverage_warnings(coverage: list[CoverageMatrixEntry], threshold: float) -> list[TailorWarning]:
    warnings: list[TailorWarning] = []
    for index, entry in enumerate(coverage):
        if entry.confidence < threshold:
            warnings.append(
                TailorWarning(
                    severity="warn",
                    message=f"Low coverage confidence ({round(entry.confidence * 100)}%) for '{entry.jd_item}'",
                    path=f"coverage.matrix[{index}]",
                )
            )
    return warnings


def bullet_cap_warnings(tailored_resume: dict[str, Any], style: str) -> list[TailorWarning]:
    cap = STYLE_MAX_BULLETS[style]
    warnings: list[TailorWarning] = []
    for index, role in enumerate(tailored_resume.get("experience") or []):
        if not isinstance(role, dict):
            continue
        count = len(_bullets(role.get("description")))
        if count > cap:
            warnings.append(
                TailorWarning(
                    severity="info",
                    message=f"{count} bullets exceed the {style} style limit of {cap}",
                    path=f"experience[{index}].description",
                )
            )
    return warnings


def build_ats_report(tailored_resume: dict[str, Any], keywords: list[str]) -> AtsReport:
    text = flatten_text(tailored_resume)
    report = AtsReport()
    for keyword in keywords:
        if contains_term(text, keyword):
            report.keyword_coverage.append(keyword)
        else:
            report.missing_keywords.append(keyword)

    for index, role in enumerate(tailored_resume.get("experience") or []):
        if not isinstance(role, dict):
            continue
        bullets = _bullets(role.get("description"))
        if not bullets:
            report.format_warnings.append(f"experience[{index}] has no description bullets")
        if any(len(bullet) > MAX_BULLET_CHARS for bullet in bullets):
            report.format_warnings.append(f"experience[{index}] has a bullet longer than {MAX_BULLET_CHARS} characters")
    return report
