"""Deterministic skill matching between a parsed job and parsed resumes.

A candidate must hold every must-have skill of the job; missing one scores 0.
Otherwise must-have coverage is worth 70 points and nice-to-have coverage 30,
and a tier the job leaves empty counts as fully covered.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from jobcodex.core.field_paths import iter_matches
from jobcodex.core.normalization import lookup_alias
from jobcodex.core.tailoring import record_data
from jobcodex.errors import NormalizationFailure
from jobcodex.types import CandidateMatch, Codex, MatchedSkill, MissingSkill, SkillPriority, StructuredRecord

logger = logging.getLogger(__name__)

MUST_HAVE_WEIGHT = 70
NICE_TO_HAVE_WEIGHT = 30
MIN_OVERLAP_SCORE = 10

JOB_MUST_HAVE_PATHS = ("requirements.must_have", "requirements.technical_skills")
JOB_NICE_TO_HAVE_PATHS = ("requirements.nice_to_have", "preferred_skills")
CANDIDATE_SKILL_PATHS = (
    "technical_skills",
    "soft_skills",
    "skills",
    "skills.*",
)


@dataclass(slots=True, frozen=True)
class Skill:
    canonical_name: str
    raw_label: str

    @property
    def key(self) -> str:
        return self.canonical_name.casefold()


def canonical_skill(label: str, aliases: Mapping[str, str] | None = None) -> str:
    label = " ".join(label.split())
    if not aliases:
        return label
    try:
        return lookup_alias(label, dict(aliases))
    except NormalizationFailure:
        return label


def skill_aliases(codexes: Iterable[Codex]) -> dict[str, str]:
    """Merge the ALIAS_MAP tables that codexes apply to skill fields."""
    merged: dict[str, str] = {}
    for codex in codexes:
        for rule in codex.normalization_rules:
            if rule.rule_kind == "ALIAS_MAP" and "skill" in rule.target_path:
                merged.update(rule.aliases)
    return merged


def _labels(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, dict):
        skill = value.get("skill") or value.get("name")
        return [skill] if isinstance(skill, str) and skill.strip() else []
    if isinstance(value, list):
        return [label for item in value if not isinstance(item, list) for label in _labels(item)]
    return []


def _collect(data: dict[str, Any], paths: Iterable[str], aliases: Mapping[str, str] | None) -> list[Skill]:
    skills: dict[str, Skill] = {}
    for path in paths:
        for _, value in iter_matches(data, path):
            for label in _labels(value):
                skill = Skill(canonical_skill(label, aliases), label.strip())
                skills.setdefault(skill.key, skill)
    return list(skills.values())


def job_skills(
    job: dict[str, Any],
    aliases: Mapping[str, str] | None = None,
) -> tuple[list[Skill], list[Skill]]:
    must_have = _collect(job, JOB_MUST_HAVE_PATHS, aliases)
    required = {skill.key for skill in must_have}
    nice_to_have = [skill for skill in _collect(job, JOB_NICE_TO_HAVE_PATHS, aliases) if skill.key not in required]
    return must_have, nice_to_have


def candidate_skills(resume: dict[str, Any], aliases: Mapping[str, str] | None = None) -> list[Skill]:
    return _collect(resume, CANDIDATE_SKILL_PATHS, aliases)


def overlap_score(must_have_matches: int, must_have_required: int, nice_matches: int, nice_total: int) -> int:
    if must_have_required and must_have_matches < must_have_required:
        return 0
    score = MUST_HAVE_WEIGHT * (must_have_matches / must_have_required if must_have_required else 1)
    score += NICE_TO_HAVE_WEIGHT * (nice_matches / nice_total if nice_total else 1)
    # half-up, so 92.5 scores 93
    return math.floor(score + 0.5)


def match_candidate(
    job_record: StructuredRecord | dict[str, Any],
    resume_record: StructuredRecord | dict[str, Any],
    candidate_id: str,
    *,
    aliases: Mapping[str, str] | None = None,
) -> CandidateMatch:
    must_have, nice_to_have = job_skills(record_data(job_record), aliases)
    held = candidate_skills(record_data(resume_record), aliases)
    held_keys = {skill.key for skill in held}

    matched: list[MatchedSkill] = []
    missing: list[MissingSkill] = []
    tiers: tuple[tuple[SkillPriority, list[Skill]], ...] = (("must_have", must_have), ("nice_to_have", nice_to_have))
    for priority, skills in tiers:
        for skill in skills:
            if skill.key in held_keys:
                matched.append(
                    MatchedSkill(canonical_name=skill.canonical_name, raw_label=skill.raw_label, priority=priority)
                )
            else:
                missing.append(
                    MissingSkill(
                        canonical_name=skill.canonical_name,
                        priority=priority,
                        severity="critical" if priority == "must_have" else "preferred",
                    )
                )

    must_matches = sum(1 for skill in matched if skill.priority == "must_have")
    nice_matches = len(matched) - must_matches
    return CandidateMatch(
        candidate_id=candidate_id,
        overlap_score=overlap_score(must_matches, len(must_have), nice_matches, len(nice_to_have)),
        matched_skills=matched,
        missing_skills=missing,
        total_job_skills=len(must_have) + len(nice_to_have),
        total_candidate_skills=len(held),
        must_have_matches=must_matches,
        must_have_required=len(must_have),
        nice_to_have_matches=nice_matches,
        nice_to_have_total=len(nice_to_have),
    )


def match(
    job_record: StructuredRecord | dict[str, Any],
    resume_records: Mapping[str, StructuredRecord | dict[str, Any]],
    *,
    aliases: Mapping[str, str] | None = None,
    min_score: int = MIN_OVERLAP_SCORE,
) -> list[CandidateMatch]:
    """Rank resumes against a job, best first.

    Resumes without skills and candidates scoring below ``min_score`` are left out.
    Ties keep the order of ``resume_records``.
    """
    must_have, nice_to_have = job_skills(record_data(job_record), aliases)
    if not must_have and not nice_to_have:
        logger.info("Job lists no skills; nothing to match")
        return []

    matches: list[CandidateMatch] = []
    for candidate_id, record in resume_records.items():
        result = match_candidate(job_record, record, candidate_id, aliases=aliases)
        if not result.total_candidate_skills or result.overlap_score < min_score:
            continue
        matches.append(result)

    matches.sort(key=lambda item: item.overlap_score, reverse=True)
    logger.info(
        "Matched job against %s resume(s): must_have=%s nice_to_have=%s kept=%s",
        len(resume_records),
        len(must_have),
        len(nice_to_have),
        len(matches),
    )
    return matches
