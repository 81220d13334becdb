from __future__ import annotations

import pytest

from jobcodex.core.codex_defaults import TECH_SKILL_ALIASES, default_codexes
from jobcodex.core.matching import candidate_skills, job_skills, match, match_candidate, overlap_score, skill_aliases
from jobcodex.types import StructuredRecord

JOB = {
    "basics": {"title": "Platform Engineer"},
    "requirements": {"technical_skills": ["Python", "AWS"], "nice_to_have": ["Docker", "Kubernetes"]},
}


def resume(*skills: str) -> dict:
    return {"personal_info": {"name": "Ada"}, "technical_skills": [{"skill": skill} for skill in skills]}


def test_missing_a_must_have_scores_zero() -> None:
    result = match_candidate(JOB, resume("Python", "Docker", "Kubernetes"), "ada")

    assert result.overlap_score == 0
    assert result.must_have_matches == 1
    assert result.must_have_required == 2
    assert {(skill.canonical_name, skill.severity) for skill in result.missing_skills} == {("AWS", "critical")}


def test_must_haves_weigh_seventy_and_nice_to_haves_thirty() -> None:
    assert match_candidate(JOB, resume("Python", "AWS"), "a").overlap_score == 70
    assert match_candidate(JOB, resume("python", "aws", "docker"), "b").overlap_score == 85
    assert match_candidate(JOB, resume("Python", "AWS", "Docker", "Kubernetes"), "c").overlap_score == 100


def test_empty_tiers_count_as_covered() -> None:
    nice_only = {"requirements": {"nice_to_have": ["Docker", "Kubernetes"]}}
    must_only = {"requirements": {"must_have": ["Go"]}}

    assert match_candidate(nice_only, resume("Docker"), "a").overlap_score == 85
    assert match_candidate(must_only, resume("Go"), "b").overlap_score == 100


@pytest.mark.parametrize(
    ("args", "expected"),
    [
        ((2, 2, 3, 4), 93),
        ((2, 2, 1, 4), 78),
        ((0, 0, 0, 0), 100),
        ((1, 3, 4, 4), 0),
    ],
)
def test_overlap_score_rounds_half_up(args: tuple[int, int, int, int], expected: int) -> None:
    assert overlap_score(*args) == expected


def test_missing_skills_carry_severity_by_tier() -> None:
    result = match_candidate(JOB, resume("Python", "AWS"), "ada")

    assert [(skill.canonical_name, skill.priority, skill.severity) for skill in result.missing_skills] == [
        ("Docker", "nice_to_have", "preferred"),
        ("Kubernetes", "nice_to_have", "preferred"),
    ]
    assert [skill.priority for skill in result.matched_skills] == ["must_have", "must_have"]


def test_aliases_canonicalize_both_sides() -> None:
    job = {"requirements": {"technical_skills": ["reactjs", "nodejs"]}}
    candidate = {"skills": {"core": ["React.js", "Node"]}}

    without = match_candidate(job, candidate, "ada")
    with_aliases = match_candidate(job, candidate, "ada", aliases=TECH_SKILL_ALIASES)

    assert without.overlap_score == 0
    assert with_aliases.overlap_score == 100
    assert [(skill.canonical_name, skill.raw_label) for skill in with_aliases.matched_skills] == [
        ("React", "reactjs"),
        ("Node.js", "nodejs"),
    ]


def test_skill_listed_in_both_tiers_counts_as_must_have() -> None:
    must_have, nice_to_have = job_skills({"requirements": {"must_have": ["SQL"], "nice_to_have": ["sql", "dbt"]}})

    assert [skill.canonical_name for skill in must_have] == ["SQL"]
    assert [skill.canonical_name for skill in nice_to_have] == ["dbt"]


def test_candidate_skills_read_strings_objects_and_grouped_lists() -> None:
    skills = candidate_skills(
        {
            "technical_skills": [{"skill": "Python"}, "Rust", {"level": "expert"}],
            "soft_skills": ["Mentoring"],
            "skills": {"core": ["python", "Terraform"]},
        }
    )

    assert [skill.canonical_name for skill in skills] == ["Python", "Rust", "Mentoring", "Terraform"]


def test_match_ranks_and_filters_candidates() -> None:
    resumes = {
        "partial": resume("Python", "AWS", "Docker"),
        "gated": resume("Python", "Docker"),
        "empty": {"personal_info": {"name": "Nobody"}},
        "full": StructuredRecord(data=resume("Python", "AWS", "Docker", "Kubernetes")),
    }

    ranked = match(StructuredRecord(data=JOB), resumes)
    everyone = match(JOB, resumes, min_score=0)

    assert [(item.candidate_id, item.overlap_score) for item in ranked] == [("full", 100), ("partial", 85)]
    assert [item.candidate_id for item in everyone] == ["full", "partial", "gated"]


def test_job_without_skills_matches_nobody() -> None:
    assert match({"basics": {"title": "Mystery role"}}, {"ada": resume("Python")}) == []


def test_skill_aliases_come_from_skill_rules_only() -> None:
    aliases = skill_aliases(default_codexes())

    assert aliases["reactjs"] == "React"
    assert aliases["azure"] == "Microsoft Azure"
    assert "remote" not in aliases
