from __future__ import annotations

from typing import Any

import pytest

from jobcodex.core.runtime import PipelineRuntime
from jobcodex.types import TailorOptions

JOB_POSTING = """
Senior Frontend Engineer - Globex
Copenhagen, hybrid work
5+ years of React experience required
Strong TypeScript skills
Contact: talent@globex.example
""".strip()

RESUME_TEXT = """
Kim Larsen
Frontend Engineer
kim@example.com
Frontend engineer building React applications.
Acme, Frontend Engineer, 2020-01 to 2023-06
Built React dashboards for the finance team
Skills: reactjs, TypeScript
""".strip()


def raw_extraction(payload: dict[str, Any]) -> dict[str, Any]:
    lines = [line for line in payload["text"].splitlines() if line.strip()]
    return {"items": [{"text": line, "source_quote": line} for line in lines]}


def classification(payload: dict[str, Any]) -> dict[str, Any]:
    if "work_experience" in payload["categories"]:
        return {
            "items": [
                {
                    "category": "work_experience",
                    "text": "Frontend Engineer at Acme",
                    "source_quote": "Acme, Frontend Engineer, 2020-01 to 2023-06",
                    "confidence": 0.95,
                },
                {
                    "category": "technical_skills",
                    "text": "React, TypeScript",
                    "source_quote": "Skills: reactjs, TypeScript",
                    "confidence": 0.9,
                },
            ]
        }
    return {
        "items": [
            {
                "category": "experience_required",
                "text": "5+ years of React",
                "source_quote": "5+ years of React experience required",
                "confidence": 0.95,
            },
            {
                "category": "technical_skills",
                "text": "TypeScript",
                "source_quote": "Strong TypeScript skills",
                "confidence": 0.6,
            },
        ]
    }


def synthesis(payload: dict[str, Any]) -> dict[str, Any]:
    if payload["schema"]["title"] == "ResumeCard":
        return {
            "personal_info": {"name": "Kim Larsen", "title": "Frontend Engineer", "email": "kim@example.com"},
            "professional_summary": "Frontend engineer building React applications.",
            "work_experience": [
                {
                    "company": "Acme",
                    "title": "Frontend Engineer",
                    "start_date": "2020-01",
                    "end_date": "2023-06",
                    "description": "Built React dashboards for the finance team",
                }
            ],
            "technical_skills": [{"skill": "reactjs"}, {"skill": "TypeScript"}],
            "evidence": [
                {"field": "personal_info.name", "quote": "Kim Larsen"},
                {"field": "personal_info.email", "quote": "kim@example.com"},
            ],
        }
    return {
        "basics": {
            "title": "Senior Frontend Engineer",
            "company": "Globex",
            "location": "Copenhagen",
            "work_mode": "hybrid work",
        },
        "requirements": {
            "experience_required": "5+ years of React",
            "technical_skills": ["reactjs", "TypeScript"],
        },
        "contact": {"email": "talent@globex.example"},
    }


TAILORED = {
    "summary": "Frontend engineer building React and TypeScript applications.",
    "skills": {"core": ["React", "TypeScript"]},
    "experience": [
        {
            "employer": "Acme",
            "title": "Frontend Engineer",
            "start_date": "2020-01",
            "end_date": "2023-06",
            "description": ["Built React dashboards for the finance team"],
        }
    ],
    "education": [],
}


def test_extract_job_and_resume_then_tailor(runtime: PipelineRuntime, gateway) -> None:
    gateway.script_extraction(raw=raw_extraction, classification=classification, synthesis=synthesis)
    gateway.on(
        "align",
        {
            "matrix": [
                {"jd_item": "React", "resume_evidence": "Built React dashboards", "confidence": 0.9},
                {"jd_item": "TypeScript", "resume_evidence": "TypeScript", "confidence": 0.7},
            ]
        },
    )
    gateway.on("rewrite", {"tailored_resume": TAILORED})
    gateway.on("finalize", {"warnings": []})
    gateway.on("cover_letter", {"cover_letter": "Dear Globex, I build React dashboards in TypeScript."})

    job = runtime.submit_unit(JOB_POSTING, "job-card-v2.1")
    resume = runtime.submit_unit(RESUME_TEXT, "resume-card-v1")
    job_unit = runtime.wait_for_unit(job.unit_id, timeout=10)
    resume_unit = runtime.wait_for_unit(resume.unit_id, timeout=10)

    assert job_unit["status"] == "completed"
    assert resume_unit["status"] == "completed"

    job_record = job_unit["structured_record"]
    assert job_record["data"]["basics"]["work_mode"] == "hybrid"
    assert job_record["data"]["requirements"]["technical_skills"] == ["React", "TypeScript"]
    job_flags = {flag["path"]: flag for flag in job_record["missing_fields"]}
    assert job_flags["requirements.technical_skills"]["message"] == "low confidence (60%) - please verify"
    assert "requirements.experience_required" not in job_flags

    resume_record = resume_unit["structured_record"]
    assert [item["skill"] for item in resume_record["data"]["technical_skills"]] == ["React", "TypeScript"]
    assert {item["field"] for item in resume_record["evidence"]} >= {"work_experience", "personal_info.name"}
    assert "personal_info.email" not in {flag["path"] for flag in resume_record["missing_fields"]}

    result = runtime.tailor_units(
        resume.unit_id,
        job.unit_id,
        TailorOptions(style="impact", include_cover_letter=True),
    )

    assert result.ok is True, result.errors
    bundle = result.bundle
    assert [entry.jd_item for entry in bundle.coverage] == ["React", "TypeScript"]
    assert bundle.coverage_score == pytest.approx(0.8)
    assert [warning.path for warning in bundle.warnings if warning.severity == "warn"] == ["coverage.matrix[1]"]
    assert bundle.tailored_resume["meta"]["style"] == "impact"
    assert bundle.cover_letter.startswith("Dear Globex")
    assert bundle.ats_report.keyword_coverage == ["React", "TypeScript"]
    assert bundle.ats_report.missing_keywords == ["Senior Frontend Engineer"]
    assert bundle.diff.rephrased == [TAILORED["summary"]]

    matches = runtime.match_units(job.unit_id)
    assert [item.candidate_id for item in matches] == [resume.unit_id]
    assert matches[0].overlap_score == 100
    assert [skill.canonical_name for skill in matches[0].matched_skills] == ["React", "TypeScript"]
    assert matches[0].missing_skills == []
    with pytest.raises(ValueError, match="resume codex"):
        runtime.match_units(job.unit_id, [job.unit_id])
