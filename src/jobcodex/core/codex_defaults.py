from __future__ import annotations

from typing import Any

from jobcodex.types import Codex


def _string_list() -> dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}}


WORK_MODE_ALIASES = {
    "remote": "remote",
    "remote work": "remote",
    "work from home": "remote",
    "working remotely": "remote",
    "onsite": "onsite",
    "on-site": "onsite",
    "on site": "onsite",
    "office": "onsite",
    "in-office": "onsite",
    "hybrid": "hybrid",
    "hybrid work": "hybrid",
    "flexible": "hybrid",
}

TECH_SKILL_ALIASES = {
    "jira": "JIRA",
    "reactjs": "React",
    "react.js": "React",
    "nodejs": "Node.js",
    "node": "Node.js",
    "typescript": "TypeScript",
    "javascript": "JavaScript",
    "dotnet": ".NET",
    "csharp": "C#",
}

RESUME_SKILL_ALIASES = {
    **TECH_SKILL_ALIASES,
    "python": "Python",
    "java": "Java",
    "aws": "AWS",
    "azure": "Microsoft Azure",
    "gcp": "Google Cloud Platform",
}

COMPETENCY_GROUPS = ("frontend", "backend", "cloud_architecture", "database", "agile")

JOB_CARD_V1_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "JobCard",
    "type": "object",
    "properties": {
        "basics": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "seniority": {"type": "string"},
                "company": {"type": "string"},
                "location": {"type": "string"},
                "work_mode": {"type": "string"},
            },
        },
        "overview": {"type": "string"},
        "requirements": {
            "type": "object",
            "properties": {
                "years_experience": {"type": "string"},
                "must_have": _string_list(),
                "nice_to_have": _string_list(),
            },
        },
        "competencies": {
            "type": "object",
            "properties": {name: _string_list() for name in COMPETENCY_GROUPS},
        },
        "contact": {
            "type": "object",
            "properties": {"name": {"type": "string"}, "email": {"type": "string"}},
        },
        "project_details": {
            "type": "object",
            "properties": {"rate_band": {"type": "string"}},
        },
    },
}

JOB_CARD_V2_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "JobCard",
    "type": "object",
    "required": ["basics"],
    "properties": {
        "basics": {
            "type": "object",
            "required": ["title", "company", "location", "work_mode"],
            "properties": {
                "title": {"type": "string"},
                "seniority": {"type": "string"},
                "company": {"type": "string"},
                "location": {"type": "string"},
                "work_mode": {"type": "string", "enum": ["remote", "onsite", "hybrid"]},
            },
        },
        "overview": {"type": "string"},
        "requirements": {
            "type": "object",
            "properties": {
                "experience_required": {"type": "string"},
                "technical_skills": _string_list(),
                "soft_skills": _string_list(),
                "nice_to_have": _string_list(),
            },
        },
        "competencies": {
            "type": "object",
            "properties": {name: _string_list() for name in COMPETENCY_GROUPS},
        },
        "preferred_skills": _string_list(),
        "work_culture": {"type": "string"},
        "procurement": {
            "type": "object",
            "properties": {
                "contract_type": {"type": "string"},
                "nda_required": {"type": "boolean"},
                "security_clearance": {"type": "string"},
                "vat_registration": {"type": "string"},
            },
        },
        "contact": {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "role": {"type": "string"},
                "email": {"type": "string", "format": "email"},
                "phone": {"type": "string"},
            },
        },
        "project_details": {
            "type": "object",
            "properties": {
                "start_date": {"type": "string"},
                "duration": {"type": "string"},
                "workload": {"type": "string"},
                "work_setup": {"type": "string"},
                "rate_band": {"type": "string"},
                "start_date_iso": {"type": "string"},
                "duration_days": {"type": "integer"},
                "workload_hours_week": {"type": "integer"},
                "rate_min": {"type": "number"},
                "rate_max": {"type": "number"},
                "rate_currency": {"type": "string"},
                "rate_unit": {"type": "string", "enum": ["hour", "day", "week", "month", "year"]},
            },
        },
        "language_requirements": _string_list(),
        "decision_process": {"type": "string"},
        "stakeholders": _string_list(),
    },
}

RESUME_CARD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "ResumeCard",
    "type": "object",
    "required": ["personal_info"],
    "properties": {
        "personal_info": {
            "type": "object",
            "required": ["name", "title"],
            "properties": {
                "name": {"type": "string"},
                "title": {"type": "string"},
                "email": {"type": "string", "format": "email"},
                "phone": {"type": "string"},
                "location": {"type": "string"},
                "website": {"type": "string"},
                "linkedin": {"type": "string"},
                "github": {"type": "string"},
                "years_experience": {"type": "integer"},
            },
        },
        "professional_summary": {"type": "string"},
        "availability": {
            "type": "object",
            "properties": {
                "status": {"type": "string"},
                "commitment": {"type": "string"},
                "timezone": {"type": "string"},
            },
        },
        "certifications": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "issuer": {"type": "string"},
                    "date": {"type": "string"},
                },
            },
        },
        "languages": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {"language": {"type": "string"}, "proficiency": {"type": "string"}},
            },
        },
        "work_experience": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "company": {"type": "string"},
                    "location": {"type": "string"},
                    "start_date": {"type": "string"},
                    "end_date": {"type": "string"},
                    "current": {"type": "boolean"},
                    "description": {"type": "string"},
                    "achievements": _string_list(),
                },
            },
        },
        "education": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "degree": {"type": "string"},
                    "institution": {"type": "string"},
                    "location": {"type": "string"},
                    "graduation_date": {"type": "string"},
                },
            },
        },
        "portfolio": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "url": {"type": "string"},
                    "technologies": _string_list(),
                },
            },
        },
        "technical_skills": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "skill": {"type": "string"},
                    "proficiency": {"type": "integer", "minimum": 0, "maximum": 100},
                },
            },
        },
        "soft_skills": _string_list(),
        "rate": {
            "type": "object",
            "properties": {
                "amount": {"type": "number"},
                "currency": {"type": "string"},
                "unit": {"type": "string", "enum": ["hour", "day", "week", "month", "year"]},
            },
        },
    },
}

TAILORED_RESUME_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["meta", "summary", "skills", "experience", "education"],
    "properties": {
        "meta": {
            "type": "object",
            "required": ["language", "style"],
            "properties": {
                "language": {"type": "string", "enum": ["en", "da"]},
                "style": {"type": "string", "enum": ["conservative", "modern", "impact"]},
                "target_title": {"type": "string"},
                "target_company": {"type": "string"},
            },
        },
        "summary": {"type": "string"},
        "skills": {
            "type": "object",
            "properties": {
                "core": _string_list(),
                "tools": _string_list(),
                "methodologies": _string_list(),
                "languages": _string_list(),
            },
        },
        "experience": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["employer", "title", "start_date", "description"],
                "properties": {
                    "employer": {"type": "string"},
                    "title": {"type": "string"},
                    "location": {"type": "string"},
                    "start_date": {"type": "string"},
                    "end_date": {"type": "string"},
                    "is_current": {"type": "boolean"},
                    "description": _string_list(),
                    "evidence_links": _string_list(),
                },
            },
        },
        "education": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["institution", "degree"],
                "properties": {
                    "institution": {"type": "string"},
                    "degree": {"type": "string"},
                    "year": {"type": "string"},
                    "details": {"type": "string"},
                },
            },
        },
        "certifications": _string_list(),
        "extras": _string_list(),
    },
}

TAILOR_BUNDLE_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "TailoredResumeBundle",
    "type": "object",
    "required": ["tailored_resume", "coverage"],
    "properties": {
        "tailored_resume": TAILORED_RESUME_SCHEMA,
        "coverage": {
            "type": "object",
            "required": ["matrix", "coverage_score"],
            "properties": {
                "matrix": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "required": ["jd_item", "resume_evidence", "confidence"],
                        "properties": {
                            "jd_item": {"type": "string"},
                            "resume_evidence": {"type": "string"},
                            "resume_ref": {"type": "string"},
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "notes": {"type": "string"},
                        },
                    },
                },
                "coverage_score": {"type": "number", "minimum": 0, "maximum": 1},
            },
        },
    },
}

JOB_SYSTEM_PROMPT = (
    "You extract job descriptions into the supplied JSON schema. Use only what the text states; "
    "never invent or assume values. Leave unknown fields out."
)

JOB_V2_SYSTEM_PROMPT = """
You turn a job description into a structured job card.

Rules:
1. Never invent or assume information.
2. Every classified requirement must cite the source text it came from.
3. Keep experience requirements separate from skills.
4. Combine experience statements into one coherent description.
5. Report a confidence score per field when unsure.
""".strip()

JOB_V2_USER_PROMPT = """
Build the job card from the source text, the schema, and the classified requirements.
Separate experience requirements (years, seniority, background), technical skills
(tools, technologies, methodologies) and soft skills (communication, leadership).
Embed the classification citations as `evidence` entries and per-field scores in `confidence`.
""".strip()

RESUME_SYSTEM_PROMPT = """
You turn a resume or CV into a structured candidate card.

Rules:
1. Never invent or assume information that is not in the resume.
2. Cite source text for extracted items.
3. List work experience most recent first.
4. Keep technical skills separate from soft skills.
5. Preserve job titles, company names and dates exactly as written.
""".strip()

RESUME_USER_PROMPT = """
Build the candidate card from the source text, the schema, and the classified items:
personal information, summary, work experience with achievements, education, technical and
soft skills, certifications, projects, languages and availability. Embed citations as
`evidence` entries and per-field scores in `confidence`.
""".strip()


def job_card_v1() -> Codex:
    return Codex(
        id="job-card-v1",
        version="1.0.0",
        name="Standard Job Card Extractor",
        description="Single-schema job card with alias-mapped work mode",
        record_kind="job",
        output_schema=JOB_CARD_V1_SCHEMA,
        prompts={
            "system": JOB_SYSTEM_PROMPT,
            "user": "Extract the job information into the schema. Include only clearly stated facts.",
        },
        categories={
            "must_have": "requirements.must_have",
            "nice_to_have": "requirements.nice_to_have",
            "years_experience": "requirements.years_experience",
        },
        critical_fields=[],
        normalization_rules=[
            {"target_path": "basics.work_mode", "rule_kind": "ALIAS_MAP", "aliases": WORK_MODE_ALIASES},
        ],
        missing_rules=[
            {"path": "basics.title", "severity": "error", "message": "Job title is missing"},
            {"path": "basics.company", "severity": "warn", "message": "Company name not specified"},
            {"path": "contact.email", "severity": "error", "message": "Contact email is missing"},
            {"path": "project_details.rate_band", "severity": "warn", "message": "Salary/rate information not provided"},
        ],
    )


def job_card_v2_1() -> Codex:
    return Codex(
        id="job-card-v2.1",
        version="2.1.0",
        name="Job Card Extractor with Evidence",
        description="Three-pass job extraction separating experience from skills, with evidence and normalized fields",
        record_kind="job",
        output_schema=JOB_CARD_V2_SCHEMA,
        prompts={"system": JOB_V2_SYSTEM_PROMPT, "user": JOB_V2_USER_PROMPT},
        categories={
            "experience_required": "requirements.experience_required",
            "technical_skills": "requirements.technical_skills",
            "soft_skills": "requirements.soft_skills",
            "nice_to_have": "requirements.nice_to_have",
        },
        critical_fields=[
            "requirements.experience_required",
            "requirements.technical_skills",
            "requirements.soft_skills",
        ],
        normalization_rules=[
            {"target_path": "basics.work_mode", "rule_kind": "ALIAS_MAP", "aliases": WORK_MODE_ALIASES},
            {"target_path": "requirements.technical_skills", "rule_kind": "ALIAS_MAP", "aliases": TECH_SKILL_ALIASES},
            {
                "target_path": "project_details.rate_band",
                "rule_kind": "CURRENCY_RANGE",
                "output_path": "project_details.rate",
            },
            {
                "target_path": "project_details.start_date",
                "rule_kind": "DATE_ISO",
                "output_path": "project_details.start_date_iso",
            },
            {
                "target_path": "project_details.workload",
                "rule_kind": "HOURS_PER_WEEK",
                "output_path": "project_details.workload_hours_week",
            },
            {
                "target_path": "project_details.duration",
                "rule_kind": "DURATION_DAYS",
                "output_path": "project_details.duration_days",
            },
        ],
        missing_rules=[
            {"path": "basics.title", "severity": "error", "message": "Job title is required"},
            {"path": "basics.company", "severity": "warn", "message": "Company name not specified"},
            {
                "path": "requirements.experience_required",
                "severity": "warn",
                "message": "Experience requirements not clearly stated",
            },
            {
                "path": "requirements.technical_skills",
                "severity": "info",
                "message": "No specific technical skills identified",
            },
            {"path": "contact.email", "severity": "error", "message": "Contact email is missing"},
            {"path": "project_details.rate_band", "severity": "warn", "message": "Salary/rate information not provided"},
            {"path": "project_details.start_date", "severity": "warn", "message": "Start date not provided"},
        ],
    )


def resume_card_v1() -> Codex:
    return Codex(
        id="resume-card-v1",
        version="1.0.0",
        name="Resume Card Extractor",
        description="Three-pass resume extraction with evidence tracking",
        record_kind="resume",
        output_schema=RESUME_CARD_SCHEMA,
        prompts={"system": RESUME_SYSTEM_PROMPT, "user": RESUME_USER_PROMPT},
        categories={
            "work_experience": "work_experience",
            "technical_skills": "technical_skills",
            "soft_skills": "soft_skills",
            "education": "education",
            "certifications": "certifications",
        },
        critical_fields=[
            "personal_info.name",
            "personal_info.email",
            "work_experience",
            "technical_skills",
        ],
        normalization_rules=[
            {"target_path": "technical_skills.*.skill", "rule_kind": "ALIAS_MAP", "aliases": RESUME_SKILL_ALIASES},
        ],
        missing_rules=[
            {"path": "personal_info.name", "severity": "error", "message": "Candidate name is required"},
            {"path": "personal_info.email", "severity": "warn", "message": "Contact email not found"},
            {"path": "personal_info.title", "severity": "warn", "message": "Professional title not specified"},
            {"path": "work_experience", "severity": "warn", "message": "No work experience found"},
            {"path": "education", "severity": "info", "message": "No education information found"},
            {"path": "technical_skills", "severity": "info", "message": "No specific technical skills identified"},
        ],
    )


def resume_tailor_v1() -> Codex:
    return Codex(
        id="resume-tailor-v1",
        version="1.0.0",
        name="Resume Tailor",
        description="Tailors a parsed resume to a job card with a coverage matrix, never changing facts",
        record_kind="tailor",
        output_schema=TAILOR_BUNDLE_SCHEMA,
        prompts={
            "aligner_system": (
                "You align a parsed resume with a job card and produce a coverage matrix. Never invent "
                "information. resume_evidence must be quoted verbatim from the resume."
            ),
            "tailor_system": (
                "You tailor the resume for the target role without changing facts. You may reorder, merge "
                "and reword bullets and the summary. Employers, titles and dates stay identical. Do not add "
                "numbers, employers or tools that are not in the resume."
            ),
            "finalizer_system": (
                "You review a tailored resume: list warnings (unsupported claims, missing keywords) and "
                "ATS formatting problems. Do not change facts."
            ),
            "cover_letter_system": (
                "You write a short cover letter for the target role using only facts from the tailored resume."
            ),
            "rationale_system": (
                "You explain, per changed resume section, why the change improves fit for the job."
            ),
        },
        missing_rules=[
            {"path": "tailored_resume.summary", "severity": "warn", "message": "Professional summary is missing"},
            {"path": "tailored_resume.skills", "severity": "warn", "message": "Skills section is empty"},
            {"path": "coverage.matrix", "severity": "error", "message": "Coverage matrix could not be generated"},
        ],
    )


def default_codexes() -> list[Codex]:
    return [job_card_v1(), job_card_v2_1(), resume_card_v1(), resume_tailor_v1()]
