from __future__ import annotations

GATEWAY_ENVELOPE = """
Return strict JSON only, no prose, matching this shape:
{response_shape}

Input JSON:
{payload}
""".strip()

RAW_EXTRACTION_SYSTEM = """
You list every requirement-like statement in a document verbatim.
Do not classify, merge, summarize or paraphrase. Copy each statement exactly as written.
""".strip()

RAW_EXTRACTION_INSTRUCTIONS = """
Extract every requirement, qualification, responsibility or fact statement from `text`.
For each one return:
- text: the statement, verbatim
- source_quote: the exact sentence or fragment of `text` it appears in
""".strip()

CLASSIFICATION_SYSTEM = """
You classify extracted statements into fixed categories.
Every item must cite a verbatim quote from the original text and a confidence from 0 to 1.
Never add items that are not supported by the text.
""".strip()

CLASSIFICATION_INSTRUCTIONS = """
Assign each item in `raw_items` to exactly one of `categories` (drop items that fit none).
For each classified item return:
- category: one of `categories`
- text: the item, cleaned up but not reworded
- source_quote: verbatim quote from `text` supporting it
- confidence: number 0..1
""".strip()

SYNTHESIS_INSTRUCTIONS = """
Produce one record conforming to `schema` using `text` and `classification`.
Also return:
- evidence: array of {field, quote} where field is the record path and quote is verbatim from `text`
- confidence: object mapping record paths to numbers 0..1
Omit fields the text does not support.
""".strip()

ALIGN_INSTRUCTIONS = """
Map each requirement of `job` to evidence in `resume`.
Return:
- matrix: array of {jd_item, resume_evidence, resume_ref, confidence, notes}
  resume_evidence must be quoted verbatim from the resume; resume_ref is the resume path
- coverage_score: number 0..1 for the whole job
""".strip()

REWRITE_INSTRUCTIONS = """
Rewrite `resume` for `job` using `coverage`, in `language` and `style`.
Return tailored_resume with meta, summary, skills, experience, education, certifications.
experience keeps one entry per source role in the same order; employer, title, start_date
and end_date are copied unchanged. Use at most `max_bullets` description bullets per role.
""".strip()

FINALIZE_INSTRUCTIONS = """
Review `tailored_resume` against `job_keywords` and `coverage`.
Return:
- warnings: array of {severity, message, path}
- format_warnings: array of strings describing ATS formatting risks
""".strip()

COVER_LETTER_INSTRUCTIONS = """
Write a cover letter (under 300 words) in `language` for the role in `job`
using only facts from `tailored_resume`.
Return: {cover_letter: string}
""".strip()

RATIONALE_INSTRUCTIONS = """
For each section that changed between `resume` and `tailored_resume`, explain briefly why the
change improves fit for `job`.
Return: {rationales: array of {path, rationale}}
""".strip()
