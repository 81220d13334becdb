from __future__ import annotations

import pytest

from jobcodex.core.codex_defaults import job_card_v2_1
from jobcodex.core.codex_registry import CodexRegistry
from jobcodex.db.repositories import Repository
from jobcodex.db.session import SessionLocal
from jobcodex.errors import CodexConflictError, CodexNotFoundError, ConfigurationError
from jobcodex.types import NormalizationRule


def test_initialize_seeds_builtin_codexes_once() -> None:
    registry = CodexRegistry(SessionLocal)

    first = registry.initialize()
    second = CodexRegistry(SessionLocal).initialize()

    assert first == {"codexes": 4, "seeded_codexes": 4}
    assert second == {"codexes": 4, "seeded_codexes": 0}
    assert [codex.id for codex in registry.list()] == [
        "job-card-v1",
        "job-card-v2.1",
        "resume-card-v1",
        "resume-tailor-v1",
    ]


def test_get_round_trips_codex_content(registry: CodexRegistry) -> None:
    assert registry.get("job-card-v2.1").same_content(job_card_v2_1())


def test_get_unknown_codex_raises(registry: CodexRegistry) -> None:
    with pytest.raises(CodexNotFoundError):
        registry.get("job-card-v9")


def test_put_creates_and_replaces_unreferenced_codex(registry: CodexRegistry) -> None:
    custom = job_card_v2_1().model_copy(update={"id": "job-card-custom", "name": "Custom"})
    registry.put(custom)

    updated = custom.model_copy(update={"name": "Custom v2"})
    registry.put(updated)

    assert CodexRegistry(SessionLocal).get("job-card-custom").name == "Custom v2"


def test_put_refuses_to_change_referenced_codex(registry: CodexRegistry) -> None:
    with SessionLocal() as db:
        Repository(db).create_unit(source_text="Engineer wanted", codex_id="job-card-v2.1")

    unchanged = registry.put(job_card_v2_1())
    assert unchanged.same_content(job_card_v2_1())

    with pytest.raises(CodexConflictError) as excinfo:
        registry.put(job_card_v2_1().model_copy(update={"version": "2.1.1"}))
    assert excinfo.value.referenced_by == 1
    assert registry.get("job-card-v2.1").version == "2.1.0"


def test_put_rejects_unparseable_rule_path(registry: CodexRegistry) -> None:
    broken = job_card_v2_1().model_copy(
        update={
            "id": "job-card-broken",
            "normalization_rules": [
                NormalizationRule.model_construct(target_path="a..b", rule_kind="DATE_ISO", aliases={}, output_path=None)
            ],
        }
    )

    with pytest.raises(ConfigurationError, match="malformed"):
        registry.put(broken)
    with pytest.raises(CodexNotFoundError):
        registry.get("job-card-broken")


def test_put_rejects_invalid_output_schema(registry: CodexRegistry) -> None:
    broken = job_card_v2_1().model_copy(
        update={"id": "job-card-bad-schema", "output_schema": {"type": "object", "properties": {"title": {"type": 5}}}}
    )

    with pytest.raises(ConfigurationError, match="output_schema"):
        registry.put(broken)
    assert "job-card-bad-schema" not in [codex.id for codex in registry.list()]


def test_put_rejects_malformed_critical_field(registry: CodexRegistry) -> None:
    broken = job_card_v2_1().model_copy(update={"id": "job-card-bad-field", "critical_fields": ["requirements[x"]})

    with pytest.raises(ConfigurationError):
        registry.put(broken)
