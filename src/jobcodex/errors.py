from __future__ import annotations

from typing import Any, Literal

GatewayErrorKind = Literal["timeout", "malformed_output", "transport", "unavailable"]


class PipelineError(Exception):
    """Base class for every error raised by the extraction pipeline."""


class ConfigurationError(PipelineError):
    """A codex is missing, malformed, or otherwise unusable."""


class CodexNotFoundError(ConfigurationError):
    def __init__(self, codex_id: str):
        super().__init__(f"codex '{codex_id}' not found")
        self.codex_id = codex_id


class CodexConflictError(ConfigurationError):
    def __init__(self, codex_id: str, referenced_by: int):
        super().__init__(
            f"codex '{codex_id}' is referenced by {referenced_by} unit(s); publish the change under a new id"
        )
        self.codex_id = codex_id
        self.referenced_by = referenced_by


class GatewayError(PipelineError):
    def __init__(self, message: str, *, kind: GatewayErrorKind = "transport", provider: str | None = None):
        super().__init__(message)
        self.kind = kind
        self.provider = provider


class NormalizationFailure(PipelineError, ValueError):
    def __init__(self, raw_value: Any, rule_kind: str, reason: str = "unparseable"):
        super().__init__(f"{rule_kind}: {reason} ({raw_value!r})")
        self.raw_value = raw_value
        self.rule_kind = rule_kind


class ImmutableFactViolation(PipelineError):
    def __init__(self, violations: list[str]):
        super().__init__("; ".join(violations))
        self.violations = violations


class DocumentReadError(PipelineError):
    pass


class InvalidTransition(PipelineError, ValueError):
    def __init__(self, current: str, target: str):
        super().__init__(f"cannot move unit from '{current}' to '{target}'")
        self.current = current
        self.target = target


class NotFoundError(PipelineError, LookupError):
    pass
