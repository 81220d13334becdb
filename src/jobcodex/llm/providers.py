from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any

from openai import NotFoundError, OpenAI

from jobcodex.config import Settings
from jobcodex.errors import GatewayError
from jobcodex.types import LLMProvider, ModelResponse

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class ProviderConfig:
    name: str
    base_url: str
    api_key: str
    timeout_sec: int
    enabled: bool = True


def endpoint_missing(exc: Exception) -> bool:
    return isinstance(exc, NotFoundError) or getattr(exc, "status_code", None) == 404


class CompletionProvider:
    """One OpenAI-compatible endpoint.

    Calls go to the Responses API first. Servers without it (most local
    runtimes) answer 404 once; after that the provider talks chat.completions only.
    """

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.client = OpenAI(
            base_url=config.base_url,
            api_key=config.api_key,
            timeout=float(config.timeout_sec),
            max_retries=0,
        )
        self.responses_supported: bool | None = None

    def generate(self, *, model: str, system_prompt: str, prompt: str) -> ModelResponse:
        if self.responses_supported is not False:
            try:
                result = self._via_responses(model, system_prompt, prompt)
            except Exception as exc:
                if not endpoint_missing(exc):
                    raise
                logger.warning(
                    "Provider %s has no Responses API at %s; using chat.completions",
                    self.config.name,
                    self.config.base_url,
                )
                self.responses_supported = False
            else:
                self.responses_supported = True
                return result
        return self._via_chat(model, system_prompt, prompt)

    def generate_json(self, *, model: str, system_prompt: str, prompt: str) -> dict[str, Any]:
        result = self.generate(model=model, system_prompt=system_prompt, prompt=prompt)
        return parse_json(result.content, provider=self.config.name)

    def _via_responses(self, model: str, system_prompt: str, prompt: str) -> ModelResponse:
        response = self.client.responses.create(
            model=model,
            instructions=system_prompt,
            input=[{"role": "user", "content": [{"type": "input_text", "text": prompt}]}],
        )
        return ModelResponse(content=getattr(response, "output_text", "") or "", raw=_dump(response, "responses"))

    def _via_chat(self, model: str, system_prompt: str, prompt: str) -> ModelResponse:
        response = self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
        )
        choices = getattr(response, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None)
        return ModelResponse(
            content=content if isinstance(content, str) else "",
            raw=_dump(response, "chat_completions"),
        )


def _dump(response: Any, api_path: str) -> dict[str, Any]:
    raw = response.model_dump() if hasattr(response, "model_dump") else {}
    if not isinstance(raw, dict):
        raw = {"raw": raw}
    return {**raw, "api_path": api_path}


def _unparseable(exc: json.JSONDecodeError, provider: str | None) -> GatewayError:
    logger.warning("Unparseable model output provider=%s", provider)
    return GatewayError(f"model output is not valid JSON: {exc.msg}", kind="malformed_output", provider=provider)


def parse_json(content: str, *, provider: str | None = None) -> dict[str, Any]:
    """Read one JSON object from model output: bare, fenced, or wrapped in prose."""
    candidate = content.strip()
    if not candidate:
        raise GatewayError("model returned an empty response", kind="malformed_output", provider=provider)

    fenced = _FENCED_BLOCK.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    start, end = candidate.find("{"), candidate.rfind("}")
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as exc:
        if start < 0 or end <= start:
            raise _unparseable(exc, provider) from exc
        try:
            value = json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as inner:
            raise _unparseable(inner, provider) from inner

    if not isinstance(value, dict):
        raise GatewayError("model output is not a JSON object", kind="malformed_output", provider=provider)
    return value


class ProviderPool:
    """Lazily built providers, shared by every worker thread."""

    def __init__(self, settings: Settings):
        self.configs: dict[str, ProviderConfig] = {
            "openai": ProviderConfig(
                name="openai",
                base_url=settings.openai_base_url,
                api_key=settings.openai_api_key,
                timeout_sec=settings.openai_timeout_sec,
                enabled=bool(settings.openai_api_key),
            ),
            "local": ProviderConfig(
                name="local",
                base_url=settings.local_llm_base_url,
                api_key=settings.local_llm_api_key,
                timeout_sec=settings.local_llm_timeout_sec,
                enabled=settings.local_llm_enabled,
            ),
        }
        self._providers: dict[str, CompletionProvider] = {}
        self._lock = threading.Lock()

    def is_available(self, name: LLMProvider | str) -> bool:
        config = self.configs.get(name)
        return config is not None and config.enabled

    def get(self, name: LLMProvider | str) -> CompletionProvider:
        config = self.configs.get(name)
        if config is None:
            raise GatewayError(f"unknown provider '{name}'", kind="unavailable", provider=name)
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                provider = CompletionProvider(config)
                self._providers[name] = provider
            return provider
