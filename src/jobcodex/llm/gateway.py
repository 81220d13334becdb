from __future__ import annotations

import json
import logging
from typing import Any

from openai import APITimeoutError

from jobcodex.config import Settings, get_settings
from jobcodex.errors import GatewayError
from jobcodex.llm.prompts import GATEWAY_ENVELOPE
from jobcodex.llm.providers import ProviderPool

logger = logging.getLogger(__name__)

EXTRACT_TASKS = frozenset({"raw_extraction", "classification", "synthesis"})
WRITER_TASKS = frozenset({"align", "rewrite", "finalize", "cover_letter", "rationale"})


class CompletionGateway:
    """Single entry point for model completions: system prompt + JSON payload in, JSON object out.

    Each task is routed to one provider. Failures surface as ``GatewayError``
    and are never retried or rerouted.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.pool = ProviderPool(self.settings)

    def complete(
        self,
        system_prompt: str,
        user_payload: dict[str, Any],
        response_shape: dict[str, Any],
        *,
        task: str,
    ) -> dict[str, Any]:
        name, model = self._route(task)
        if not self.pool.is_available(name):
            raise GatewayError(f"provider '{name}' is not configured", kind="unavailable", provider=name)
        provider = self.pool.get(name)

        prompt = GATEWAY_ENVELOPE.format(
            response_shape=json.dumps(response_shape, ensure_ascii=False),
            payload=json.dumps(user_payload, ensure_ascii=False, default=str),
        )
        try:
            return provider.generate_json(model=model, system_prompt=system_prompt, prompt=prompt)
        except GatewayError:
            raise
        except APITimeoutError as exc:
            logger.warning("LLM call timed out task=%s provider=%s", task, name)
            raise GatewayError(
                f"{task} call timed out after {provider.config.timeout_sec}s", kind="timeout", provider=name
            ) from exc
        except Exception as exc:
            logger.warning("LLM call failed task=%s provider=%s error=%s", task, name, exc)
            raise GatewayError(f"{task} call failed: {exc}", kind="transport", provider=name) from exc

    def _route(self, task: str) -> tuple[str, str]:
        if task in EXTRACT_TASKS:
            provider_name = self.settings.llm_router_extract_provider
            openai_model = self.settings.openai_model_extractor
        elif task in WRITER_TASKS:
            provider_name = self.settings.llm_router_writer_provider
            openai_model = self.settings.openai_model_writer
        else:
            provider_name = self.settings.llm_router_default
            openai_model = self.settings.openai_model_extractor

        if provider_name == "local":
            return "local", self.settings.local_llm_model
        return provider_name, openai_model
