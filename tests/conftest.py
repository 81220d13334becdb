from __future__ import annotations

import copy
import os
import tempfile
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

_TEST_DIR = Path(tempfile.mkdtemp(prefix="jobcodex-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR / 'test.db'}"
os.environ["DATA_DIR"] = str(_TEST_DIR)
os.environ["APP_ENV"] = "test"
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402

from jobcodex.config import get_settings  # noqa: E402
from jobcodex.core.codex_registry import CodexRegistry  # noqa: E402
from jobcodex.core.runtime import PipelineRuntime  # noqa: E402
from jobcodex.db.base import Base  # noqa: E402
from jobcodex.db.session import SessionLocal, engine  # noqa: E402
from jobcodex.errors import GatewayError  # noqa: E402

Handler = dict[str, Any] | Exception | Callable[[dict[str, Any]], dict[str, Any]]


class ScriptedGateway:
    """Stands in for CompletionGateway; answers each task from a script.

    Any pass whose ``text`` payload contains ``FAIL`` raises a transport error.
    """

    def __init__(self, *, delay: float = 0.0):
        self.delay = delay
        self.handlers: dict[str, Handler] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def on(self, task: str, handler: Handler) -> "ScriptedGateway":
        self.handlers[task] = handler
        return self

    def script_extraction(
        self,
        *,
        raw: dict[str, Any],
        classification: dict[str, Any],
        synthesis: Handler,
    ) -> "ScriptedGateway":
        return self.on("raw_extraction", raw).on("classification", classification).on("synthesis", synthesis)

    def tasks(self) -> list[str]:
        with self._lock:
            return [task for task, _ in self.calls]

    def complete(
        self,
        system_prompt: str,
        user_payload: dict[str, Any],
        response_shape: dict[str, Any],
        *,
        task: str,
    ) -> dict[str, Any]:
        with self._lock:
            self.calls.append((task, copy.deepcopy(user_payload)))
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            text = user_payload.get("text")
            if isinstance(text, str) and "FAIL" in text:
                raise GatewayError("scripted transport failure", kind="transport", provider="scripted")

            handler = self.handlers.get(task)
            if handler is None:
                raise GatewayError(f"no scripted response for {task}", kind="unavailable", provider="scripted")
            if isinstance(handler, Exception):
                raise handler
            result = handler(user_payload) if callable(handler) else handler
            return copy.deepcopy(result)
        finally:
            with self._lock:
                self.in_flight -= 1


@pytest.fixture(autouse=True)
def reset_db() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def slow_gateway() -> ScriptedGateway:
    return ScriptedGateway(delay=0.05)


@pytest.fixture
def registry() -> CodexRegistry:
    registry = CodexRegistry(SessionLocal)
    registry.initialize()
    return registry


@pytest.fixture
def runtime(gateway: ScriptedGateway) -> PipelineRuntime:
    runtime = PipelineRuntime(get_settings(), gateway=gateway)
    runtime.start()
    yield runtime
    runtime.shutdown()
