from __future__ import annotations

from fastapi import HTTPException, Request, WebSocket

from jobcodex.core.runtime import PipelineRuntime


def get_runtime(request: Request) -> PipelineRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Pipeline runtime is not running")
    return runtime


def get_ws_runtime(websocket: WebSocket) -> PipelineRuntime | None:
    return getattr(websocket.app.state, "runtime", None)
