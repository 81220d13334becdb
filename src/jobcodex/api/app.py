from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jobcodex.api.routes import router as api_router
from jobcodex.config import get_settings
from jobcodex.core.runtime import PipelineRuntime
from jobcodex.logging_config import configure_logging


def create_app(runtime: PipelineRuntime | None = None) -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = runtime is None
        app.state.runtime = runtime or PipelineRuntime(settings)
        app.state.runtime.start()
        try:
            yield
        finally:
            if owned:
                app.state.runtime.shutdown(wait=False)

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    app.include_router(api_router)
    return app
