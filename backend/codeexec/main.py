import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from codeexec.core.config import Settings, get_settings
from codeexec.core.errors import (
    InvalidRequest,
    JobNotFound,
    JobNotReady,
    RequestTooLarge,
    UnsupportedLanguage,
)
from codeexec.core.logging import setup_logging
from codeexec.api.routers import jobs as r_jobs
from codeexec.services.orchestrator import Orchestrator
from codeexec.worker.sweeper import sweep_forever

logger = logging.getLogger(__name__)

_ERROR_STATUS = {
    UnsupportedLanguage: 400,
    InvalidRequest: 400,
    RequestTooLarge: 413,
    JobNotFound: 404,
    JobNotReady: 409,
}


def create_app(
    settings: Settings | None = None, orchestrator: Orchestrator | None = None
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        orc = orchestrator or Orchestrator.from_settings(settings)
        app.state.orchestrator = orc
        logger.info(
            "remote judge %s", "enabled" if orc.judge.enabled else "disabled (local only)"
        )
        sweeper = asyncio.create_task(
            sweep_forever(
                orc.materializer, settings.SWEEP_INTERVAL_S, settings.ARTIFACT_MAX_AGE_S
            )
        )
        try:
            yield
        finally:
            sweeper.cancel()
            await asyncio.wait({sweeper})
            await orc.aclose()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"]
    )
    app.include_router(r_jobs.router, prefix=settings.API_PREFIX)

    for exc_type, code in _ERROR_STATUS.items():

        async def handler(request: Request, exc: Exception, code=code):
            return JSONResponse(status_code=code, content={"detail": str(exc)})

        app.add_exception_handler(exc_type, handler)

    @app.get(f"{settings.API_PREFIX}/health")
    async def health():
        return {"ok": True}

    return app


def build_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    return create_app(settings)
