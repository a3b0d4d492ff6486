"""FastAPI application exposing the forecasting pipeline.

Run with ``python -m PriceForecast.api.app`` or
``uvicorn PriceForecast.api.app:app``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from PriceForecast.api.hub import ProgressHub
from PriceForecast.api.routes import router, ws_router
from PriceForecast.checkpoint.store import CheckpointStore
from PriceForecast.config.default import API_HOST, API_PORT
from PriceForecast.errors import (
    AlreadyRunningError,
    CancelledError,
    CheckpointNotFoundError,
    PipelineError,
)
from PriceForecast.jobs.controller import JobController

logger = logging.getLogger(__name__)


def error_response(exc: PipelineError) -> JSONResponse:
    """Map a pipeline error onto an HTTP status code and JSON body."""
    content: Dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, CancelledError):
        return JSONResponse(status_code=409, content={**content, "status": exc.status})
    if isinstance(exc, AlreadyRunningError):
        return JSONResponse(status_code=409, content={**content, "status": "training", "modelId": exc.fingerprint})
    if isinstance(exc, CheckpointNotFoundError):
        return JSONResponse(status_code=404, content=content)
    if isinstance(exc, ValueError):
        return JSONResponse(status_code=400, content=content)
    logger.error("Request failed: %s", exc)
    return JSONResponse(status_code=500, content={**content, "status": exc.status})


async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return error_response(exc)


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while serving %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc), "status": "error"})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {details}"})


def create_app(
    models_dir: Optional[str] = None,
    max_workers: Optional[int] = None,
    device: Optional[str] = None,
    runner: Optional[Callable[..., Any]] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        store = CheckpointStore(models_dir)
        controller = JobController(store=store, runner=runner, max_workers=max_workers, device=device)
        hub = ProgressHub()
        await hub.start()
        unsubscribe = controller.subscribe(hub.publish)
        app.state.store = store
        app.state.controller = controller
        app.state.hub = hub
        logger.info("Serving models from %s", store.root)
        try:
            yield
        finally:
            unsubscribe()
            controller.shutdown(wait=False, cancel_running=True)
            await hub.stop()

    app = FastAPI(title="PriceForecast API", version="0.1.0", lifespan=lifespan)
    app.include_router(router)
    app.include_router(ws_router)
    app.add_exception_handler(PipelineError, _pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)
    return app


app = create_app()


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
