from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from PriceForecast.api.schemas import AnalyzeRequest, PredictRequest
from PriceForecast.errors import CancelledError, CheckpointNotFoundError
from PriceForecast.fingerprint import make_fingerprint
from PriceForecast.jobs.controller import JobHandle, JobStatus
from PriceForecast.models.base_trainer import ModelConfig

router = APIRouter(prefix="/api")
ws_router = APIRouter()

EMPTY_STOCK_DATA = "Stock data is empty or invalid."


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


async def _wait_for(handle: JobHandle, request: Request):
    """Wait for ``handle`` off the event loop; a cancelled job raises ``CancelledError``."""
    result = await run_in_threadpool(handle.result)
    job = request.app.state.controller.status(handle.fingerprint)
    if job is not None and job.status is JobStatus.CANCELLED:
        raise CancelledError(job.last_message or "Training was canceled")
    return result


@router.get("/status")
def server_status() -> Dict[str, str]:
    return {"status": "Server is running"}


@router.post("/analyze")
async def analyze(payload: AnalyzeRequest, request: Request):
    if payload.stockData is None or not payload.stockData.timeSeries:
        return _bad_request(EMPTY_STOCK_DATA)
    stock = payload.stockData.to_domain()
    config = payload.to_config().validate()
    fingerprint = make_fingerprint(stock.symbol, config)

    controller = request.app.state.controller
    handle = controller.start(
        fingerprint,
        config,
        stock,
        force_train=payload.forceTrain,
        predict_past_days=payload.predictPastDays,
    )
    result = await _wait_for(handle, request)
    return {"modelId": fingerprint, **result.to_dict()}


@router.get("/models")
def list_models(request: Request) -> Dict[str, Any]:
    return {"models": request.app.state.store.list()}


@router.delete("/models/{model_id}")
def delete_model(model_id: str, request: Request) -> Dict[str, Any]:
    request.app.state.store.delete(model_id)
    return {"deleted": model_id}


@router.post("/models/{model_id}/predict")
async def predict_model(model_id: str, payload: PredictRequest, request: Request):
    if payload.stockData is None or not payload.stockData.timeSeries:
        return _bad_request(EMPTY_STOCK_DATA)
    store = request.app.state.store
    if not store.exists(model_id):
        raise CheckpointNotFoundError(f"Model {model_id} not found.")
    handle = request.app.state.controller.start(
        model_id,
        ModelConfig(),
        payload.stockData.to_domain(),
        prediction_only=True,
        days_to_predict=payload.daysToPredict,
        predict_past_days=payload.predictPastDays,
    )
    result = await _wait_for(handle, request)
    return {"modelId": model_id, **result.to_dict()}


@router.get("/jobs")
def list_jobs(request: Request) -> Dict[str, Any]:
    controller = request.app.state.controller
    return {
        "active": controller.list_active(),
        "jobs": [job.to_dict() for job in controller.jobs()],
    }


@router.get("/jobs/{model_id}")
def job_status(model_id: str, request: Request):
    job = request.app.state.controller.status(model_id)
    if job is None:
        return JSONResponse(status_code=404, content={"error": f"No job for model {model_id}"})
    return job.to_dict()


@router.post("/jobs/{model_id}/cancel")
def cancel_job(model_id: str, request: Request) -> Dict[str, bool]:
    return {"cancelled": request.app.state.controller.cancel(model_id)}


@ws_router.websocket("/ws")
async def progress_socket(websocket: WebSocket):
    hub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(websocket)


__all__ = ["router", "ws_router"]
