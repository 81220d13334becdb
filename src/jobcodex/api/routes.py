from __future__ import annotations

import csv
import io
import json

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import Response

from jobcodex.api.deps import get_runtime, get_ws_runtime
from jobcodex.api.schemas import (
    BatchCreateRequest,
    BatchResponse,
    ExportFormat,
    MatchRequest,
    MatchResponse,
    TailorRequest,
    UnitCreateRequest,
    UnitEventResponse,
    UnitFromUrlRequest,
    UnitResponse,
)
from jobcodex.core.lifecycle import TERMINAL_STATES
from jobcodex.core.runtime import PipelineRuntime
from jobcodex.errors import CodexConflictError, CodexNotFoundError, ConfigurationError, NotFoundError
from jobcodex.types import Codex, TailorResult

router = APIRouter(prefix="/api", tags=["api"])

EXPORT_COLUMNS = ["id", "status", "codex_id", "processing_error", "completed_at", "structured_record"]


@router.get("/codexes", response_model=list[Codex])
def list_codexes(runtime: PipelineRuntime = Depends(get_runtime)) -> list[Codex]:
    return runtime.list_codexes()


@router.get("/codexes/{codex_id}", response_model=Codex)
def get_codex(codex_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> Codex:
    try:
        return runtime.get_codex(codex_id)
    except CodexNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.put("/codexes/{codex_id}", response_model=Codex)
def put_codex(codex_id: str, payload: Codex, runtime: PipelineRuntime = Depends(get_runtime)) -> Codex:
    if payload.id != codex_id:
        raise HTTPException(status_code=400, detail="Codex id in the body does not match the URL")
    try:
        return runtime.put_codex(payload)
    except CodexConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/units", response_model=UnitResponse, status_code=202)
def create_unit(payload: UnitCreateRequest, runtime: PipelineRuntime = Depends(get_runtime)) -> UnitResponse:
    try:
        handle = runtime.submit_unit(payload.source_text, payload.codex_id, payload.source_kind)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UnitResponse.model_validate(runtime.get_unit(handle.unit_id))


@router.post("/units/from-url", response_model=UnitResponse, status_code=202)
def create_unit_from_url(payload: UnitFromUrlRequest, runtime: PipelineRuntime = Depends(get_runtime)) -> UnitResponse:
    try:
        handle = runtime.submit_url(payload.url, payload.codex_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UnitResponse.model_validate(runtime.get_unit(handle.unit_id))


@router.get("/units", response_model=list[UnitResponse])
def list_units(
    status: str | None = None,
    codex_id: str | None = None,
    batch_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    runtime: PipelineRuntime = Depends(get_runtime),
) -> list[UnitResponse]:
    rows = runtime.list_units(status=status, codex_id=codex_id, batch_id=batch_id, limit=limit, offset=offset)
    return [UnitResponse.model_validate(row) for row in rows]


@router.get("/units/{unit_id}", response_model=UnitResponse)
def get_unit(unit_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> UnitResponse:
    try:
        return UnitResponse.model_validate(runtime.get_unit(unit_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.delete("/units/{unit_id}", status_code=204)
def delete_unit(unit_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> Response:
    try:
        runtime.delete_unit(unit_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return Response(status_code=204)


@router.get("/units/{unit_id}/events", response_model=list[UnitEventResponse])
def get_unit_events(unit_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> list[UnitEventResponse]:
    try:
        rows = runtime.list_unit_events(unit_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [UnitEventResponse.model_validate(row) for row in rows]


@router.post("/units/{unit_id}/resubmit", response_model=UnitResponse, status_code=202)
def resubmit_unit(unit_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> UnitResponse:
    try:
        handle = runtime.resubmit_unit(unit_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UnitResponse.model_validate(runtime.get_unit(handle.unit_id))


@router.websocket("/units/{unit_id}/stream")
async def stream_unit_events(websocket: WebSocket, unit_id: str) -> None:
    await websocket.accept()
    runtime = get_ws_runtime(websocket)
    if runtime is None:
        await websocket.close(code=1011)
        return

    try:
        history = runtime.list_unit_events(unit_id)
    except NotFoundError:
        await websocket.close(code=1008)
        return

    try:
        for event in history:
            await websocket.send_json(event)
        if runtime.get_unit(unit_id)["status"] in TERMINAL_STATES:
            await websocket.close()
            return

        seen = {event["id"] for event in history}
        async for event in runtime.event_bus.subscribe(unit_id):
            if event["id"] in seen:
                continue
            await websocket.send_json(event)
            if event["step"] == "status" and event["details"].get("status") in TERMINAL_STATES:
                await websocket.close()
                return
    except WebSocketDisconnect:
        return


@router.post("/batches", response_model=BatchResponse, status_code=202)
def create_batch(payload: BatchCreateRequest, runtime: PipelineRuntime = Depends(get_runtime)) -> BatchResponse:
    try:
        handle = runtime.submit_batch(payload.texts, payload.codex_id, payload.concurrency)
    except (ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return BatchResponse.model_validate(runtime.get_batch(handle.batch_id))


@router.get("/batches/{batch_id}", response_model=BatchResponse)
def get_batch(batch_id: str, runtime: PipelineRuntime = Depends(get_runtime)) -> BatchResponse:
    try:
        return BatchResponse.model_validate(runtime.get_batch(batch_id))
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/batches/{batch_id}/export")
def export_batch(
    batch_id: str,
    format: ExportFormat = "json",
    runtime: PipelineRuntime = Depends(get_runtime),
) -> Response:
    try:
        batch = runtime.get_batch(batch_id)
        units = runtime.list_batch_units(batch_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    if format == "json":
        body = json.dumps({"batch": batch, "units": units}, ensure_ascii=False, indent=2)
        return Response(content=body, media_type="application/json")

    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for unit in units:
        row = dict(unit)
        row["structured_record"] = json.dumps(unit["structured_record"], ensure_ascii=False) if unit["structured_record"] else ""
        writer.writerow(row)
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="batch-{batch_id}.csv"'},
    )


@router.post("/tailor", response_model=TailorResult)
def tailor(payload: TailorRequest, runtime: PipelineRuntime = Depends(get_runtime)) -> TailorResult:
    try:
        if payload.resume_record is not None and payload.job_record is not None:
            return runtime.tailor(payload.resume_record, payload.job_record, payload.options)
        if payload.resume_unit_id and payload.job_unit_id:
            return runtime.tailor_units(payload.resume_unit_id, payload.job_unit_id, payload.options)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail="Provide resume_record and job_record, or resume_unit_id and job_unit_id")


@router.post("/match", response_model=MatchResponse)
def match_candidates(payload: MatchRequest, runtime: PipelineRuntime = Depends(get_runtime)) -> MatchResponse:
    try:
        if payload.job_record is not None and payload.resume_records is not None:
            matches = runtime.match(payload.job_record, payload.resume_records, min_score=payload.min_score)
        elif payload.job_unit_id:
            matches = runtime.match_units(payload.job_unit_id, payload.resume_unit_ids, min_score=payload.min_score)
        else:
            raise HTTPException(status_code=400, detail="Provide job_record and resume_records, or job_unit_id")
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ConfigurationError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return MatchResponse(matches=matches, total_matches=len(matches))
