import asyncio
import json
import logging

from fastapi import APIRouter, Form, Request
from fastapi.responses import FileResponse, JSONResponse
from sse_starlette.sse import EventSourceResponse

from livetr.src.errors import (
    ExternalToolError, LivetrError, ResourceNotReadyError, ValidationError,
)

from ..config import options

logger = logging.getLogger(__name__)

router = APIRouter()

# Seconds between keep-alive checks for a disconnected SSE client
EVENT_POLL_SECONDS = 15.0

MEDIA_TYPES = {".mp4": "video/mp4", ".jpg": "image/jpeg"}


def _error_response(error: LivetrError) -> JSONResponse:
    if isinstance(error, ValidationError):
        status_code = 400
    elif isinstance(error, ResourceNotReadyError):
        status_code = 409
    elif isinstance(error, ExternalToolError):
        status_code = 502
    else:
        status_code = 500
    return JSONResponse({"error": str(error)}, status_code=status_code)


@router.post("/start")
async def live_start(
    request: Request,
    source: str = Form(""),
    model: str = Form(""),
    language: str = Form(""),
):
    settings = request.app.state.settings
    session = request.app.state.session

    try:
        await session.start(
            source,
            model=model or settings.whisper_model,
            language=language or settings.language,
        )
    except LivetrError as e:
        return _error_response(e)

    return {
        "status": "started",
        "source": session.source,
        "model": session.engine.model,
        "language": session.engine.language,
    }


@router.post("/stop")
async def live_stop(request: Request):
    session = request.app.state.session
    await session.stop()
    return {"status": "stopped"}


@router.post("/clips")
async def live_clip(
    request: Request,
    start_time: float = Form(...),
    end_time: float = Form(...),
    quality: str = Form(""),
):
    settings = request.app.state.settings
    session = request.app.state.session

    try:
        clip_id = session.create_clip(
            start_time, end_time, quality=quality or settings.clip_quality
        )
    except LivetrError as e:
        return _error_response(e)

    status = session.clip_statuses[clip_id]
    return JSONResponse({"clip_id": clip_id, "status": status.value}, status_code=202)


@router.get("/clips/{name}")
async def live_clip_file(request: Request, name: str):
    session = request.app.state.session
    path = session.workspace.resolve_clip_file(name)
    if path is None:
        return JSONResponse({"error": "File not found"}, status_code=404)
    return FileResponse(
        str(path),
        media_type=MEDIA_TYPES.get(path.suffix.lower(), "application/octet-stream"),
        filename=path.name,
    )


@router.get("/events")
async def live_events(request: Request):
    channel = request.app.state.session.channel
    queue = channel.subscribe()

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=EVENT_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
                yield {"event": event.type, "data": json.dumps(event.to_dict())}
        finally:
            channel.unsubscribe(queue)

    return EventSourceResponse(event_generator())


@router.get("/health")
async def live_health(request: Request):
    session = request.app.state.session
    report = session.monitor.check_health(track=False)
    data = report.to_dict()
    data["active"] = session.is_active
    return data


@router.get("/options")
async def live_options(request: Request):
    data = options()
    data["settings"] = request.app.state.settings.to_dict()
    return data
