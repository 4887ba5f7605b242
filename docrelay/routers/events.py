"""Live notification stream (Server-Sent Events)."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from docrelay.config import Settings
from docrelay.deps import get_service, get_settings
from docrelay.fanout import sse_stream
from docrelay.service import DocRelayService

router = APIRouter(tags=["events"])


@router.get("/events")
async def events(
    service: Annotated[DocRelayService, Depends(get_service)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    channel = service.hub.subscribe()
    return StreamingResponse(
        sse_stream(service.hub, channel, settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
