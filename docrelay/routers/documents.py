"""Pending-document endpoints: status, PDF download and confirmation."""

from __future__ import annotations

from typing import Annotated
from urllib.parse import quote

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse, Response

from docrelay.deps import get_service
from docrelay.errors import ReplySendError
from docrelay.models import ConfirmResponse, StatusResponse, document_url
from docrelay.service import DocRelayService

logger = structlog.get_logger()

router = APIRouter(tags=["documents"])


@router.get("/status", response_model=StatusResponse, response_model_exclude_none=True)
async def get_status(service: Annotated[DocRelayService, Depends(get_service)]):
    item = service.store.peek()
    if item is None:
        return StatusResponse(ready=False)
    return StatusResponse(ready=True, pdf_url=document_url(item.pdf_filename))


@router.post("/confirm", response_model=ConfirmResponse, response_model_exclude_none=True)
async def confirm(service: Annotated[DocRelayService, Depends(get_service)]):
    try:
        confirmed = await service.store.confirm()
    except ReplySendError as exc:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=ConfirmResponse(success=False, error=str(exc)).model_dump(exclude_none=True),
        )
    return ConfirmResponse(success=confirmed)


@router.get("/document/{name}")
async def get_document(name: str, service: Annotated[DocRelayService, Depends(get_service)]):
    item = service.store.latest()
    if item is None or item.pdf_filename != name:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    logger.debug("document_served", uid=item.uid, filename=name)
    return Response(
        content=item.pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{quote(name)}"},
    )
