"""FastAPI dependency-injection helpers."""

from __future__ import annotations

from fastapi import Request

from docrelay.config import Settings
from docrelay.service import DocRelayService


def get_service(request: Request) -> DocRelayService:
    return request.app.state.service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
