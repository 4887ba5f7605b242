"""Tests for the HTTP surface (docrelay.app and docrelay.routers)."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from conftest import FakeConverter, FakeMailer, make_item
from docrelay.app import create_app
from docrelay.config import Settings
from docrelay.routers.events import events
from docrelay.service import DocRelayService


@pytest.fixture
def service(settings: Settings, mailer: FakeMailer) -> DocRelayService:
    return DocRelayService(settings, converter=FakeConverter(), mailer=mailer)


@pytest.fixture
async def client(settings: Settings, service: DocRelayService):
    """Async HTTP test client. Lifespan is not started."""
    app = create_app(settings, service)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


class TestStatus:
    @pytest.mark.asyncio
    async def test_nothing_pending(self, client: AsyncClient):
        resp = await client.get("/status")
        assert resp.status_code == 200
        assert resp.json() == {"ready": False}

    @pytest.mark.asyncio
    async def test_pending_document(self, client: AsyncClient, service: DocRelayService):
        await service.store.publish(make_item())
        resp = await client.get("/status")
        assert resp.json() == {"ready": True, "pdfUrl": "/document/report.pdf"}

    @pytest.mark.asyncio
    async def test_status_does_not_consume(self, client: AsyncClient, service: DocRelayService):
        await service.store.publish(make_item())
        await client.get("/status")
        await client.get("/status")
        assert service.store.peek() is not None


class TestConfirm:
    @pytest.mark.asyncio
    async def test_nothing_to_confirm(self, client: AsyncClient, mailer: FakeMailer):
        resp = await client.post("/confirm")
        assert resp.status_code == 200
        assert resp.json() == {"success": False}
        assert mailer.sent == []

    @pytest.mark.asyncio
    async def test_confirm_sends_reply(self, client: AsyncClient, service: DocRelayService, mailer: FakeMailer):
        await service.store.publish(make_item())
        resp = await client.post("/confirm")
        assert resp.json() == {"success": True}
        assert len(mailer.sent) == 1
        assert (await client.get("/status")).json() == {"ready": False}

        again = await client.post("/confirm")
        assert again.json() == {"success": False}
        assert len(mailer.sent) == 1

    @pytest.mark.asyncio
    async def test_send_failure_is_reported(self, client: AsyncClient, service: DocRelayService, mailer: FakeMailer):
        mailer.fail = True
        await service.store.publish(make_item())
        resp = await client.post("/confirm")
        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert "relay refused" in body["error"]
        assert service.store.peek() is not None


class TestDocument:
    @pytest.mark.asyncio
    async def test_serves_pdf(self, client: AsyncClient, service: DocRelayService):
        await service.store.publish(make_item())
        resp = await client.get("/document/report.pdf")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "application/pdf"
        assert resp.headers["content-disposition"] == "inline; filename*=UTF-8''report.pdf"
        assert resp.content == b"%PDF-1.4 report.docx"

    @pytest.mark.asyncio
    async def test_still_served_after_confirm(self, client: AsyncClient, service: DocRelayService):
        await service.store.publish(make_item())
        await client.post("/confirm")
        resp = await client.get("/document/report.pdf")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_name(self, client: AsyncClient, service: DocRelayService):
        await service.store.publish(make_item())
        resp = await client.get("/document/other.pdf")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_nothing_published(self, client: AsyncClient):
        resp = await client.get("/document/report.pdf")
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_non_ascii_name(self, client: AsyncClient, service: DocRelayService):
        item = make_item(filename="Отчет.docx")
        await service.store.publish(item)
        status = (await client.get("/status")).json()
        assert status["pdfUrl"] == "/document/%D0%9E%D1%82%D1%87%D0%B5%D1%82.pdf"
        resp = await client.get(status["pdfUrl"])
        assert resp.status_code == 200
        assert resp.content == item.pdf_bytes


class TestEvents:
    @pytest.mark.asyncio
    async def test_event_stream_response(self, settings: Settings, service: DocRelayService):
        resp = await events(service=service, settings=settings)
        assert resp.media_type == "text/event-stream"
        assert resp.headers["cache-control"] == "no-cache"
        assert service.hub.subscriber_count == 1

        first = await resp.body_iterator.__anext__()
        assert first == 'data: {"type": "connected"}\n\n'
        await resp.body_iterator.aclose()
        assert service.hub.subscriber_count == 0


class TestHealthAndReady:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["service"] == "docrelay"
        assert body["imap_state"] == "disconnected"
        assert body["pending_uid"] is None

    @pytest.mark.asyncio
    async def test_not_ready(self, client: AsyncClient):
        resp = await client.get("/ready")
        assert resp.status_code == 503
        assert resp.json() == {"ready": False}

    @pytest.mark.asyncio
    async def test_cors_preflight(self, client: AsyncClient):
        resp = await client.options(
            "/confirm",
            headers={"Origin": "http://localhost:3000", "Access-Control-Request-Method": "POST"},
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"


class TestLifespan:
    @pytest.mark.asyncio
    async def test_starts_and_stops_service(self, settings: Settings):
        service = AsyncMock(spec=DocRelayService)
        app = create_app(settings, service)
        async with app.router.lifespan_context(app):
            service.start.assert_awaited_once()
        service.stop.assert_awaited_once()
