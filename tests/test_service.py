"""Tests for docrelay.service."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeConverter, FakeMailbox, FakeMailer, make_item
from docrelay.config import Settings
from docrelay.models import SessionState
from docrelay.service import DocRelayService


async def _wait_ready(service: DocRelayService) -> None:
    for _ in range(200):
        if service.is_ready:
            return
        await asyncio.sleep(0.01)
    raise AssertionError("service never became ready")


class TestDocRelayService:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings: Settings):
        converter = FakeConverter()
        sessions: list[FakeMailbox] = []

        def factory(config):
            session = FakeMailbox()
            sessions.append(session)
            return session

        service = DocRelayService(settings, converter=converter, mailer=FakeMailer(), session_factory=factory)
        await service.start()
        await _wait_ready(service)

        for _ in range(200):
            if sessions[0].searches:
                break
            await asyncio.sleep(0.01)

        assert converter.started
        assert service.connection.state is SessionState.READY
        assert sessions[0].searches[0] == ("UID", "1:*", "FROM", '"sender@example.com"')

        channel = service.hub.subscribe()
        await service.stop()
        assert converter.stopped
        assert channel.closed
        assert service.hub.subscriber_count == 0
        assert service.is_ready is False

    @pytest.mark.asyncio
    async def test_confirm_flags_through_connection(self, settings: Settings):
        sessions: list[FakeMailbox] = []

        def factory(config):
            session = FakeMailbox()
            sessions.append(session)
            return session

        service = DocRelayService(settings, converter=FakeConverter(), mailer=FakeMailer(), session_factory=factory)
        await service.start()
        await _wait_ready(service)

        await service.store.publish(make_item(uid=205))
        assert await service.store.confirm() is True
        assert sessions[0].flagged == [205]
        await service.stop()

    def test_health(self, settings: Settings):
        service = DocRelayService(settings, converter=FakeConverter(), mailer=FakeMailer())
        health = service.health()
        assert health["service"] == "docrelay"
        assert health["imap_state"] == "disconnected"
        assert health["watermark"] == 0
        assert health["pending_retries"] == []
        assert health["confirmed"] == 0
        assert health["subscribers"] == 0
