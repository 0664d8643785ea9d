"""
Tests para SessionClient.

Cubre la traducción de eventos del engine, el renderizado del QR, el
mapeo de errores de envío y el logout fail-safe.
"""

import asyncio

import pytest
from unittest.mock import patch

from wa_bridge.models.dispatch import FailureReason, MediaAttachment
from wa_bridge.models.session import SessionState
from wa_bridge.services.errors import (
    EngineError, EngineSendError, RecipientFailure, SessionLostMidBatch
)
from wa_bridge.utils.qr import SVG_DATA_URL_PREFIX


class TestEngineEvents:
    """Tests para los callbacks del engine."""

    @pytest.mark.asyncio
    async def test_qr_event_is_rendered_as_data_url(self, session_client, fake_engine, store):
        await fake_engine.emit("qr", {"qr": "2@pairing-code"})
        await session_client.settle()

        pairing = store.get_pairing_payload()
        assert store.get_state() is SessionState.QR_PENDING
        assert pairing.code == "2@pairing-code"
        assert pairing.image.startswith(SVG_DATA_URL_PREFIX)
        assert pairing.display == pairing.image
        assert session_client.stats["qr_codes_issued"] == 1

    @pytest.mark.asyncio
    async def test_qr_falls_back_to_raw_code_when_rendering_fails(self, session_client, fake_engine, store):
        with patch("wa_bridge.services.session_client.render_qr_data_url", return_value=None):
            await fake_engine.emit("qr", {"qr": "2@raw"})
            await session_client.settle()

        assert store.get_pairing_payload().display == "2@raw"

    @pytest.mark.asyncio
    async def test_events_are_applied_in_arrival_order(self, session_client, fake_engine, store):
        session_client.on_qr("2@abc")
        session_client.on_authenticated()
        session_client.on_ready("593991234567")

        await session_client.settle()

        assert store.get_state() is SessionState.READY
        assert store.snapshot().phone_number == "593991234567"

    @pytest.mark.asyncio
    async def test_callbacks_never_raise(self, session_client, store):
        session_client.on_qr(None)
        session_client.on_qr("")
        session_client.on_ready()  # sin authenticated: se ignora

        await session_client.settle()

        assert store.get_state() is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnected_event_records_reason(self, ready_client, fake_engine, store):
        await fake_engine.emit("disconnected", {"reason": "NAVIGATION"})
        await ready_client.settle()

        assert store.get_state() is SessionState.DISCONNECTED
        assert store.snapshot().last_error == "NAVIGATION"

    @pytest.mark.asyncio
    async def test_auth_failure_from_qr_pending(self, session_client, fake_engine, store):
        await fake_engine.emit("qr", {"qr": "2@abc"})
        await fake_engine.emit("auth_failure", {"message": "Auth failed"})
        await session_client.settle()

        assert store.get_state() is SessionState.DISCONNECTED
        assert store.get_pairing_payload() is None
        assert store.snapshot().last_error == "Auth failed"


class TestSendMessage:
    """Tests para el envío individual y el mapeo de errores."""

    @pytest.mark.asyncio
    async def test_send_formats_recipient_and_returns_id(self, ready_client, fake_engine):
        message_id = await ready_client.send_message("+593 99 123 4567", "Hola")

        assert fake_engine.sent == [("593991234567@c.us", "Hola", None)]
        assert message_id == "true_593991234567@c.us_1"
        assert ready_client.stats["messages_sent"] == 1

    @pytest.mark.asyncio
    async def test_media_is_forwarded_to_engine(self, ready_client, fake_engine):
        media = MediaAttachment(url="https://example.com/boletin.pdf", filename="boletin.pdf")

        await ready_client.send_message("593991234567", "Boletín", media)

        _, _, payload = fake_engine.sent[0]
        assert payload == {"url": "https://example.com/boletin.pdf", "filename": "boletin.pdf"}

    @pytest.mark.asyncio
    async def test_recipient_without_digits_never_reaches_engine(self, ready_client, fake_engine):
        with pytest.raises(RecipientFailure) as exc_info:
            await ready_client.send_message("not-a-number", "Hola")

        assert exc_info.value.reason is FailureReason.INVALID_NUMBER
        assert fake_engine.attempts == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code, expected", [
        ("invalid_number", FailureReason.INVALID_NUMBER),
        ("invalid_media", FailureReason.INVALID_MEDIA),
        ("something_else", FailureReason.SEND_ERROR),
        (None, FailureReason.SEND_ERROR),
    ])
    async def test_engine_send_errors_map_to_reasons(self, ready_client, fake_engine, store, code, expected):
        fake_engine.failures["593991234567@c.us"] = EngineSendError("rejected", code)

        with pytest.raises(RecipientFailure) as exc_info:
            await ready_client.send_message("593991234567", "Hola")

        assert exc_info.value.reason is expected
        assert store.get_state() is SessionState.READY

    @pytest.mark.asyncio
    async def test_timeout_is_reported_per_recipient(self, ready_client, fake_engine, store):
        fake_engine.hanging.add("593991234567@c.us")

        with pytest.raises(RecipientFailure) as exc_info:
            await ready_client.send_message("593991234567", "Hola", timeout=0.05)

        assert exc_info.value.reason is FailureReason.TIMEOUT
        assert store.get_state() is SessionState.READY

    @pytest.mark.asyncio
    async def test_timeout_after_disconnect_is_session_lost(self, ready_client, fake_engine, store):
        async def drop_session(chat_id):
            ready_client.on_disconnected("CONFLICT")

        fake_engine.before_send = drop_session
        fake_engine.hanging.add("593991234567@c.us")

        with pytest.raises(SessionLostMidBatch):
            await ready_client.send_message("593991234567", "Hola", timeout=0.05)

        assert store.get_state() is SessionState.DISCONNECTED
        assert store.snapshot().last_error == "CONFLICT"

    @pytest.mark.asyncio
    async def test_send_error_after_disconnect_is_session_lost(self, ready_client, fake_engine, store):
        async def drop_session(chat_id):
            ready_client.on_disconnected("NAVIGATION")

        fake_engine.before_send = drop_session
        fake_engine.failures["593991234567@c.us"] = EngineSendError("Evaluation failed")

        with pytest.raises(SessionLostMidBatch):
            await ready_client.send_message("593991234567", "Hola")

        assert store.get_state() is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_session_lost_forces_disconnect(self, ready_client, fake_engine, store):
        fake_engine.failures["593991234567@c.us"] = EngineSendError("Session closed", "session_lost")

        with pytest.raises(SessionLostMidBatch):
            await ready_client.send_message("593991234567", "Hola")

        assert store.get_state() is SessionState.DISCONNECTED
        assert ready_client.stats["forced_disconnects"] == 1

    @pytest.mark.asyncio
    async def test_engine_crash_forces_disconnect(self, ready_client, fake_engine, store):
        fake_engine.failures["593991234567@c.us"] = EngineError("El proceso WhatsApp terminó")

        with pytest.raises(SessionLostMidBatch):
            await ready_client.send_message("593991234567", "Hola")

        assert store.get_state() is SessionState.DISCONNECTED
        assert "engine_error" in store.snapshot().last_error


class TestLogout:
    """Tests para el logout fail-safe."""

    @pytest.mark.asyncio
    async def test_logout_from_ready(self, ready_client, fake_engine, store):
        snapshot = await ready_client.logout()

        assert fake_engine.logout_calls == 1
        assert snapshot.state is SessionState.DISCONNECTED
        assert store.get_state() is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logout_when_engine_fails_still_disconnects(self, ready_client, fake_engine, store):
        fake_engine.logout_error = EngineError("Proceso WhatsApp no disponible")

        snapshot = await ready_client.logout()

        assert snapshot.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logout_when_engine_hangs_still_disconnects(self, ready_client, fake_engine, store):
        async def never_returns():
            await asyncio.sleep(3600)

        fake_engine.logout = never_returns

        snapshot = await ready_client.logout()

        assert snapshot.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, session_client, fake_engine, store):
        first = await session_client.logout()
        second = await session_client.logout()

        assert first.state is SessionState.DISCONNECTED
        assert second.state is SessionState.DISCONNECTED
        assert fake_engine.logout_calls == 0

    @pytest.mark.asyncio
    async def test_logout_from_qr_pending_discards_qr(self, session_client, fake_engine, store):
        await fake_engine.emit("qr", {"qr": "2@abc"})

        snapshot = await session_client.logout()

        assert snapshot.state is SessionState.DISCONNECTED
        assert snapshot.pairing is None
        assert fake_engine.logout_calls == 0


class TestEngineState:
    """Tests para la consulta de estado al engine."""

    @pytest.mark.asyncio
    async def test_get_state_returns_engine_state(self, session_client, fake_engine):
        fake_engine.state = "CONNECTED"

        assert await session_client.get_state() == "CONNECTED"

    @pytest.mark.asyncio
    async def test_get_state_returns_none_on_failure(self, session_client, fake_engine):
        async def broken():
            raise EngineError("Proceso WhatsApp no disponible")

        fake_engine.get_state = broken

        assert await session_client.get_state() is None
