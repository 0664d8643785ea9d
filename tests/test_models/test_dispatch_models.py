"""
Tests para modelos de despacho y utilidades de formato.
"""

import base64

import pytest
from pydantic import ValidationError

from wa_bridge.models.dispatch import (
    DispatchRequest, DispatchResult, FailureReason, MediaAttachment, RecipientResult
)
from wa_bridge.models.session import SessionState
from wa_bridge.utils.phone import to_chat_id
from wa_bridge.utils.qr import SVG_DATA_URL_PREFIX, render_qr_data_url


class TestDispatchRequest:
    """Tests para la validación de solicitudes de envío."""

    def test_valid_request_keeps_order_and_duplicates(self):
        request = DispatchRequest(recipients=[" 593991111111 ", "593992222222", "593991111111"], body="Hola")

        assert request.recipients == ["593991111111", "593992222222", "593991111111"]

    def test_empty_recipients_rejected(self):
        with pytest.raises(ValidationError):
            DispatchRequest(recipients=[], body="Hola")

    def test_blank_recipient_rejected(self):
        with pytest.raises(ValidationError):
            DispatchRequest(recipients=["593991111111", "  "], body="Hola")

    def test_body_or_media_required(self):
        with pytest.raises(ValidationError):
            DispatchRequest(recipients=["593991111111"], body="   ")

    def test_media_without_body_is_valid(self):
        request = DispatchRequest(
            recipients=["593991111111"],
            media={"url": "https://example.com/circular.pdf"}
        )

        assert request.body == ""
        assert request.media.url == "https://example.com/circular.pdf"

    def test_body_length_limit(self):
        with pytest.raises(ValidationError):
            DispatchRequest(recipients=["593991111111"], body="x" * 4097)


class TestMediaAttachment:
    """Tests para adjuntos."""

    def test_exactly_one_source_required(self):
        with pytest.raises(ValidationError):
            MediaAttachment()

        with pytest.raises(ValidationError):
            MediaAttachment(url="https://example.com/a.png", path="/tmp/a.png")

    def test_data_requires_mimetype(self):
        data = base64.b64encode(b"contenido").decode()

        with pytest.raises(ValidationError):
            MediaAttachment(data=data)

        media = MediaAttachment(data=data, mimetype="application/pdf", filename="a.pdf")
        assert media.to_engine_payload() == {
            "data": data,
            "mimetype": "application/pdf",
            "filename": "a.pdf"
        }

    def test_invalid_base64_rejected(self):
        with pytest.raises(ValidationError):
            MediaAttachment(data="***no-base64***", mimetype="image/png")


class TestDispatchResult:
    """Tests para resultados agregados."""

    def test_all_succeeded(self):
        result = DispatchResult(results=[
            RecipientResult.sent("593991111111", "id-1"),
            RecipientResult.sent("593992222222", "id-2"),
        ])

        assert result.all_succeeded is True
        assert result.sent_count == 2
        assert result.failed_count == 0

    def test_partial_failure(self):
        result = DispatchResult(results=[
            RecipientResult.sent("593991111111"),
            RecipientResult.failed("593992222222", FailureReason.TIMEOUT),
        ])

        assert result.all_succeeded is False
        assert result.failed_count == 1

    def test_serialization_uses_wire_names(self):
        result = DispatchResult(results=[
            RecipientResult.sent("593991111111", "id-1"),
            RecipientResult.failed("593992222222", FailureReason.INVALID_NUMBER),
        ])

        payload = result.model_dump(by_alias=True, exclude_none=True, mode="json")

        assert "batchId" in payload
        assert payload["results"][0] == {"recipient": "593991111111", "status": "sent", "messageId": "id-1"}
        assert payload["results"][1] == {
            "recipient": "593992222222", "status": "failed", "reason": "invalid_number"
        }


class TestSessionState:
    """Tests para las etiquetas de estado."""

    def test_wire_status(self):
        assert SessionState.QR_PENDING.wire_status == "qr"
        assert SessionState.READY.wire_status == "ready"
        assert SessionState.DISCONNECTED.wire_status == "disconnected"


class TestPhoneFormatting:
    """Tests para el formateo de destinatarios."""

    @pytest.mark.parametrize("recipient, expected", [
        ("593991234567", "593991234567@c.us"),
        ("+593 99 123 4567", "593991234567@c.us"),
        ("(099) 123-4567", "0991234567@c.us"),
        ("593991234567@c.us", "593991234567@c.us"),
        ("120363025246125486@g.us", "120363025246125486@g.us"),
    ])
    def test_valid_recipients(self, recipient, expected):
        assert to_chat_id(recipient) == expected

    @pytest.mark.parametrize("recipient", ["", "   ", "abc", "@c.us"])
    def test_invalid_recipients(self, recipient):
        assert to_chat_id(recipient) is None


class TestQRRendering:
    """Tests para el renderizado del QR."""

    def test_renders_svg_data_url(self):
        data_url = render_qr_data_url("2@pairing-code,abc,def")

        assert data_url.startswith(SVG_DATA_URL_PREFIX)
        svg = base64.b64decode(data_url[len(SVG_DATA_URL_PREFIX):])
        assert b"<svg" in svg

    def test_empty_code_returns_none(self):
        assert render_qr_data_url("") is None
