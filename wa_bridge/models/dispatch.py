"""
Modelos Pydantic para el despacho de comunicados por WhatsApp.

Un DispatchRequest vive solo lo que dura la petición: ni la solicitud
ni su resultado se persisten.
"""

import base64
import binascii
import uuid
from typing import List, Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class DispatchStatus(str, Enum):
    """Resultado por destinatario."""
    SENT = "sent"
    FAILED = "failed"


class FailureReason(str, Enum):
    """
    Razones de fallo por destinatario.
    """
    INVALID_NUMBER = "invalid_number"    # Número mal formado o no registrado en WhatsApp
    TIMEOUT = "timeout"                  # El engine no confirmó a tiempo
    SESSION_LOST = "session_lost"        # La sesión cayó durante el lote
    SEND_ERROR = "send_error"            # Error genérico del engine
    INVALID_MEDIA = "invalid_media"      # No se pudo cargar el adjunto


class MediaAttachment(BaseModel):
    """
    Adjunto multimedia de un comunicado.

    Debe indicar exactamente una fuente: ``url``, ``path`` o ``data`` (base64).
    """
    url: Optional[str] = Field(default=None, description="URL pública del archivo")
    path: Optional[str] = Field(default=None, description="Path local accesible al engine")
    data: Optional[str] = Field(default=None, description="Contenido en base64")
    mimetype: Optional[str] = Field(default=None, description="MIME type (requerido con data)")
    filename: Optional[str] = Field(default=None, description="Nombre mostrado del archivo")

    @model_validator(mode="after")
    def validate_single_source(self):
        """Valida que haya exactamente una fuente de contenido."""
        sources = [s for s in (self.url, self.path, self.data) if s]
        if len(sources) != 1:
            raise ValueError("El adjunto debe tener exactamente una fuente: url, path o data")
        if self.data and not self.mimetype:
            raise ValueError("mimetype es requerido cuando el adjunto usa data")
        return self

    @field_validator('data')
    @classmethod
    def validate_base64(cls, v):
        """Valida que data sea base64 válido."""
        if v:
            try:
                base64.b64decode(v, validate=True)
            except (binascii.Error, ValueError):
                raise ValueError("data debe estar codificado en base64")
        return v

    def to_engine_payload(self) -> dict:
        """Payload que entiende el script del engine."""
        return self.model_dump(exclude_none=True)


class DispatchRequest(BaseModel):
    """
    Solicitud de envío de un comunicado a varios destinatarios.
    """
    recipients: List[str] = Field(
        min_length=1,
        description="Números destino (formato libre, se normalizan a chat id)"
    )

    body: str = Field(
        default="",
        max_length=4096,
        description="Texto del mensaje (caption si hay adjunto)"
    )

    media: Optional[MediaAttachment] = Field(
        default=None,
        description="Adjunto opcional"
    )

    @field_validator('recipients')
    @classmethod
    def validate_recipients(cls, v):
        """Rechaza destinatarios vacíos; conserva orden y duplicados."""
        cleaned = [r.strip() for r in v]
        if any(not r for r in cleaned):
            raise ValueError("Los destinatarios no pueden estar vacíos")
        return cleaned

    @model_validator(mode="after")
    def validate_content(self):
        """Valida que haya texto o adjunto."""
        if not self.body.strip() and self.media is None:
            raise ValueError("Se requiere body o media")
        return self


class RecipientResult(BaseModel):
    """Resultado del envío a un destinatario."""
    model_config = ConfigDict(populate_by_name=True)

    recipient: str
    status: DispatchStatus
    reason: Optional[FailureReason] = None
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")

    @classmethod
    def sent(cls, recipient: str, message_id: Optional[str] = None) -> "RecipientResult":
        return cls(recipient=recipient, status=DispatchStatus.SENT, message_id=message_id)

    @classmethod
    def failed(cls, recipient: str, reason: FailureReason) -> "RecipientResult":
        return cls(recipient=recipient, status=DispatchStatus.FAILED, reason=reason)


class DispatchResult(BaseModel):
    """
    Resultado agregado de un lote.

    ``results`` conserva el orden y la longitud de ``recipients``.
    """
    model_config = ConfigDict(populate_by_name=True)

    batch_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        serialization_alias="batchId"
    )

    results: List[RecipientResult] = Field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return bool(self.results) and all(r.status == DispatchStatus.SENT for r in self.results)

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.status == DispatchStatus.SENT)

    @property
    def failed_count(self) -> int:
        return len(self.results) - self.sent_count
