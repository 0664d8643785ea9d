"""
Modelos de request/response de la API HTTP del puente.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .dispatch import DispatchResult, RecipientResult


class StatusResponse(BaseModel):
    """Respuesta de GET /status."""
    status: str
    timestamp: datetime = Field(default_factory=datetime.now)
    last_ready_at: Optional[datetime] = None
    phone_number: Optional[str] = None


class QRResponse(BaseModel):
    """Respuesta de GET /qr. ``success`` es False cuando no hay QR pendiente."""
    success: bool
    status: str
    qr: Optional[str] = None
    issued_at: Optional[datetime] = None
    message: Optional[str] = None


class LogoutResponse(BaseModel):
    """Respuesta de POST /logout."""
    success: bool
    status: str
    message: str = "Sesión cerrada correctamente"


class SendResponse(BaseModel):
    """Respuesta de POST /send."""
    model_config = ConfigDict(populate_by_name=True)

    all_succeeded: bool = Field(serialization_alias="allSucceeded")
    results: List[RecipientResult]
    batch_id: str = Field(serialization_alias="batchId")

    @classmethod
    def from_result(cls, result: DispatchResult) -> "SendResponse":
        return cls(
            all_succeeded=result.all_succeeded,
            results=result.results,
            batch_id=result.batch_id
        )


class SendMessageRequest(BaseModel):
    """Envío individual heredado del servicio Node (``{phone, message}``)."""
    phone: str = Field(min_length=1)
    message: str = Field(min_length=1, max_length=4096)

    @field_validator('phone', 'message')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError("No puede estar vacío")
        return v


class SendMessageResponse(BaseModel):
    """Respuesta de POST /send-message."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    to: str
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")
    message: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Respuesta del endpoint de health check."""
    status: str
    timestamp: float
    uptime_seconds: float
    services: Dict[str, Any]
    stats: Dict[str, Any]
