"""
Modelos Pydantic para el ciclo de vida de la sesión WhatsApp.

Define los estados de la sesión, el payload de emparejamiento (QR),
los eventos que emite el engine y la instantánea inmutable que leen
la API HTTP y el notificador en tiempo real.
"""

from typing import Dict, Optional, Any
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    """
    Estados posibles de la sesión única del proceso.
    """
    DISCONNECTED = "disconnected"
    QR_PENDING = "qr_pending"
    AUTHENTICATED = "authenticated"
    READY = "ready"

    @property
    def wire_status(self) -> str:
        """Etiqueta usada en las respuestas HTTP y en el canal WebSocket."""
        if self is SessionState.QR_PENDING:
            return "qr"
        return self.value


class SessionEventType(str, Enum):
    """
    Eventos que alimentan la máquina de estados.

    Todos provienen del engine salvo LOGOUT, que es el cierre explícito
    solicitado desde la API.
    """
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    DISCONNECTED = "disconnected"
    AUTH_FAILURE = "auth_failure"
    LOGOUT = "logout"


class PairingPayload(BaseModel):
    """
    Código QR vigente para vincular un teléfono.
    """
    model_config = ConfigDict(frozen=True)

    code: str = Field(description="String opaco emitido por whatsapp-web.js")

    image: Optional[str] = Field(
        default=None,
        description="Data URL del QR renderizado (None si falló el renderizado)"
    )

    issued_at: datetime = Field(
        default_factory=datetime.now,
        description="Momento en que el engine emitió el código"
    )

    @property
    def display(self) -> str:
        """Imagen renderizable si existe, si no el código crudo."""
        return self.image or self.code


class SessionEvent(BaseModel):
    """Evento de sesión encolado por el adaptador."""
    model_config = ConfigDict(frozen=True)

    type: SessionEventType
    pairing: Optional[PairingPayload] = None
    reason: Optional[str] = None
    phone_number: Optional[str] = None
    received_at: datetime = Field(default_factory=datetime.now)


class SessionSnapshot(BaseModel):
    """
    Instantánea inmutable del estado de la sesión.

    Invariante: ``pairing`` existe si y solo si ``state`` es QR_PENDING.
    """
    model_config = ConfigDict(frozen=True)

    state: SessionState = SessionState.DISCONNECTED

    pairing: Optional[PairingPayload] = None

    last_ready_at: Optional[datetime] = Field(
        default=None,
        description="Último momento en que la sesión quedó lista (last-known-good)"
    )

    last_error: Optional[str] = Field(
        default=None,
        description="Última razón de desconexión o fallo de autenticación"
    )

    phone_number: Optional[str] = Field(
        default=None,
        description="Número vinculado reportado por el engine al quedar listo"
    )

    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def status(self) -> str:
        return self.state.wire_status

    def to_event_message(self, reason: Optional[str] = None) -> Dict[str, Any]:
        """
        Mensaje ``state_changed`` para el canal en tiempo real.

        Args:
            reason: Razón asociada a la transición (desconexión, fallo de auth)

        Returns:
            Diccionario serializable a JSON
        """
        message: Dict[str, Any] = {
            "event": "state_changed",
            "status": self.status,
            "timestamp": self.updated_at.isoformat()
        }
        if self.pairing is not None:
            message["qr"] = self.pairing.display
        if reason:
            message["reason"] = reason
        return message
