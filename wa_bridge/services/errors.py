"""
Taxonomía de errores del puente.

Los errores de infraestructura (EngineError) se absorben en el adaptador
y se convierten en una transición a ``disconnected``; los errores de negocio
(SessionNotReady, RecipientFailure) llegan al dashboard en el cuerpo HTTP.
"""

from typing import Optional

from ..models.dispatch import FailureReason
from ..models.session import SessionState


class BridgeError(Exception):
    """Error base del puente."""
    pass


class EngineError(BridgeError):
    """El engine de automatización falló, terminó o no está disponible."""
    pass


class EngineSendError(EngineError):
    """
    El engine rechazó el envío de un mensaje concreto.

    ``code`` viene del script Node (``invalid_number``, ``session_lost``...).
    """

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or "send_error"


class SessionNotReady(BridgeError):
    """Se intentó enviar con la sesión en un estado distinto de ``ready``."""

    def __init__(self, state: SessionState):
        super().__init__(f"WhatsApp no está listo. Estado actual: {state.wire_status}")
        self.state = state


class RecipientFailure(BridgeError):
    """Fallo de envío a un destinatario; no aborta el lote."""

    def __init__(self, recipient: str, reason: FailureReason, detail: Optional[str] = None):
        super().__init__(detail or f"Envío a {recipient} falló: {reason.value}")
        self.recipient = recipient
        self.reason = reason


class SessionLostMidBatch(BridgeError):
    """La sesión cayó durante un lote; los destinatarios restantes fallan."""

    def __init__(self, recipient: str, detail: Optional[str] = None):
        super().__init__(detail or f"Sesión perdida al enviar a {recipient}")
        self.recipient = recipient
