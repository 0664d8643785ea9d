"""
Session State Store - Fuente única de verdad de la sesión WhatsApp.

Mantiene el estado de la sesión (disconnected, qr_pending, authenticated,
ready), el QR vigente y la última vez que la sesión estuvo lista. Solo el
consumidor de eventos del SessionClient escribe aquí; el resto de
componentes lee instantáneas inmutables.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from ..models.session import (
    PairingPayload, SessionEvent, SessionEventType, SessionSnapshot, SessionState
)
from ..utils.logger import get_logger, log_session_transition

logger = get_logger(__name__)

Listener = Callable[[SessionSnapshot, SessionEvent], Awaitable[None]]

_S = SessionState
_E = SessionEventType

TRANSITIONS: Dict[Tuple[SessionState, SessionEventType], SessionState] = {
    (_S.DISCONNECTED, _E.QR): _S.QR_PENDING,
    (_S.QR_PENDING, _E.QR): _S.QR_PENDING,                 # QR refrescado por el engine
    (_S.QR_PENDING, _E.AUTHENTICATED): _S.AUTHENTICATED,
    (_S.DISCONNECTED, _E.AUTHENTICATED): _S.AUTHENTICATED,  # sesión LocalAuth restaurada
    (_S.AUTHENTICATED, _E.READY): _S.READY,
}

for _state in (_S.QR_PENDING, _S.AUTHENTICATED, _S.READY):
    for _event in (_E.DISCONNECTED, _E.AUTH_FAILURE, _E.LOGOUT):
        TRANSITIONS[(_state, _event)] = _S.DISCONNECTED


class SessionStateStore:
    """
    Máquina de estados de la sesión única del proceso.

    Las lecturas son instantáneas; las escrituras son secuenciales porque
    solo existe un escritor (el consumidor de la cola del SessionClient).
    """

    def __init__(self):
        self._snapshot = SessionSnapshot()
        self._listeners: List[Listener] = []
        self.stats = {
            "transitions": 0,
            "ignored_events": 0
        }

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def get_state(self) -> SessionState:
        return self._snapshot.state

    def get_pairing_payload(self) -> Optional[PairingPayload]:
        return self._snapshot.pairing

    def subscribe(self, listener: Listener):
        """Registra un callback que recibe cada nueva instantánea."""
        self._listeners.append(listener)

    async def apply(self, event: SessionEvent) -> Optional[SessionSnapshot]:
        """
        Aplica un evento según la tabla de transiciones.

        Args:
            event: Evento de sesión

        Returns:
            La nueva instantánea, o None si el evento no produjo transición
        """
        previous = self._snapshot
        updated = self._next_snapshot(previous, event)

        if updated is None:
            return None

        self._snapshot = updated
        self.stats["transitions"] += 1

        log_session_transition(
            logger,
            previous_state=previous.state.value,
            new_state=updated.state.value,
            event_type=event.type.value,
            reason=event.reason
        )

        for listener in list(self._listeners):
            try:
                await listener(updated, event)
            except Exception as e:
                logger.error(f"❌ Error notificando transición a listener: {e}", exc_info=True)

        return updated

    def _next_snapshot(self, current: SessionSnapshot, event: SessionEvent) -> Optional[SessionSnapshot]:
        target = TRANSITIONS.get((current.state, event.type))

        if target is None:
            if current.state is _S.DISCONNECTED and event.type in (_E.DISCONNECTED, _E.AUTH_FAILURE, _E.LOGOUT):
                # Ya desconectado: solo se conserva la razón para el operador
                if event.reason and event.type is not _E.LOGOUT:
                    self._snapshot = current.model_copy(update={"last_error": event.reason})
                return None

            self.stats["ignored_events"] += 1
            logger.warning(
                f"⚠️ Evento {event.type.value} ignorado en estado {current.state.value}",
                extra={'session_state': current.state.value, 'event_type': event.type.value}
            )
            return None

        if target is _S.QR_PENDING and event.pairing is None:
            self.stats["ignored_events"] += 1
            logger.warning("⚠️ Evento qr sin código de emparejamiento ignorado")
            return None

        updates = {
            "state": target,
            "pairing": event.pairing if target is _S.QR_PENDING else None,
            "updated_at": event.received_at
        }

        if target is _S.READY:
            updates["last_ready_at"] = event.received_at
            updates["phone_number"] = event.phone_number or current.phone_number
            updates["last_error"] = None

        if target is _S.DISCONNECTED:
            updates["phone_number"] = None
            updates["last_error"] = event.reason or event.type.value

        return current.model_copy(update=updates)
