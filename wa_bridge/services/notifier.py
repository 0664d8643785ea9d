"""
Realtime Notifier - Difusión de cambios de estado de la sesión por WebSocket.

Se suscribe al SessionStateStore y reenvía cada transición a todos los
dashboards conectados. Un suscriptor lento o caído no bloquea al resto:
cada envío tiene su propio timeout y los sockets que fallan se descartan.
"""

import asyncio
from typing import List, Optional

from fastapi import WebSocket

from .session_store import SessionStateStore
from ..models.session import SessionEvent, SessionSnapshot
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger

logger = get_logger(__name__)


class RealtimeNotifier:
    """Registro de suscriptores WebSocket y difusión de transiciones."""

    def __init__(self, store: SessionStateStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()
        self._subscribers: List[WebSocket] = []

        self.stats = {
            "connections_total": 0,
            "broadcasts": 0,
            "messages_delivered": 0,
            "subscribers_dropped": 0
        }

        store.subscribe(self.broadcast)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def connect(self, websocket: WebSocket):
        """
        Acepta un WebSocket, lo registra y le envía el estado actual.

        El estado inicial se envía antes de cualquier transición posterior.
        """
        await websocket.accept()

        # Registro e instantánea sin await intermedio: ninguna transición se pierde
        snapshot = self.store.snapshot()
        self._subscribers.append(websocket)
        self.stats["connections_total"] += 1

        try:
            await websocket.send_json(snapshot.to_event_message(reason=snapshot.last_error))
        except Exception:
            self.disconnect(websocket)
            raise

        logger.info(f"🔗 WebSocket conectado ({self.subscriber_count} activos)")

    def disconnect(self, websocket: WebSocket):
        try:
            self._subscribers.remove(websocket)
            logger.info(f"🔌 WebSocket desconectado ({self.subscriber_count} activos)")
        except ValueError:
            pass  # ya descartado por un envío fallido

    async def broadcast(self, snapshot: SessionSnapshot, event: SessionEvent):
        """
        Envía la transición a todos los suscriptores en paralelo.

        Args:
            snapshot: Instantánea posterior a la transición
            event: Evento que la produjo
        """
        if not self._subscribers:
            return

        message = snapshot.to_event_message(reason=event.reason)
        subscribers = list(self._subscribers)

        results = await asyncio.gather(
            *(self._send(ws, message) for ws in subscribers),
            return_exceptions=True
        )

        self.stats["broadcasts"] += 1
        for ws, result in zip(subscribers, results):
            if isinstance(result, BaseException):
                self._drop(ws, result)
            else:
                self.stats["messages_delivered"] += 1

    async def _send(self, websocket: WebSocket, message: dict):
        await asyncio.wait_for(
            websocket.send_json(message),
            timeout=self.settings.WEBSOCKET_SEND_TIMEOUT
        )

    def _drop(self, websocket: WebSocket, error: BaseException):
        if websocket in self._subscribers:
            self._subscribers.remove(websocket)
            self.stats["subscribers_dropped"] += 1
            logger.warning(f"⚠️ WebSocket descartado tras fallo de envío: {error!r}")

    async def close_all(self):
        """Cierra todas las conexiones (shutdown de la aplicación)."""
        for ws in list(self._subscribers):
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"WebSocket ya cerrado: {e!r}")
        self._subscribers.clear()
