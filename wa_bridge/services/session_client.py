"""
SessionClient - Adaptador entre el engine WhatsApp y el Session State Store.

Los callbacks del engine se traducen en eventos de sesión que se encolan en
una cola asyncio; una única tarea consumidora los aplica al store en orden
FIFO, de modo que el store tiene un solo escritor. Los callbacks nunca
lanzan excepciones: cualquier fallo del engine termina en una transición
limpia a ``disconnected``.
"""

import asyncio
from typing import Any, Dict, Optional

from .errors import EngineSendError, RecipientFailure, SessionLostMidBatch
from .session_store import SessionStateStore
from .whatsapp_engine import WhatsAppEngine
from ..models.dispatch import FailureReason, MediaAttachment
from ..models.session import (
    PairingPayload, SessionEvent, SessionEventType, SessionSnapshot, SessionState
)
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger
from ..utils.phone import to_chat_id
from ..utils.qr import render_qr_data_url

logger = get_logger(__name__)

_REASON_BY_CODE = {
    "invalid_number": FailureReason.INVALID_NUMBER,
    "invalid_media": FailureReason.INVALID_MEDIA,
    "timeout": FailureReason.TIMEOUT,
}

class SessionClient:
    """
    Adaptador del engine de automatización.

    Features:
    - Único escritor del SessionStateStore (cola de un solo consumidor)
    - Renderizado del QR a data URL al recibirlo
    - Envíos de un solo intento acotados por timeout
    - Logout fail-safe: siempre termina en ``disconnected``
    """

    def __init__(
        self,
        engine: WhatsAppEngine,
        store: SessionStateStore,
        settings: Optional[Settings] = None
    ):
        self.engine = engine
        self.store = store
        self.settings = settings or get_settings()

        self._queue: Optional[asyncio.Queue] = None
        self._consumer_task: Optional[asyncio.Task] = None

        self.stats = {
            "events_received": 0,
            "qr_codes_issued": 0,
            "messages_sent": 0,
            "messages_failed": 0,
            "forced_disconnects": 0
        }

        self.engine.set_event_handler(self._on_engine_event)

    # ================================
    # Lifecycle
    # ================================

    async def start(self) -> bool:
        """
        Inicia el consumidor de eventos y el engine.

        Returns:
            True si el engine inició
        """
        self._ensure_consumer()

        started = await self.engine.start()
        if not started:
            logger.error("❌ El engine WhatsApp no pudo iniciar; la sesión queda desconectada")
        return started

    async def stop(self):
        """Detiene el engine y el consumidor de eventos."""
        try:
            await self.engine.stop()
        except Exception as e:
            logger.error(f"❌ Error deteniendo engine: {e}")

        await self.settle()

        if self._consumer_task:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
        self._queue = None

    def _ensure_consumer(self):
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._consumer_task is None or self._consumer_task.done():
            self._consumer_task = asyncio.create_task(self._consume_events())

    async def _consume_events(self):
        """Aplica los eventos encolados al store, uno a la vez."""
        while True:
            event, future = await self._queue.get()
            try:
                snapshot = await self.store.apply(event)
                if not future.done():
                    future.set_result(snapshot)
            except Exception as e:
                logger.error(f"❌ Error aplicando evento {event.type.value}: {e}", exc_info=True)
                if not future.done():
                    future.set_result(None)
            finally:
                self._queue.task_done()

    def _enqueue(self, event: SessionEvent) -> asyncio.Future:
        self._ensure_consumer()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((event, future))
        return future

    async def _apply(self, event: SessionEvent) -> Optional[SessionSnapshot]:
        """Encola un evento y espera a que el store lo aplique."""
        return await self._enqueue(event)

    async def settle(self):
        """Espera a que todos los eventos encolados hasta ahora estén aplicados."""
        if self._queue is not None and self._consumer_task is not None:
            await self._queue.join()

    # ================================
    # Engine callbacks
    # ================================

    async def _on_engine_event(self, event_type: str, data: Dict[str, Any]):
        """Traduce eventos crudos del engine a callbacks de sesión."""
        self.stats["events_received"] += 1

        if event_type in ('qr', 'qr_code'):
            self.on_qr(data.get('qr') if isinstance(data, dict) else data)
        elif event_type == 'authenticated':
            self.on_authenticated()
        elif event_type == 'ready':
            self.on_ready(data.get('phone_number'))
        elif event_type == 'disconnected':
            self.on_disconnected(data.get('reason'))
        elif event_type == 'auth_failure':
            self.on_auth_failure(data.get('message'))
        else:
            logger.debug(f"📥 Evento de engine sin efecto en la sesión: {event_type}")

    def on_qr(self, code: Optional[str]):
        """El engine emitió un código de emparejamiento."""
        try:
            if not code:
                logger.warning("⚠️ Evento qr sin código recibido del engine")
                return
            pairing = PairingPayload(code=code, image=render_qr_data_url(code))
            self.stats["qr_codes_issued"] += 1
            logger.info("📱 QR Code requerido - escanea con tu WhatsApp")
            self._enqueue(SessionEvent(type=SessionEventType.QR, pairing=pairing))
        except Exception as e:
            logger.error(f"❌ Error procesando QR del engine: {e}", exc_info=True)

    def on_authenticated(self):
        try:
            logger.info("🔐 WhatsApp autenticado exitosamente")
            self._enqueue(SessionEvent(type=SessionEventType.AUTHENTICATED))
        except Exception as e:
            logger.error(f"❌ Error procesando autenticación: {e}", exc_info=True)

    def on_ready(self, phone_number: Optional[str] = None):
        try:
            logger.info("✅ WhatsApp client listo para usar!")
            self._enqueue(SessionEvent(type=SessionEventType.READY, phone_number=phone_number))
        except Exception as e:
            logger.error(f"❌ Error procesando ready: {e}", exc_info=True)

    def on_disconnected(self, reason: Optional[str] = None):
        try:
            logger.warning(f"⚠️ WhatsApp desconectado: {reason or 'Unknown'}")
            self._enqueue(SessionEvent(type=SessionEventType.DISCONNECTED, reason=reason))
        except Exception as e:
            logger.error(f"❌ Error procesando desconexión: {e}", exc_info=True)

    def on_auth_failure(self, reason: Optional[str] = None):
        try:
            logger.error(f"❌ Autenticación falló: {reason or 'Auth failed'}")
            self._enqueue(SessionEvent(type=SessionEventType.AUTH_FAILURE, reason=reason or "auth_failure"))
        except Exception as e:
            logger.error(f"❌ Error procesando auth_failure: {e}", exc_info=True)

    async def _force_disconnect(self, reason: str):
        """Reset fail-safe: fuerza ``disconnected`` tras un fallo del engine."""
        self.stats["forced_disconnects"] += 1
        await self._apply(SessionEvent(type=SessionEventType.DISCONNECTED, reason=reason))

    async def _session_dropped(self) -> bool:
        """Aplica los eventos pendientes y verifica si la sesión dejó de estar lista."""
        await self.settle()
        return self.store.get_state() is not SessionState.READY

    # ================================
    # Operaciones
    # ================================

    async def send_message(
        self,
        recipient: str,
        body: str,
        media: Optional[MediaAttachment] = None,
        timeout: Optional[float] = None
    ) -> Optional[str]:
        """
        Envía un mensaje a un destinatario. Un solo intento, sin reintentos.

        Args:
            recipient: Número destino en formato libre
            body: Texto (caption si hay adjunto)
            media: Adjunto opcional
            timeout: Límite en segundos (default WHATSAPP_SEND_TIMEOUT)

        Returns:
            ID del mensaje asignado por WhatsApp (si el engine lo reporta)

        Raises:
            RecipientFailure: Fallo limitado a este destinatario
            SessionLostMidBatch: La sesión cayó; el engine quedó desconectado
        """
        chat_id = to_chat_id(recipient)
        if chat_id is None:
            self.stats["messages_failed"] += 1
            raise RecipientFailure(recipient, FailureReason.INVALID_NUMBER, f"Número inválido: {recipient!r}")

        timeout = timeout or self.settings.WHATSAPP_SEND_TIMEOUT
        media_payload = media.to_engine_payload() if media else None

        try:
            message_id = await asyncio.wait_for(
                self.engine.send_message(chat_id, body, media_payload),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            self.stats["messages_failed"] += 1
            logger.warning(f"⏱️ Timeout enviando a {chat_id} tras {timeout}s", extra={'recipient': chat_id})
            if await self._session_dropped():
                raise SessionLostMidBatch(recipient, "la sesión cayó durante el envío")
            raise RecipientFailure(recipient, FailureReason.TIMEOUT)
        except EngineSendError as e:
            self.stats["messages_failed"] += 1
            if e.code == "session_lost":
                logger.error(f"❌ Sesión perdida enviando a {chat_id}: {e}", extra={'recipient': chat_id})
                await self._force_disconnect(f"session_lost: {e}")
                raise SessionLostMidBatch(recipient, str(e)) from e
            if await self._session_dropped():
                raise SessionLostMidBatch(recipient, str(e)) from e
            reason = _REASON_BY_CODE.get(e.code, FailureReason.SEND_ERROR)
            logger.error(f"❌ Error enviando a {chat_id}: {e}", extra={'recipient': chat_id, 'reason': reason.value})
            raise RecipientFailure(recipient, reason, str(e)) from e
        except Exception as e:
            self.stats["messages_failed"] += 1
            logger.error(f"❌ Engine falló enviando a {chat_id}: {e}", exc_info=True)
            await self._force_disconnect(f"engine_error: {e}")
            raise SessionLostMidBatch(recipient, str(e)) from e

        self.stats["messages_sent"] += 1
        logger.info(f"✅ Mensaje enviado a {chat_id}", extra={'recipient': chat_id})
        return message_id

    async def logout(self) -> SessionSnapshot:
        """
        Cierra la sesión. Siempre termina en ``disconnected``.

        Returns:
            Instantánea posterior al logout
        """
        await self.settle()
        state = self.store.get_state()

        if state is SessionState.DISCONNECTED:
            logger.info("👋 Logout solicitado con la sesión ya desconectada")
            return self.store.snapshot()

        if state in (SessionState.AUTHENTICATED, SessionState.READY):
            try:
                await asyncio.wait_for(self.engine.logout(), timeout=self.settings.WHATSAPP_LOGOUT_TIMEOUT)
                logger.info("👋 Sesión cerrada en el engine")
            except Exception as e:
                logger.warning(f"⚠️ Logout del engine falló, forzando desconexión: {e!r}")

        await self._apply(SessionEvent(type=SessionEventType.LOGOUT, reason="logout"))
        return self.store.snapshot()

    async def get_state(self) -> Optional[str]:
        """Estado de conexión reportado por el engine, o None si no responde."""
        try:
            return await asyncio.wait_for(self.engine.get_state(), timeout=self.settings.WHATSAPP_COMMAND_TIMEOUT)
        except Exception as e:
            logger.warning(f"⚠️ No se pudo consultar el estado del engine: {e!r}")
            return None
