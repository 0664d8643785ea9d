"""
Dispatch Gateway - Envío de comunicados a varios destinatarios.

Valida que la sesión esté lista, envía de forma secuencial respetando el
rate limit de WhatsApp y devuelve un resultado por destinatario en el mismo
orden de la solicitud. Si la sesión cae a mitad de lote, el destinatario en
curso y los restantes se marcan ``session_lost`` sin llamar al engine.
"""

import asyncio
import time
import uuid
from typing import Optional

from .errors import RecipientFailure, SessionLostMidBatch, SessionNotReady
from .session_client import SessionClient
from .session_store import SessionStateStore
from ..models.dispatch import DispatchRequest, DispatchResult, FailureReason, RecipientResult
from ..models.session import SessionState
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger, log_dispatch_summary

logger = get_logger(__name__)


class RateLimiter:
    """
    Rate limiter para mensajes WhatsApp.

    WhatsApp es muy estricto con rate limiting: ráfagas de mensajes pueden
    causar un ban temporal del número vinculado.
    """

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self.last_send_time: Optional[float] = None
        self.send_count = 0

    async def wait_if_needed(self):
        """Espera si es necesario para respetar el intervalo mínimo."""
        now = time.monotonic()

        if self.last_send_time is not None:
            wait_time = self.min_interval - (now - self.last_send_time)
            if wait_time > 0:
                logger.debug(f"Rate limiting: esperando {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

        self.last_send_time = time.monotonic()
        self.send_count += 1


class DispatchGateway:
    """
    Punto de entrada del envío de lotes.

    Los envíos son estrictamente secuenciales y de un solo intento.
    """

    def __init__(
        self,
        client: SessionClient,
        store: SessionStateStore,
        settings: Optional[Settings] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        self.client = client
        self.store = store
        self.settings = settings or get_settings()
        self.rate_limiter = rate_limiter or RateLimiter(self.settings.WHATSAPP_MESSAGE_DELAY)

        self.stats = {
            "batches": 0,
            "batches_rejected": 0,
            "recipients_sent": 0,
            "recipients_failed": 0
        }

    async def _is_ready(self) -> bool:
        await self.client.settle()
        return self.store.get_state() is SessionState.READY

    async def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """
        Envía un comunicado a todos los destinatarios de la solicitud.

        Args:
            request: Destinatarios, texto y adjunto opcional

        Returns:
            DispatchResult con un resultado por destinatario, en orden

        Raises:
            SessionNotReady: La sesión no está ``ready``; no se envió nada
        """
        if not await self._is_ready():
            state = self.store.get_state()
            self.stats["batches_rejected"] += 1
            logger.warning(
                f"🚫 Lote rechazado: sesión en estado {state.wire_status}",
                extra={'session_state': state.value}
            )
            raise SessionNotReady(state)

        batch_id = uuid.uuid4().hex
        started = time.time()
        results = []
        session_lost = False

        logger.info(
            f"📤 Iniciando lote con {len(request.recipients)} destinatarios",
            extra={'batch_id': batch_id}
        )

        for recipient in request.recipients:
            if not session_lost and not await self._is_ready():
                session_lost = True
                logger.warning(
                    "⚠️ Sesión perdida durante el lote; se omiten los destinatarios restantes",
                    extra={'batch_id': batch_id, 'recipient': recipient}
                )

            if session_lost:
                results.append(RecipientResult.failed(recipient, FailureReason.SESSION_LOST))
                continue

            await self.rate_limiter.wait_if_needed()

            try:
                message_id = await self.client.send_message(recipient, request.body, request.media)
                results.append(RecipientResult.sent(recipient, message_id))
            except RecipientFailure as e:
                results.append(RecipientResult.failed(recipient, e.reason))
            except SessionLostMidBatch as e:
                session_lost = True
                logger.warning(f"⚠️ {e}", extra={'batch_id': batch_id, 'recipient': recipient})
                results.append(RecipientResult.failed(recipient, FailureReason.SESSION_LOST))

        result = DispatchResult(batch_id=batch_id, results=results)

        self.stats["batches"] += 1
        self.stats["recipients_sent"] += result.sent_count
        self.stats["recipients_failed"] += result.failed_count

        log_dispatch_summary(
            logger,
            batch_id=batch_id,
            total=len(results),
            sent=result.sent_count,
            failed=result.failed_count,
            duration_ms=(time.time() - started) * 1000
        )

        return result
