"""
Sistema de logging centralizado y estructurado.

Configura logging con formato estructurado, niveles apropiados
y rotación de archivos para el puente de sesión WhatsApp.
"""

import logging
import logging.handlers
import sys
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from starlette.middleware.base import BaseHTTPMiddleware

from .config import get_settings

# Configuración global
_loggers: Dict[str, logging.Logger] = {}
_log_initialized = False

# Campos extra que se propagan a los formatters
_EXTRA_FIELDS = (
    "session_state",
    "previous_state",
    "event_type",
    "batch_id",
    "recipient",
    "reason",
    "http_method",
    "http_path",
    "http_status",
    "response_time_ms",
)


class StructuredFormatter(logging.Formatter):
    """
    Formatter que produce logs estructurados en JSON.

    Útil para parsing automático y agregación de logs en producción.
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Formatea record como JSON estructurado.

        Args:
            record: LogRecord a formatear

        Returns:
            String JSON con información estructurada
        """

        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # Añadir información de excepción si existe
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter readable para desarrollo y debugging.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        """Formatea record de manera legible."""
        formatted = super().format(record)

        extras = []
        if hasattr(record, 'session_state'):
            extras.append(f"state:{record.session_state}")
        if hasattr(record, 'batch_id'):
            extras.append(f"batch:{str(record.batch_id)[:8]}")
        if hasattr(record, 'recipient'):
            extras.append(f"to:{record.recipient}")

        if extras:
            formatted += f" [{', '.join(extras)}]"

        return formatted


def setup_logging():
    """
    Configura sistema de logging global.

    Establece handlers, formatters y niveles apropiados según el entorno.
    """
    global _log_initialized

    if _log_initialized:
        return

    settings = get_settings()

    # Limpiar configuración existente
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    log_level = getattr(logging, settings.LOG_LEVEL, logging.INFO)
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_production:
        # JSON estructurado para producción
        console_handler.setFormatter(StructuredFormatter())
    else:
        console_handler.setFormatter(HumanReadableFormatter())

    root_logger.addHandler(console_handler)

    # Handler para archivo de logs (solo si no es testing)
    if not settings.MOCK_EXTERNAL_SERVICES:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / "wa_bridge.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(StructuredFormatter())

        root_logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            log_dir / "errors.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(StructuredFormatter())

        root_logger.addHandler(error_handler)

    _configure_external_loggers()

    _log_initialized = True

    logger = logging.getLogger(__name__)
    logger.info(f"📋 Logging configurado - Nivel: {settings.LOG_LEVEL}, Entorno: {settings.ENVIRONMENT}")


def _configure_external_loggers():
    """Configura loggers de bibliotecas externas para reducir ruido."""

    external_loggers = [
        'uvicorn.access',
        'asyncio',
        'multipart',
        'httpx',
        'subprocess'
    ]

    for logger_name in external_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Obtiene logger configurado para un módulo.

    Args:
        name: Nombre del módulo (típicamente __name__)

    Returns:
        Logger configurado
    """
    if not _log_initialized:
        setup_logging()

    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)

    return _loggers[name]


def log_engine_event(logger: logging.Logger, event_type: str, data: Dict[str, Any]):
    """
    Log especializado para eventos emitidos por el engine WhatsApp.

    Args:
        logger: Logger a usar
        event_type: Tipo de evento WhatsApp
        data: Datos del evento
    """

    logger.debug(
        f"WhatsApp event: {event_type}",
        extra={
            'event_type': event_type,
            'reason': data.get('reason') or data.get('message')
        }
    )


def log_session_transition(
    logger: logging.Logger,
    previous_state: str,
    new_state: str,
    event_type: str,
    reason: Optional[str] = None
):
    """
    Log especializado para transiciones de la sesión.

    Args:
        logger: Logger a usar
        previous_state: Estado anterior
        new_state: Estado nuevo
        event_type: Evento que provocó la transición
        reason: Razón reportada por el engine (si existe)
    """

    message = f"Sesión {previous_state} -> {new_state} ({event_type})"
    if reason:
        message += f": {reason}"

    logger.info(
        message,
        extra={
            'previous_state': previous_state,
            'session_state': new_state,
            'event_type': event_type,
            'reason': reason
        }
    )


def log_dispatch_summary(
    logger: logging.Logger,
    batch_id: str,
    total: int,
    sent: int,
    failed: int,
    duration_ms: float
):
    """
    Log especializado para el resumen de un lote de envío.

    Args:
        logger: Logger a usar
        batch_id: ID del lote
        total: Número de destinatarios
        sent: Enviados correctamente
        failed: Fallidos
        duration_ms: Duración en milisegundos
    """

    level = logging.INFO if failed == 0 else logging.WARNING
    logger.log(
        level,
        f"Lote {batch_id}: {sent}/{total} enviados, {failed} fallidos - {duration_ms:.2f}ms",
        extra={
            'batch_id': batch_id,
            'response_time_ms': duration_ms
        }
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware para logging de requests HTTP en FastAPI.

    Registra información de requests/responses para debugging.
    """

    def __init__(self, app, logger: logging.Logger):
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request, call_next):
        """Procesa request y response logging."""

        start_time = datetime.now()

        self.logger.debug(
            f"HTTP {request.method} {request.url.path}",
            extra={
                'http_method': request.method,
                'http_path': request.url.path
            }
        )

        try:
            response = await call_next(request)
            duration = (datetime.now() - start_time).total_seconds() * 1000

            self.logger.info(
                f"HTTP {request.method} {request.url.path} {response.status_code} - {duration:.2f}ms",
                extra={
                    'http_status': response.status_code,
                    'response_time_ms': duration,
                    'http_method': request.method,
                    'http_path': request.url.path
                }
            )

            return response

        except Exception:
            duration = (datetime.now() - start_time).total_seconds() * 1000

            self.logger.error(
                f"HTTP request failed - {duration:.2f}ms",
                extra={
                    'http_method': request.method,
                    'http_path': request.url.path,
                    'response_time_ms': duration
                },
                exc_info=True
            )

            raise


# Auto-inicializar logging cuando se importa el módulo
setup_logging()
