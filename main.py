"""
FastAPI Main Application - Puente de sesión WhatsApp

Expone el estado de la sesión WhatsApp Web, el QR de emparejamiento,
el logout y el envío de comunicados a un dashboard administrativo, y
difunde cada cambio de estado por WebSocket.
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from wa_bridge import __version__
from wa_bridge.models.api import (
    HealthResponse, LogoutResponse, QRResponse, SendMessageRequest,
    SendMessageResponse, SendResponse, StatusResponse
)
from wa_bridge.models.dispatch import DispatchRequest, DispatchStatus
from wa_bridge.models.session import SessionState
from wa_bridge.services.dispatch_gateway import DispatchGateway
from wa_bridge.services.errors import SessionNotReady
from wa_bridge.services.notifier import RealtimeNotifier
from wa_bridge.services.session_client import SessionClient
from wa_bridge.services.session_store import SessionStateStore
from wa_bridge.services.whatsapp_engine import NodeWhatsAppEngine, WhatsAppEngine
from wa_bridge.utils.config import Settings, get_settings
from wa_bridge.utils.logger import LoggingMiddleware, get_logger

logger = get_logger(__name__)

router = APIRouter()


# ================================
# Dependencias
# ================================

def get_store(request: Request) -> SessionStateStore:
    return request.app.state.store


def get_client(request: Request) -> SessionClient:
    return request.app.state.client


def get_gateway(request: Request) -> DispatchGateway:
    return request.app.state.gateway


# ================================
# Sesión
# ================================

@router.get("/status", response_model=StatusResponse)
async def get_status(store: SessionStateStore = Depends(get_store)):
    """Estado actual de la sesión WhatsApp."""
    snapshot = store.snapshot()
    return StatusResponse(
        status=snapshot.status,
        last_ready_at=snapshot.last_ready_at,
        phone_number=snapshot.phone_number
    )


@router.get("/qr", response_model=QRResponse, response_model_exclude_none=True)
async def get_qr(store: SessionStateStore = Depends(get_store)):
    """
    QR vigente para vincular el teléfono.

    Responde 200 con ``success: false`` cuando no hay QR pendiente.
    """
    snapshot = store.snapshot()

    if snapshot.pairing is None:
        if snapshot.state is SessionState.READY:
            message = "WhatsApp ya está conectado"
        else:
            message = "No hay QR disponible. Espera a que el cliente genere uno."
        return QRResponse(success=False, status=snapshot.status, message=message)

    return QRResponse(
        success=True,
        status=snapshot.status,
        qr=snapshot.pairing.display,
        issued_at=snapshot.pairing.issued_at
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(client: SessionClient = Depends(get_client)):
    """Cierra la sesión. Idempotente: siempre termina en ``disconnected``."""
    snapshot = await client.logout()
    return LogoutResponse(success=True, status=snapshot.status)


# ================================
# Envío
# ================================

@router.post("/send", response_model=SendResponse, response_model_exclude_none=True)
async def send(request: DispatchRequest, gateway: DispatchGateway = Depends(get_gateway)):
    """
    Envía un comunicado a varios destinatarios.

    Responde 409 si la sesión no está lista; en ese caso no se envía nada.
    """
    result = await gateway.dispatch(request)
    return SendResponse.from_result(result)


@router.post("/send-message", response_model=SendMessageResponse, response_model_exclude_none=True)
async def send_message(request: SendMessageRequest, gateway: DispatchGateway = Depends(get_gateway)):
    """Envío individual ``{phone, message}``."""
    result = await gateway.dispatch(
        DispatchRequest(recipients=[request.phone], body=request.message)
    )
    outcome = result.results[0]

    if outcome.status == DispatchStatus.SENT:
        return SendMessageResponse(
            success=True,
            to=request.phone,
            message_id=outcome.message_id,
            message="Mensaje enviado exitosamente"
        )

    failure = SendMessageResponse(success=False, to=request.phone, error=outcome.reason.value)
    return JSONResponse(
        status_code=400,
        content=failure.model_dump(by_alias=True, exclude_none=True)
    )


# ================================
# Monitoreo
# ================================

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Endpoint de health check para monitoreo.

    El servicio está ``healthy`` mientras el engine corre, aunque la
    sesión no esté vinculada.
    """
    state = request.app.state
    snapshot = state.store.snapshot()
    engine_running = state.engine.is_running
    engine_state = await state.client.get_state() if engine_running else None

    return HealthResponse(
        status="healthy" if engine_running else "degraded",
        timestamp=time.time(),
        uptime_seconds=time.time() - state.started_at,
        services={
            "whatsapp": {
                "status": "healthy" if engine_running else "unhealthy",
                "session": snapshot.status,
                "engine_state": engine_state,
                "last_error": snapshot.last_error
            },
            "websocket": {
                "status": "healthy",
                "subscribers": state.notifier.subscriber_count
            }
        },
        stats=dict(state.client.stats)
    )


@router.get("/stats")
async def get_stats(request: Request):
    """Estadísticas detalladas del puente."""
    state = request.app.state
    snapshot = state.store.snapshot()

    return {
        "uptime_seconds": time.time() - state.started_at,
        "session": {
            "status": snapshot.status,
            "last_ready_at": snapshot.last_ready_at.isoformat() if snapshot.last_ready_at else None,
            "last_error": snapshot.last_error,
            **state.store.stats
        },
        "client": state.client.stats,
        "engine": getattr(state.engine, "stats", {}),
        "dispatch": state.gateway.stats,
        "websocket": {
            "subscribers": state.notifier.subscriber_count,
            **state.notifier.stats
        },
        "timestamp": time.time()
    }


@router.get("/")
async def root(request: Request):
    """Endpoint raíz con información básica."""
    return {
        "service": "WhatsApp Session Bridge",
        "version": __version__,
        "status": "running",
        "session": request.app.state.store.snapshot().status,
        "uptime_seconds": time.time() - request.app.state.started_at,
        "endpoints": {
            "status": "GET /status",
            "qr": "GET /qr",
            "logout": "POST /logout",
            "send": "POST /send",
            "send_message": "POST /send-message",
            "health": "GET /health",
            "stats": "GET /stats",
            "websocket": "WS /ws"
        }
    }


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket para updates de estado en tiempo real.

    Al conectar se envía el estado actual; los mensajes del cliente se
    responden con ``pong`` (keep-alive).
    """
    notifier: RealtimeNotifier = websocket.app.state.notifier
    await notifier.connect(websocket)

    try:
        while True:
            await websocket.receive_text()
            await websocket.send_json({
                "event": "pong",
                "timestamp": datetime.now().isoformat()
            })
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"⚠️ Error en WebSocket: {e}")
    finally:
        notifier.disconnect(websocket)


# ================================
# Application factory
# ================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifecycle manager para la aplicación.

    Inicia el engine en startup y lo detiene en shutdown. Si el engine
    no inicia, la API sigue disponible con la sesión ``disconnected``.
    """
    logger.info("🚀 Iniciando WhatsApp Session Bridge...")

    if not await app.state.client.start():
        logger.warning("⚠️ API disponible sin engine WhatsApp; la sesión permanece desconectada")

    logger.info(f"✅ Servicio escuchando en puerto {app.state.settings.PORT}")

    try:
        yield
    finally:
        logger.info("🛑 Cerrando aplicación...")
        await app.state.notifier.close_all()
        await app.state.client.stop()
        logger.info("✅ Aplicación cerrada correctamente")


async def session_not_ready_handler(request: Request, exc: SessionNotReady):
    return JSONResponse(
        status_code=409,
        content={
            "success": False,
            "error": "session_not_ready",
            "status": exc.state.wire_status,
            "message": str(exc)
        }
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Handler global para excepciones no manejadas."""
    logger.error(f"❌ Excepción global no manejada: {exc}", exc_info=True)

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": str(exc) if request.app.state.settings.DEBUG else "An error occurred",
            "timestamp": time.time()
        }
    )


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[WhatsAppEngine] = None
) -> FastAPI:
    """
    Construye la aplicación con sus componentes inyectados.

    Args:
        settings: Configuración (default: singleton de entorno)
        engine: Engine WhatsApp (default: subprocess Node.js)

    Returns:
        Aplicación FastAPI lista para servir
    """
    settings = settings or get_settings()
    engine = engine or NodeWhatsAppEngine(settings)

    store = SessionStateStore()
    client = SessionClient(engine, store, settings)

    app = FastAPI(
        title="WhatsApp Session Bridge",
        description="Puente entre WhatsApp Web y el dashboard administrativo",
        version=__version__,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.store = store
    app.state.client = client
    app.state.gateway = DispatchGateway(client, store, settings)
    app.state.notifier = RealtimeNotifier(store, settings)
    app.state.started_at = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware, logger=logger)

    app.add_exception_handler(SessionNotReady, session_not_ready_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
        access_log=True
    )
