"""
WhatsApp Engine - Integración con WhatsApp Web.js

Capacidad externa de automatización: un script Node.js con whatsapp-web.js
corre como subprocess y se comunica con Python mediante mensajes JSON
delimitados por salto de línea. Los eventos de ciclo de vida llegan por
stdout; los comandos (send_message, logout, get_state) van por stdin con un
``request_id`` que correlaciona cada respuesta ``*_result``.
"""

import asyncio
import json
import os
import subprocess
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

from .errors import EngineError, EngineSendError
from ..utils.config import Settings, get_settings
from ..utils.logger import get_logger, log_engine_event

logger = get_logger(__name__)

EventHandler = Callable[[str, Dict[str, Any]], Awaitable[None]]

LIFECYCLE_EVENTS = {"qr", "authenticated", "ready", "disconnected", "auth_failure"}

BOT_SCRIPT_NAME = "whatsapp-bridge.js"

BOT_SCRIPT = r'''
const readline = require('readline');
const { Client, LocalAuth, MessageMedia } = require('whatsapp-web.js');

const config = JSON.parse(process.env.WA_BRIDGE_CONFIG || '{}');
const reinitializeDelayMs = Math.round((config.reinitialize_delay ?? 2) * 1000);
const SESSION_LOST_PATTERN = /Session closed|Target closed|Protocol error|detached Frame/i;

let client = null;
let reinitializeTimer = null;

const emit = (event, data) => {
    process.stdout.write(JSON.stringify({
        event: event,
        data: { ...data, timestamp: new Date().toISOString() }
    }) + '\n');
};

const reply = (action, requestId, data) => emit(`${action}_result`, { request_id: requestId, ...data });

const buildClient = () => {
    const c = new Client({
        authStrategy: new LocalAuth({
            clientId: config.client_id || 'wa-session-bridge',
            dataPath: config.session_path || './.wwebjs_auth'
        }),
        puppeteer: {
            headless: config.headless !== false,
            args: config.browser_args || ['--no-sandbox', '--disable-setuid-sandbox']
        }
    });

    c.on('qr', (qr) => emit('qr', { qr: qr }));
    c.on('authenticated', () => emit('authenticated', {}));
    c.on('ready', () => emit('ready', { phone_number: c.info?.wid?.user || null }));
    c.on('auth_failure', (msg) => emit('auth_failure', { message: String(msg) }));
    c.on('disconnected', (reason) => {
        emit('disconnected', { reason: String(reason) });
        scheduleReinitialize();
    });
    return c;
};

const initialize = () => {
    client = buildClient();
    client.initialize().catch((error) => {
        emit('disconnected', { reason: `initialize_failed: ${error.message}` });
        scheduleReinitialize();
    });
};

// Tras logout o desconexión se reinicia el cliente para emitir un QR nuevo
const scheduleReinitialize = () => {
    if (reinitializeTimer) return;
    reinitializeTimer = setTimeout(async () => {
        reinitializeTimer = null;
        try {
            await client.destroy();
        } catch (error) {
            console.error('Error destroying client:', error.message);
        }
        initialize();
    }, reinitializeDelayMs);
};

const loadMedia = async (media) => {
    if (media.url) {
        return MessageMedia.fromUrl(media.url, { unsafeMime: true, filename: media.filename });
    }
    if (media.path) {
        return MessageMedia.fromFilePath(media.path);
    }
    return new MessageMedia(media.mimetype, media.data, media.filename || null);
};

const handlers = {
    send_message: async ({ to, body, media }) => {
        const registered = await client.isRegisteredUser(to);
        if (!registered) {
            return { success: false, code: 'invalid_number', error: 'Número no registrado en WhatsApp' };
        }

        let content = body;
        const options = {};
        if (media) {
            try {
                content = await loadMedia(media);
            } catch (error) {
                return { success: false, code: 'invalid_media', error: error.message };
            }
            if (body) options.caption = body;
        }

        const result = await client.sendMessage(to, content, options);
        return { success: true, message_id: result?.id?._serialized || null };
    },

    logout: async () => {
        await client.logout();
        scheduleReinitialize();
        return { success: true };
    },

    get_state: async () => ({ success: true, state: await client.getState() })
};

const rl = readline.createInterface({ input: process.stdin });

rl.on('line', async (line) => {
    let command;
    try {
        command = JSON.parse(line);
    } catch (error) {
        console.error('Invalid command:', error.message);
        return;
    }

    const handler = handlers[command.action];
    if (!handler) {
        reply(command.action, command.request_id, {
            success: false, code: 'unknown_action', error: `Unknown action ${command.action}`
        });
        return;
    }

    try {
        reply(command.action, command.request_id, await handler(command.data || {}));
    } catch (error) {
        const code = SESSION_LOST_PATTERN.test(error.message) ? 'session_lost' : 'send_error';
        reply(command.action, command.request_id, { success: false, code: code, error: error.message });
    }
});

const shutdown = async () => {
    console.log('Shutting down WhatsApp client...');
    try {
        if (client) await client.destroy();
        process.exit(0);
    } catch (error) {
        console.error('Error during shutdown:', error.message);
        process.exit(1);
    }
};

rl.on('close', shutdown);
process.on('SIGINT', shutdown);
process.on('SIGTERM', shutdown);

console.log('Starting WhatsApp client...');
initialize();
'''


class WhatsAppEngine(ABC):
    """
    Capacidad opaca de automatización de WhatsApp Web.

    Emite eventos de ciclo de vida (qr, authenticated, ready, disconnected,
    auth_failure) al handler registrado y expone envío, logout y estado.
    """

    def __init__(self):
        self._event_handler: Optional[EventHandler] = None

    def set_event_handler(self, handler: EventHandler):
        """Registra el único consumidor de eventos del engine."""
        self._event_handler = handler

    async def _emit(self, event_type: str, data: Dict[str, Any]):
        if self._event_handler is None:
            logger.debug(f"Evento {event_type} sin handler registrado")
            return
        try:
            await self._event_handler(event_type, data)
        except Exception as e:
            logger.error(f"❌ Error en event handler {event_type}: {e}", exc_info=True)

    @abstractmethod
    async def start(self) -> bool:
        """Inicia el engine. Retorna False si no pudo iniciar."""

    @abstractmethod
    async def stop(self):
        """Detiene el engine liberando recursos."""

    @abstractmethod
    async def send_message(self, chat_id: str, body: str, media: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Envía un mensaje y retorna el id asignado por WhatsApp.

        Raises:
            EngineSendError: El engine rechazó este mensaje
            EngineError: El engine no está disponible
        """

    @abstractmethod
    async def logout(self):
        """Cierra la sesión vinculada en el engine."""

    @abstractmethod
    async def get_state(self) -> Optional[str]:
        """Estado de conexión reportado por el engine (p.ej. CONNECTED)."""

    @property
    def is_running(self) -> bool:
        return False


class NodeWhatsAppEngine(WhatsAppEngine):
    """
    Engine basado en un subprocess Node.js con whatsapp-web.js.

    Features:
    - Session persistence con LocalAuth (sobrevive reinicios)
    - Correlación request/response por request_id
    - Reinicio del proceso con exponential backoff si termina inesperadamente
    """

    def __init__(self, settings: Optional[Settings] = None):
        super().__init__()
        self.settings = settings or get_settings()
        self.session_path = Path(self.settings.WHATSAPP_SESSION_PATH)

        self.process: Optional[subprocess.Popen] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._monitor_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._restart_attempts = 0
        self._stopping = False

        self.stats = {
            "commands_sent": 0,
            "events_received": 0,
            "restarts": 0,
            "last_event_at": None
        }

    def _create_whatsapp_bot_script(self) -> Path:
        """
        Crea el script Node.js para WhatsApp Web.js integration.

        Este script corre como subprocess y comunica via JSON messages.
        """
        self.session_path.mkdir(exist_ok=True, parents=True)
        script_path = self.session_path / BOT_SCRIPT_NAME
        with open(script_path, 'w', encoding='utf-8') as f:
            f.write(BOT_SCRIPT)

        logger.info(f"✅ WhatsApp bridge script creado en {script_path}")
        return script_path

    async def start(self) -> bool:
        """
        Inicia el cliente WhatsApp subprocess.

        Returns:
            True si inició exitosamente, False si falló
        """
        if self.process and self.process.poll() is None:
            return True

        logger.info("🚀 Iniciando WhatsApp engine...")
        self._stopping = False

        try:
            script_path = self._create_whatsapp_bot_script()

            # Verificar que Node.js esté instalado
            try:
                result = subprocess.run(
                    [self.settings.WHATSAPP_NODE_BINARY, '--version'],
                    check=True, capture_output=True, text=True
                )
                logger.info(f"✅ Node.js detectado: {result.stdout.strip()}")
            except (subprocess.CalledProcessError, FileNotFoundError):
                logger.error("❌ Node.js no está instalado")
                return False

            package_json_path = self.session_path / "package.json"
            if not package_json_path.exists():
                await self._install_node_dependencies()

            engine_config = dict(self.settings.whatsapp_config)

            self.process = subprocess.Popen(
                [self.settings.WHATSAPP_NODE_BINARY, str(script_path)],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
                cwd=str(self.session_path),
                env={**os.environ, "WA_BRIDGE_CONFIG": json.dumps(engine_config)}
            )

            self._monitor_task = asyncio.create_task(self._monitor_output(self.process))

            logger.info("✅ WhatsApp engine iniciado exitosamente")
            return True

        except Exception as e:
            logger.error(f"❌ Error iniciando WhatsApp engine: {e}")
            return False

    async def _install_node_dependencies(self):
        """Instala dependencias Node.js necesarias."""
        if self.settings.is_production:
            logger.warning("⚠️ Skipping Node.js dependencies installation in production")
            return

        logger.info("📦 Instalando dependencias Node.js...")

        package_json = {
            "name": "wa-session-bridge-engine",
            "version": "1.0.0",
            "private": True,
            "dependencies": {
                "whatsapp-web.js": "^1.26.0"
            },
            "engines": {
                "node": ">=18.0.0"
            }
        }

        package_json_path = self.session_path / "package.json"
        with open(package_json_path, 'w') as f:
            json.dump(package_json, f, indent=2)

        try:
            process = await asyncio.create_subprocess_exec(
                'npm', 'install', '--omit=dev', '--no-audit', '--no-fund',
                cwd=str(self.session_path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )

            # Timeout de 5 minutos para npm install
            try:
                _, stderr = await asyncio.wait_for(process.communicate(), timeout=300)
            except asyncio.TimeoutError:
                logger.error("❌ Timeout instalando dependencias Node.js")
                process.kill()
                return

            if process.returncode == 0:
                logger.info("✅ Dependencias Node.js instaladas")
            else:
                logger.error(f"❌ Error instalando dependencias: {stderr.decode()}")

        except Exception as e:
            logger.error(f"❌ Error ejecutando npm install: {e}")

    async def _monitor_output(self, process: subprocess.Popen):
        """
        Monitorea output del subprocess y maneja eventos.

        Corre hasta que el proceso cierra stdout.
        """
        logger.info("👁️ Iniciando monitoring de WhatsApp output...")

        try:
            while True:
                line = await asyncio.to_thread(process.stdout.readline)
                if not line:
                    break
                await self._handle_line(line)

        except Exception as e:
            logger.error(f"❌ Error crítico en monitoring: {e}")
        finally:
            logger.warning("⚠️ WhatsApp output monitoring terminado")
            await self._handle_process_exit(process)

    async def _handle_line(self, line: str):
        """Procesa una línea de stdout del proceso Node.js."""
        line = line.strip()
        if not line:
            return

        if not line.startswith('{'):
            if 'error' in line.lower() or 'failed' in line.lower():
                logger.warning(f"WhatsApp warning/error: {line}")
            else:
                logger.debug(f"WhatsApp info: {line}")
            return

        try:
            event_data = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"JSON decode error: {e}, line: {line}")
            return

        await self._handle_event(event_data)

    async def _handle_event(self, event_data: Dict[str, Any]):
        """Maneja eventos y respuestas desde WhatsApp client."""
        event_type = event_data.get('event')
        data = event_data.get('data') or {}

        self.stats["events_received"] += 1
        self.stats["last_event_at"] = datetime.now()

        if isinstance(event_type, str) and event_type.endswith('_result'):
            self._resolve_request(data)
            return

        log_engine_event(logger, event_type, data)

        if event_type == 'ready':
            self._restart_attempts = 0

        if event_type in LIFECYCLE_EVENTS:
            await self._emit(event_type, data)
        else:
            logger.debug(f"📥 Evento WhatsApp no reconocido: {event_type}")

    def _resolve_request(self, data: Dict[str, Any]):
        request_id = data.get('request_id')
        future = self._pending.pop(request_id, None)
        if future is None or future.done():
            logger.debug(f"Respuesta sin request pendiente: {request_id}")
            return

        if data.get('success'):
            future.set_result(data)
        else:
            future.set_exception(EngineSendError(data.get('error', 'Error desconocido'), data.get('code')))

    async def _handle_process_exit(self, process: subprocess.Popen):
        """Falla los comandos pendientes y notifica la desconexión."""
        return_code = process.poll()
        if return_code not in (None, 0):
            logger.error(f"❌ Proceso WhatsApp terminó con código: {return_code}")

        self._fail_pending(EngineError("El proceso WhatsApp terminó"))

        if self.process is process:
            self.process = None

        if self._stopping:
            return

        await self._emit('disconnected', {"reason": "engine_exited"})
        self._restart_task = asyncio.create_task(self._schedule_restart())

    def _fail_pending(self, error: Exception):
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _schedule_restart(self):
        """Programa reinicio del proceso con exponential backoff."""
        while not self._stopping:
            if self._restart_attempts >= self.settings.MAX_ENGINE_RESTARTS:
                logger.error("❌ Máximo número de reinicios del engine alcanzado; no se reintentará")
                return

            # Exponential backoff: 5s, 10s, 20s, 40s, 80s
            backoff_delay = min(5 * (2 ** self._restart_attempts), 300)

            logger.info(f"🔄 Programando reinicio del engine en {backoff_delay}s (intento {self._restart_attempts + 1})")

            await asyncio.sleep(backoff_delay)

            self._restart_attempts += 1
            self.stats["restarts"] += 1
            if await self.start():
                return

            logger.warning(f"⚠️ Reinicio del engine falló (intento {self._restart_attempts})")

    async def _send_command(self, command: Dict[str, Any]):
        """Envía comando al proceso Node.js."""
        if not self.process or not self.process.stdin or self.process.poll() is not None:
            raise EngineError("Proceso WhatsApp no disponible")

        try:
            self.process.stdin.write(json.dumps(command) + '\n')
            self.process.stdin.flush()
            self.stats["commands_sent"] += 1
        except (OSError, ValueError) as e:
            logger.error(f"❌ Error enviando comando: {e}")
            raise EngineError(f"Error escribiendo al proceso WhatsApp: {e}") from e

    async def _request(self, action: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Envía un comando y espera su respuesta correlacionada."""
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._send_command({
                "action": action,
                "request_id": request_id,
                "data": data or {}
            })
            return await future
        finally:
            self._pending.pop(request_id, None)

    async def send_message(self, chat_id: str, body: str, media: Optional[Dict[str, Any]] = None) -> Optional[str]:
        payload: Dict[str, Any] = {"to": chat_id, "body": body}
        if media:
            payload["media"] = media

        result = await self._request("send_message", payload)
        return result.get("message_id")

    async def logout(self):
        await self._request("logout")

    async def get_state(self) -> Optional[str]:
        result = await self._request("get_state")
        return result.get("state")

    async def stop(self):
        """Detiene el engine WhatsApp gracefully."""
        logger.info("🛑 Deteniendo WhatsApp engine...")
        self._stopping = True

        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()

        process = self.process
        if process:
            try:
                process.terminate()

                # Esperar hasta 10 segundos para shutdown graceful
                try:
                    await asyncio.wait_for(asyncio.to_thread(process.wait), timeout=10.0)
                except asyncio.TimeoutError:
                    process.kill()

            except Exception as e:
                logger.error(f"❌ Error deteniendo proceso WhatsApp: {e}")
            finally:
                self.process = None

        self._fail_pending(EngineError("WhatsApp engine detenido"))
        logger.info("✅ WhatsApp engine detenido")

    @property
    def is_running(self) -> bool:
        """Verifica si el proceso Node.js está vivo."""
        return self.process is not None and self.process.poll() is None
