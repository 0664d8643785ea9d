"""
Configuración global para tests pytest.

Define fixtures y configuración común para todos los tests.
"""

import os
import tempfile

# Antes de importar wa_bridge: el logging se configura al importar
os.environ.setdefault("MOCK_EXTERNAL_SERVICES", "true")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("WHATSAPP_SESSION_PATH", os.path.join(tempfile.gettempdir(), "wa_bridge_test_session"))

import pytest
import pytest_asyncio
from unittest.mock import MagicMock

from wa_bridge.services.session_client import SessionClient
from wa_bridge.services.session_store import SessionStateStore
from wa_bridge.utils.config import Settings, set_settings_for_testing

from tests.fakes import FakeEngine, drive_to_ready


@pytest.fixture(scope="session")
def test_settings(tmp_path_factory):
    """Configuración de testing."""
    return Settings(
        # WhatsApp Mock
        WHATSAPP_SESSION_PATH=str(tmp_path_factory.mktemp("wwebjs_auth")),
        WHATSAPP_HEADLESS=True,
        WHATSAPP_MESSAGE_DELAY=0.0,  # Sin rate limit en tests

        # Timeouts cortos
        WHATSAPP_SEND_TIMEOUT=0.5,
        WHATSAPP_LOGOUT_TIMEOUT=0.5,
        WHATSAPP_COMMAND_TIMEOUT=0.5,
        WEBSOCKET_SEND_TIMEOUT=0.2,

        # Environment
        ENVIRONMENT="testing",
        LOG_LEVEL="DEBUG",
        DEBUG=True,
        MOCK_EXTERNAL_SERVICES=True
    )


@pytest.fixture(autouse=True)
def setup_test_settings(test_settings):
    """Auto-setup settings de testing para todos los tests."""
    set_settings_for_testing(test_settings)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def store():
    return SessionStateStore()


@pytest_asyncio.fixture
async def session_client(fake_engine, store, test_settings):
    """SessionClient iniciado sobre el FakeEngine."""
    client = SessionClient(fake_engine, store, test_settings)
    await client.start()
    yield client
    await client.stop()


@pytest_asyncio.fixture
async def ready_client(session_client, fake_engine):
    """SessionClient con la sesión en ``ready``."""
    await drive_to_ready(fake_engine, session_client)
    return session_client


@pytest.fixture
def mock_whatsapp_subprocess():
    """Mock para subprocess de WhatsApp Node.js."""
    process_mock = MagicMock()

    process_mock.poll.return_value = None  # Proceso corriendo
    process_mock.stdin.write = MagicMock()
    process_mock.stdin.flush = MagicMock()
    process_mock.stdout.readline = MagicMock(return_value="")
    process_mock.terminate = MagicMock()
    process_mock.kill = MagicMock()
    process_mock.wait = MagicMock(return_value=0)

    return process_mock


# Pytest configuration

def pytest_configure(config):
    """Configuración global de pytest."""
    config.addinivalue_line("markers", "integration: marca tests de integración")
    config.addinivalue_line("markers", "slow: marca tests lentos")
