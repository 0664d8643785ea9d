"""
Configuración centralizada del puente usando Pydantic Settings.

Maneja variables de entorno, validación y configuración por defecto
para el engine WhatsApp, la API HTTP y el canal WebSocket.
"""

from typing import List, Dict, Any, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Configuración centralizada del sistema.

    Carga automáticamente desde variables de entorno y .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # ================================
    # WhatsApp Configuration
    # ================================
    WHATSAPP_SESSION_PATH: str = Field(default="./.wwebjs_auth", description="Path para sesión WhatsApp (LocalAuth)")
    WHATSAPP_CLIENT_ID: str = Field(default="wa-session-bridge", description="clientId de LocalAuth")
    WHATSAPP_HEADLESS: bool = Field(default=True, description="Modo headless para WhatsApp")
    WHATSAPP_NODE_BINARY: str = Field(default="node", description="Ejecutable de Node.js")
    WHATSAPP_BROWSER_ARGS: str = Field(
        default=(
            "--no-sandbox,--disable-setuid-sandbox,--disable-dev-shm-usage,"
            "--disable-accelerated-2d-canvas,--no-first-run,--no-zygote,--disable-gpu"
        ),
        description="Argumentos del browser"
    )

    # ================================
    # Envío y timeouts
    # ================================
    WHATSAPP_MESSAGE_DELAY: float = Field(default=1.5, ge=0.0, description="Delay entre mensajes de un lote")
    WHATSAPP_SEND_TIMEOUT: float = Field(default=30.0, gt=0.0, description="Timeout por destinatario")
    WHATSAPP_LOGOUT_TIMEOUT: float = Field(default=15.0, gt=0.0, description="Timeout de logout en el engine")
    WHATSAPP_COMMAND_TIMEOUT: float = Field(default=10.0, gt=0.0, description="Timeout de comandos de estado")
    WHATSAPP_REINITIALIZE_DELAY: float = Field(default=2.0, ge=0.0, description="Espera antes de reinicializar el cliente")
    MAX_ENGINE_RESTARTS: int = Field(default=5, ge=0, description="Reinicios máximos del proceso Node.js")

    # ================================
    # FastAPI / WebSocket Configuration
    # ================================
    PORT: int = Field(default=3001, description="Puerto del servidor HTTP/WS")
    HOST: str = Field(default="0.0.0.0", description="Host del servidor")
    CORS_ORIGINS: str = Field(default="*", description="Orígenes CORS permitidos")
    WEBSOCKET_SEND_TIMEOUT: float = Field(default=5.0, gt=0.0, description="Timeout por suscriptor en broadcast")

    # ================================
    # Environment Configuration
    # ================================
    ENVIRONMENT: str = Field(default="development", description="Entorno: development/staging/production/testing")
    LOG_LEVEL: str = Field(default="INFO", description="Nivel de logging")
    DEBUG: bool = Field(default=False, description="Modo debug")

    # ================================
    # Testing
    # ================================
    MOCK_EXTERNAL_SERVICES: bool = Field(default=False, description="Mock servicios externos")

    @field_validator('WHATSAPP_SESSION_PATH')
    @classmethod
    def validate_session_path(cls, v):
        """Valida y crea directorio de sesión si no existe."""
        path = Path(v)
        path.mkdir(parents=True, exist_ok=True)
        return str(path.absolute())

    @field_validator('ENVIRONMENT')
    @classmethod
    def validate_environment(cls, v):
        """Valida que el environment sea válido."""
        valid_envs = ['development', 'staging', 'production', 'testing']
        if v not in valid_envs:
            raise ValueError(f'Environment debe ser uno de: {valid_envs}')
        return v

    @field_validator('LOG_LEVEL')
    @classmethod
    def validate_log_level(cls, v):
        """Valida nivel de logging."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level debe ser uno de: {valid_levels}')
        return v.upper()

    # ================================
    # Computed Properties
    # ================================

    @property
    def is_production(self) -> bool:
        """Verifica si está en producción."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Convierte CORS origins de string a lista."""
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def browser_args(self) -> List[str]:
        """Convierte argumentos del browser a lista."""
        return [arg.strip() for arg in self.WHATSAPP_BROWSER_ARGS.split(",") if arg.strip()]

    @property
    def whatsapp_config(self) -> Dict[str, Any]:
        """Configuración para el engine WhatsApp."""
        return {
            "session_path": self.WHATSAPP_SESSION_PATH,
            "client_id": self.WHATSAPP_CLIENT_ID,
            "headless": self.WHATSAPP_HEADLESS,
            "node_binary": self.WHATSAPP_NODE_BINARY,
            "browser_args": self.browser_args,
            "reinitialize_delay": self.WHATSAPP_REINITIALIZE_DELAY,
            "max_restarts": self.MAX_ENGINE_RESTARTS
        }


# Instancia global de configuración
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Obtiene instancia singleton de configuración.

    Returns:
        Settings: Configuración del sistema
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Para testing - permite inyectar configuración mock
def set_settings_for_testing(test_settings: Settings):
    """
    Establece configuración para testing.

    Args:
        test_settings: Configuración de prueba
    """
    global _settings
    _settings = test_settings
