"""
Renderizado de códigos de emparejamiento WhatsApp.

Convierte el string opaco emitido por whatsapp-web.js en una imagen SVG
embebida como data URL, lista para un <img src> en el dashboard.
"""

import base64
import io
from typing import Optional

import qrcode
import qrcode.image.svg

from .logger import get_logger

logger = get_logger(__name__)

SVG_DATA_URL_PREFIX = "data:image/svg+xml;base64,"


def render_qr_data_url(code: str) -> Optional[str]:
    """
    Renderiza un código QR como data URL SVG.

    Args:
        code: String de emparejamiento emitido por el engine

    Returns:
        Data URL base64 o None si no se pudo renderizar
    """
    if not code:
        return None

    try:
        image = qrcode.make(code, image_factory=qrcode.image.svg.SvgPathImage, border=2)
        buffer = io.BytesIO()
        image.save(buffer)
    except Exception as e:
        logger.warning(f"⚠️ No se pudo renderizar el QR, se usará el código crudo: {e}")
        return None

    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"{SVG_DATA_URL_PREFIX}{encoded}"
