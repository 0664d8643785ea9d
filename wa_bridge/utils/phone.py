"""
Formateo de destinatarios a chat ids de WhatsApp Web.
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")
_CHAT_SUFFIXES = ("@c.us", "@g.us")


def to_chat_id(recipient: str) -> Optional[str]:
    """
    Convierte un número tipo teléfono en chat id (``593991234567@c.us``).

    Los ids que ya terminan en ``@c.us`` o ``@g.us`` se respetan.
    Devuelve None si el destinatario no contiene dígitos.
    """
    value = (recipient or "").strip()
    if value.endswith(_CHAT_SUFFIXES):
        user = value.split("@", 1)[0]
        return value if user else None

    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return None
    return f"{digits}@c.us"
