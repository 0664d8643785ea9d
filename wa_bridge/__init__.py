"""
WhatsApp Session Bridge

Puente entre el dashboard escolar y una sesión de WhatsApp Web automatizada
con whatsapp-web.js: expone el ciclo de vida de la sesión (QR, autenticación,
listo, desconexión) por HTTP/WebSocket y despacha comunicados a múltiples
destinatarios cuando la sesión está lista.
"""

__version__ = "1.0.0"
__description__ = "Puente de sesión WhatsApp Web para el dashboard escolar"
