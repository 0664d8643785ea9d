"""
Utilidades y helpers para el puente.

Este módulo contiene:
- config.py: Gestión de configuración
- logger.py: Configuración de logging
- qr.py: Renderizado de códigos QR
- phone.py: Formateo de destinatarios
"""
