"""
Servicios del puente de sesión.

Este módulo contiene los servicios:
- WhatsAppEngine: Capacidad externa (whatsapp-web.js vía Node.js)
- SessionClient: Adaptador de eventos del engine hacia el store
- SessionStateStore: Fuente única de verdad del estado de sesión
- RealtimeNotifier: Difusión de transiciones por WebSocket
- DispatchGateway: Envío secuencial de comunicados
"""
