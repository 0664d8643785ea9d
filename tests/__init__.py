"""
Test suite para el puente de sesión WhatsApp.

Organización de tests:
- test_services/: Tests para engine, adaptador, store, notificador y gateway
- test_models/: Tests para modelos Pydantic
- test_integration.py: Tests de la API HTTP/WebSocket end-to-end
"""
