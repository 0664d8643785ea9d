"""
Modelos Pydantic para validación de datos.

Este módulo contiene los modelos:
- session.py: Estados, eventos e instantáneas de la sesión
- dispatch.py: Solicitudes y resultados de envío de comunicados
- api.py: Requests y responses de la API HTTP
"""
