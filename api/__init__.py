"""
FastAPI host for the FindBook offline worker.

This module exposes the worker's event surface over HTTP:
- Request interception through the cache strategies
- Lifecycle, cache maintenance and background sync triggers
- Push delivery and notification interaction
- Page connections (WebSocket) receiving worker messages
"""
