"""API routes"""

from session_tracer.api.routes import health, monitoring

__all__ = ["health", "monitoring"]
