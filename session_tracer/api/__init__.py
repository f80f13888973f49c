"""
Session Tracer API

Usage:
    from session_tracer.api import create_app

    app = create_app()
"""

from session_tracer.api.main import create_app

__all__ = ["create_app"]
