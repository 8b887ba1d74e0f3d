"""
asgi.py -- ASGI entry point for the billing admin API.

Deployment servers import `app` from here rather than from api.main, so the
process entry point stays stable if the application module moves.

Run with:  uvicorn asgi:app --reload
           python main.py serve
"""

from api.main import app

__all__ = ["app"]
