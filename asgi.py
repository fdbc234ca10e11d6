"""
asgi.py -- ASGI entry point for CredGate.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
