"""
Sitegate REST API.

FastAPI-based authentication API for the admin backend.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
