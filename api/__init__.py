"""API routers do call bridge."""
from .app import create_app, get_runtime

__all__ = ["create_app", "get_runtime"]
