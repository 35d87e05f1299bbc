"""HTTP surface for the staff actions."""

from .app import create_app, router

__all__ = ["create_app", "router"]
