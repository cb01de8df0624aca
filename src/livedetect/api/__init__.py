"""
REST API module for LiveDetect.

Provides FastAPI endpoints for the UI collaborator.
"""

from .server import create_app, start_server

__all__ = ["create_app", "start_server"]
