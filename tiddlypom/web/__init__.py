"""HTTP boundary: the TiddlyWeb protocol served with FastAPI."""

from .server import TiddlyServer, create_app

__all__ = ['TiddlyServer', 'create_app']
