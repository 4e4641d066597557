"""API Package.

FastAPI server for the NFSe pipeline.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
