"""API Routes Package."""

from api.routes import bling, health, rps

__all__ = [
    "bling",
    "health",
    "rps",
]
