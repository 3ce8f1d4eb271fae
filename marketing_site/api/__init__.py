"""HTTP layer: FastAPI application, response models and static serving."""

from .production_server import create_app

__all__ = ["create_app"]
