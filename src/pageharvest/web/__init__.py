"""HTTP API for submitting and polling harvest jobs."""

from .main import create_app

__all__ = ["create_app"]
