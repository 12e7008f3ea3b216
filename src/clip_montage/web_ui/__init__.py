"""Flask JSON API for montage jobs."""

from .app import create_app

__all__ = ["create_app"]
