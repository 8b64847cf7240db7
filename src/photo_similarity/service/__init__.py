"""HTTP service exposing the cleanup workflow."""

from .server import create_app

__all__ = ["create_app"]
