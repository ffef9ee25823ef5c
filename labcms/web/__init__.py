"""Web front-end for Lab CMS."""

from .server import create_app

__all__ = ["create_app"]
