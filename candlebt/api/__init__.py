"""HTTP job service for candlebt."""

from candlebt.api.main import app, create_app, get_app

__all__ = ["app", "create_app", "get_app"]
