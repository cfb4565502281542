"""HTTP surface for the hold engine."""

from piecerate_engine.api.app import create_app

__all__ = ["create_app"]
