"""HTTP surface for the call-steering engine."""

from callsteer.api.app import create_app

__all__ = ["create_app"]
