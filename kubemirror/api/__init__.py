"""Read-only REST API over the local cache."""

from kubemirror.api.app import create_app

__all__ = ["create_app"]
