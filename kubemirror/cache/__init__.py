"""Local cache of watched resources."""

from kubemirror.cache.store import LocalCache

__all__ = ["LocalCache"]
