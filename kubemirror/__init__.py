"""kubemirror - watch-driven local mirror of Kubernetes workloads."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubemirror")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
