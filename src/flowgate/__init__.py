"""Flowgate status-driven delivery pipeline package."""

from importlib import metadata

__all__ = ["cli", "core", "webhooks"]

try:
    __version__ = metadata.version("flowgate")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
