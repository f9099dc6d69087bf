"""CONTILOOP — an autonomous propose → validate → integrate loop."""

from contiloop.identity import __codename__, __tagline__, __version__

__all__ = ["__codename__", "__tagline__", "__version__"]
