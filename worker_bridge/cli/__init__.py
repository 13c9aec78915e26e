"""Command line entry points for the worker bridge."""

from .main import app

__all__ = ["app"]
