"""Worker bridge shared package."""

from .version import __version__  # noqa: F401
