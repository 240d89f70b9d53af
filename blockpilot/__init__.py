"""Browser-runtime automation for block-based programs."""

from .bootstrap import build_context
from .api.app import create_app

__all__ = ["build_context", "create_app"]
