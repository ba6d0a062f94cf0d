"""API Routes"""

from . import providers

__all__ = ["providers"]
