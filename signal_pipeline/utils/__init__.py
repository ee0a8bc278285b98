"""Utility modules for the signal pipeline package."""

from .retry import ExponentialBackoff

__all__ = [
    "ExponentialBackoff",
]
