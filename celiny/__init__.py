"""Celiny companion runtime core package."""

__all__ = [
    "logging",
    "runtime",
]
