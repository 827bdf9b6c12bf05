"""Service modules for the ward census application."""

__all__ = ["census"]
