"""Entrypoint module for the census FastAPI service."""

from __future__ import annotations

import uvicorn
from fastapi import FastAPI

from .app import app

__all__ = ["app", "get_app", "main"]


def get_app() -> FastAPI:
    """Return the configured FastAPI application."""

    return app


def main() -> None:
    """Run the census service using ``uvicorn``."""

    uvicorn.run("services.census.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":  # pragma: no cover
    main()
