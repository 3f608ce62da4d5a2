"""Ilios API access."""

from .client import IliosClient

__all__ = ["IliosClient"]
