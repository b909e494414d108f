"""Strongbox data models — re-export all models for convenient imports."""

from .setting import Setting

__all__ = [
    "Setting",
]
