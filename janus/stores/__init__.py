"""Persistence helpers for janus."""

from .state import StateStore

__all__ = ["StateStore"]
