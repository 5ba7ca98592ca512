"""Upstream package for the outbound realtime connection."""
from .client import connect_upstream

__all__ = [
    "connect_upstream",
]
