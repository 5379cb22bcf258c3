"""Chat channels module for turnstream."""

from turnstream.channels.base import BaseChannel

__all__ = ["BaseChannel"]
