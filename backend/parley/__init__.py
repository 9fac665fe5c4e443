"""Parley: real-time chat presence and delivery service."""

__version__ = "0.1.0"
