"""In-process presence tracking (who is connected, on which handles)."""
from .registry import PresenceRegistry

__all__ = ["PresenceRegistry"]
