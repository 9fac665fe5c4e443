"""Real-time chat: connection manager, delivery coordinator, unread ledger.

Components:
    - ConnectionManager: live sockets, rooms and concurrent delivery
    - DeliveryCoordinator: authorize/apply/fan-out handlers
    - UnreadLedger: per-(chat, user) unread counters
"""
from .coordinator import DeliveryCoordinator
from .ledger import UnreadLedger
from .manager import Connection, ConnectionManager

__all__ = ["Connection", "ConnectionManager", "DeliveryCoordinator", "UnreadLedger"]
