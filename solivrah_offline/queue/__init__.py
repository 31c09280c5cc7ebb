"""
Durable queue of user mutations awaiting delivery.
"""

from .store import PendingOperationStore
from .types import DeadLetter, DeliveryState, OperationType, PendingOperation

__all__ = [
    "PendingOperationStore",
    "PendingOperation",
    "OperationType",
    "DeliveryState",
    "DeadLetter",
]
