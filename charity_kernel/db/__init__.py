"""Database layer - store handle and declarative base classes."""

from charity_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from charity_kernel.db.engine import Store, StoreConfig

__all__ = [
    "Store",
    "StoreConfig",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
]
