# Storage module
"""Persistence services for caches and the transaction log."""

from cryptosage.storage.storage import IStorageService, JsonFileStorage

__all__ = ["IStorageService", "JsonFileStorage"]
