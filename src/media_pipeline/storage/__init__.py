"""Pluggable, fault-tolerant storage for originals and derived artifacts."""

from .base import StorageAdapter, validate_key
from .factory import create_adapter, create_storage_manager
from .local import LocalStorageAdapter
from .manager import AdapterState, StorageManager
from .memory import MemoryStorageAdapter
from .s3 import S3StorageAdapter

__all__ = [
    "StorageAdapter",
    "LocalStorageAdapter",
    "S3StorageAdapter",
    "MemoryStorageAdapter",
    "StorageManager",
    "AdapterState",
    "create_adapter",
    "create_storage_manager",
    "validate_key",
]
