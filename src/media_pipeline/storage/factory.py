"""
Factory functions for creating storage adapters and the storage manager.
"""

from typing import Any, List, Optional

from ..core.config import AdapterConfig, PipelineSettings, get_settings
from ..core.exceptions import ConfigurationError
from ..core.logging_config import get_logger
from ..core.protocols import EventNotifier
from .base import StorageAdapter
from .manager import StorageManager

logger = get_logger("storage.factory")

AVAILABLE_PROVIDERS = ("local", "s3", "memory")


def create_adapter(
    provider_name: str,
    config: Optional[AdapterConfig] = None,
    **kwargs: Any,
) -> StorageAdapter:
    """
    Create a storage adapter by provider name.

    Args:
        provider_name: 'local', 's3' or 'memory'
        config: Shared adapter configuration (limits, compression, encryption)
        **kwargs: Provider-specific constructor arguments

    Raises:
        ConfigurationError: unknown provider name.
    """
    name = provider_name.lower().strip()

    if name == "local":
        from .local import LocalStorageAdapter
        adapter: StorageAdapter = LocalStorageAdapter(config=config, **kwargs)
    elif name == "s3":
        from .s3 import S3StorageAdapter
        adapter = S3StorageAdapter(config=config, **kwargs)
    elif name == "memory":
        from .memory import MemoryStorageAdapter
        adapter = MemoryStorageAdapter(config=config, **kwargs)
    else:
        raise ConfigurationError(
            f"Unknown storage provider: {name}. Available: {', '.join(AVAILABLE_PROVIDERS)}"
        )

    logger.info(f"Storage adapter created: {adapter.name}")
    return adapter


def create_storage_manager(
    settings: Optional[PipelineSettings] = None,
    notifier: Optional[EventNotifier] = None,
    initialize: bool = True,
) -> StorageManager:
    """Primary adapter plus configured failover adapters, connected and monitored."""
    settings = settings or get_settings()
    config = settings.adapter_config()

    providers: List[str] = [settings.storage_provider]
    providers.extend(p for p in settings.failover_providers if p not in providers)

    manager = StorageManager(
        [create_adapter(name, config, **settings.adapter_kwargs(name)) for name in providers],
        options=settings.storage_manager_options(),
        notifier=notifier,
    )
    if initialize:
        manager.initialize()
    return manager
