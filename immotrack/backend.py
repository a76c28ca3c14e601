"""
Pluggable key/value backend factory.

Creates the key/value store based on configuration. ``sqlite`` (default)
keeps everything in ``store.db`` inside the store directory; ``memory``
keeps it in the process. External backends register via the
``immotrack.backends`` entry point group.

External backend packages provide a factory function::

    def create_kv_store(config: StoreConfig) -> KeyValueStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."immotrack.backends"]
    my-backend = "my_package.backend:create_kv_store"
"""

from .config import StoreConfig
from .protocol import KeyValueStoreProtocol


def create_kv_store(config: StoreConfig) -> KeyValueStoreProtocol:
    """
    Create the key/value store from configuration.

    Raises:
        ValueError: If the backend name is unknown
    """
    if config.backend == "sqlite":
        from .kvstore import SqliteKeyValueStore
        return SqliteKeyValueStore(config.database_path, quota_bytes=config.quota_bytes)
    if config.backend == "memory":
        from .kvstore import MemoryKeyValueStore
        return MemoryKeyValueStore(quota_bytes=config.quota_bytes)
    return _load_backend(config.backend, config)


def _load_backend(name: str, config: StoreConfig) -> KeyValueStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="immotrack.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: sqlite, memory, {', '.join(available)}"
        )
    raise ValueError(f"Unknown backend: {name!r}. Built-in backends: sqlite, memory")
