"""
Protocol definitions for the store and its collaborators.

Defines interface contracts at two levels:
- KeyValueStoreProtocol: the host persistence layer (SQLite file locally,
  in-memory for tests, or a third-party backend)
- Notifier / DetailView: optional presentation collaborators injected into
  the store. A missing collaborator is a configuration state; the
  Null* implementations stand in for it.
"""

from typing import Callable, Optional, Protocol, runtime_checkable

from .types import PropertyRecord


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """
    String key/value persistence with an optional byte quota.

    ``set`` raises ``StorageQuotaExceeded`` when the write would exceed the
    quota; other failures propagate as the backend's own exceptions.
    """

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def size_of(self, key: str) -> int: ...

    def total_size(self) -> int: ...

    @property
    def quota_bytes(self) -> Optional[int]: ...

    def close(self) -> None: ...


@runtime_checkable
class Notifier(Protocol):
    """User-facing message sink (toast, terminal line, ...)."""

    def notify(self, message: str, kind: str = "info", duration_ms: int = 3000) -> None: ...


@runtime_checkable
class DetailView(Protocol):
    """An open detail view bound to one record."""

    def close_if_showing(self, record_id: str) -> None: ...


ChecklistRepair = Callable[[PropertyRecord], dict]


class NullNotifier:
    """Notifier used when no UI is attached."""

    def notify(self, message: str, kind: str = "info", duration_ms: int = 3000) -> None:
        pass


class NullDetailView:
    """Detail view used when no UI is attached."""

    def close_if_showing(self, record_id: str) -> None:
        pass

