"""
In-memory working collections.

``WorkingSet`` holds what is on screen: ``current`` (every loaded record,
demo records included) and ``filtered`` (the subset matching the active
``RecordFilter``). Both are plain lists owned by the set; nothing outside
the store mutates them directly.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from .types import PropertyRecord


@dataclass
class RecordFilter:
    """Criteria for the ``filtered`` collection. Empty fields match all."""
    query: str = ""
    portfolio: Optional[str] = None
    type: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.query or self.portfolio or self.type)

    def matches(self, record: PropertyRecord) -> bool:
        if self.portfolio and record.portfolio != self.portfolio:
            return False
        if self.type and record.type != self.type:
            return False
        if self.query:
            needle = self.query.casefold()
            haystack = (record.name, record.portfolio, record.accounting_period)
            if not any(needle in field.casefold() for field in haystack):
                return False
        return True


class WorkingSet:
    """The in-memory record collections."""

    def __init__(
        self,
        records: Iterable[PropertyRecord] = (),
        record_filter: Optional[RecordFilter] = None,
    ):
        self.current: list[PropertyRecord] = list(records)
        self.filter = record_filter or RecordFilter()
        self.filtered: list[PropertyRecord] = []
        self.refilter()

    def __len__(self) -> int:
        return len(self.current)

    def __iter__(self) -> Iterator[PropertyRecord]:
        return iter(self.current)

    def find(self, record_id: str) -> Optional[PropertyRecord]:
        for record in self.current:
            if record.id == record_id:
                return record
        return None

    def replace_all(self, records: Iterable[PropertyRecord]) -> None:
        self.current = list(records)
        self.refilter()

    def set_filter(self, record_filter: RecordFilter) -> None:
        self.filter = record_filter
        self.refilter()

    def refilter(self) -> None:
        self.filtered = [r for r in self.current if self.filter.matches(r)]

    def upsert(self, record: PropertyRecord) -> None:
        """Replace the record with the same id in place, or append it."""
        for i, existing in enumerate(self.current):
            if existing.id == record.id:
                self.current[i] = record
                break
        else:
            self.current.append(record)
        self.refilter()

    def remove(self, record_id: str) -> dict[str, int]:
        """
        Remove a record from every collection holding it.

        Returns:
            Collection name ("current", "filtered") to the index the record
            occupied there, for ``reinsert``
        """
        positions = {}
        for name in ("current", "filtered"):
            collection = getattr(self, name)
            for i, record in enumerate(collection):
                if record.id == record_id:
                    positions[name] = i
                    del collection[i]
                    break
        return positions

    def reinsert(self, record: PropertyRecord, positions: dict[str, int]) -> list[str]:
        """
        Put a removed record back where it was.

        A collection that already holds the id is left alone, so repeated
        rollbacks never duplicate the record. ``filtered`` gets the record
        back if it held it before or the record matches the active filter.

        Returns:
            Names of the collections the record was reinserted into
        """
        restored = []
        for name in ("current", "filtered"):
            collection = getattr(self, name)
            if any(r.id == record.id for r in collection):
                continue
            if name == "filtered" and name not in positions and not self.filter.matches(record):
                continue
            index = min(positions.get(name, len(collection)), len(collection))
            collection.insert(index, record)
            restored.append(name)
        return restored

    def real_records(self) -> list[PropertyRecord]:
        return [r for r in self.current if not r.is_demo]

    def drop_real_records(self) -> None:
        self.replace_all(r for r in self.current if r.is_demo)

    def portfolios(self) -> list[str]:
        return sorted({r.portfolio for r in self.current})

    def name_taken(self, name: str, exclude_id: Optional[str] = None) -> bool:
        """Whether another record already uses ``name`` (case-insensitive)."""
        wanted = name.strip().casefold()
        return any(
            r.name.strip().casefold() == wanted
            for r in self.current
            if r.id != exclude_id
        )
