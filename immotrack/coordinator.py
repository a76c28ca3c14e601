"""
Mutation coordinator: the single writer of record.

Every create/update/delete goes through here. The coordinator keeps the
in-memory working set and durable storage in step:

- create/update repair the candidate, write it through the gateway, and
  only then apply it to the working set.
- delete removes the record from the working set first (so a view can
  update immediately), then writes. If the write fails, or anything raises
  along the way, the record is put back exactly where it was.

Failures reach the user through the notifier and come back to the caller
as a ``MutationResult`` with a ``FailureReason``; nothing raises out of
create, update or delete.
"""

import logging
import threading
from collections.abc import Mapping
from typing import Any, Callable, Optional, Union

from .checklist import (
    STATUS_ACCEPTED,
    is_heating_return_item,
    is_owner_approval_item,
)
from .errors import DemoRecordProtected, ImmotrackError, RecordNotFound
from .persistence import PersistenceGateway
from .protocol import DetailView, Notifier, NullDetailView, NullNotifier
from .types import (
    FailureReason,
    MutationResult,
    Note,
    PropertyRecord,
    _random_suffix,
    epoch_millis,
    format_timestamp,
    generate_id,
)
from .working_set import WorkingSet

logger = logging.getLogger(__name__)

Candidate = Union[PropertyRecord, Mapping[str, Any]]


def _as_wire(candidate: Candidate) -> dict[str, Any]:
    if isinstance(candidate, PropertyRecord):
        return candidate.to_dict()
    if isinstance(candidate, Mapping):
        return dict(candidate)
    return {}


class MutationCoordinator:
    """Applies record mutations to storage and the working set."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        working_set: WorkingSet,
        *,
        notifier: Optional[Notifier] = None,
        detail_view: Optional[DetailView] = None,
    ):
        self._gateway = gateway
        self._working_set = working_set
        self._notifier = notifier or NullNotifier()
        self._detail_view = detail_view or NullDetailView()
        self._lock = threading.RLock()

    @property
    def working_set(self) -> WorkingSet:
        return self._working_set

    def _refuse(self, reason: FailureReason, message: str, kind: str = "error",
                record: Optional[PropertyRecord] = None) -> MutationResult:
        logger.warning("%s: %s", reason.value, message)
        self._notifier.notify(message, kind)
        return MutationResult.failed(reason, message, record)

    def _find_mutable(self, record_id) -> PropertyRecord:
        """
        Raises:
            RecordNotFound: If the working set has no such record
            DemoRecordProtected: If the record is a demo record
        """
        record = self._working_set.find(record_id) if record_id else None
        if record is None:
            raise RecordNotFound(str(record_id))
        if record.is_demo:
            raise DemoRecordProtected(record_id)
        return record

    def _refuse_lookup(self, error: ImmotrackError) -> MutationResult:
        if isinstance(error, DemoRecordProtected):
            return self._refuse(FailureReason.DEMO_RECORD_PROTECTED, str(error), "warning",
                                self._working_set.find(error.record_id))
        return self._refuse(FailureReason.RECORD_NOT_FOUND, str(error))

    # -------------------------------------------------------------------------
    # Create / update
    # -------------------------------------------------------------------------

    def create(self, candidate: Candidate) -> MutationResult:
        """
        Add a new record.

        The candidate is repaired first. If it has no id, or its id is
        already in use, a fresh one is assigned.
        """
        with self._lock:
            try:
                raw = _as_wire(candidate)
                record = self._gateway.repair(raw)
                if not raw.get("id") or self._working_set.find(record.id) is not None:
                    record.id = generate_id()

                if self._working_set.name_taken(record.name):
                    return self._refuse(
                        FailureReason.DUPLICATE_NAME,
                        f"A property named '{record.name}' already exists",
                        "warning",
                    )

                now = format_timestamp(self._gateway.clock())
                record.is_demo = False
                record.created_at = now
                record.updated_at = now

                if not self._gateway.save_one(record):
                    return self._refuse(
                        FailureReason.STORAGE_FAILURE,
                        f"Property '{record.name}' could not be saved",
                        record=record,
                    )

                self._working_set.upsert(record)
            except Exception as e:
                logger.error("Unexpected error creating property: %s", e, exc_info=True)
                return self._refuse(FailureReason.UNEXPECTED_ERROR,
                                    "The property could not be created")

        self._notifier.notify(f"Property '{record.name}' created", "success")
        return MutationResult.ok(record, "created")

    def update(self, candidate: Candidate) -> MutationResult:
        """
        Save changes to an existing record.

        ``created_at`` is taken from the existing record; ``updated_at`` is
        refreshed. A changed type or heating flag gets a matching checklist,
        keeping the state of tasks that exist in both.
        """
        with self._lock:
            try:
                raw = _as_wire(candidate)
                try:
                    existing = self._find_mutable(raw.get("id"))
                except ImmotrackError as e:
                    return self._refuse_lookup(e)

                record = self._gateway.repair(raw)
                if self._working_set.name_taken(record.name, exclude_id=record.id):
                    return self._refuse(
                        FailureReason.DUPLICATE_NAME,
                        f"A property named '{record.name}' already exists",
                        "warning",
                    )

                record.is_demo = False
                record.created_at = existing.created_at
                record.updated_at = format_timestamp(self._gateway.clock())

                if not self._gateway.save_one(record):
                    return self._refuse(
                        FailureReason.STORAGE_FAILURE,
                        f"Changes to '{record.name}' could not be saved",
                        record=record,
                    )

                self._working_set.upsert(record)
            except Exception as e:
                logger.error("Unexpected error updating property: %s", e, exc_info=True)
                return self._refuse(FailureReason.UNEXPECTED_ERROR,
                                    "The property could not be updated")

        self._notifier.notify(f"Property '{record.name}' saved", "success")
        return MutationResult.ok(record, "updated")

    # -------------------------------------------------------------------------
    # Delete
    # -------------------------------------------------------------------------

    def delete(self, record_id: str) -> MutationResult:
        """
        Delete a record, optimistically.

        The record leaves the working set before the durable write. If the
        write fails or anything raises, it is reinserted at its old position
        in every collection it was removed from (unless already present).
        """
        with self._lock:
            try:
                record = self._find_mutable(record_id)
            except ImmotrackError as e:
                return self._refuse_lookup(e)

            positions: dict[str, int] = {}
            try:
                positions = self._working_set.remove(record_id)
                if self._gateway.delete_one(record_id):
                    self._detail_view.close_if_showing(record_id)
                    logger.info("Property deleted: %s", record_id)
                    self._notifier.notify(f"Property '{record.name}' deleted", "success")
                    return MutationResult.ok(record, "deleted")

                self._rollback(record, positions)
                return self._refuse(
                    FailureReason.STORAGE_FAILURE,
                    f"Property '{record.name}' could not be deleted",
                    record=record,
                )
            except Exception as e:
                logger.error("Unexpected error deleting %s: %s", record_id, e, exc_info=True)
                self._rollback(record, positions)
                return self._refuse(
                    FailureReason.UNEXPECTED_ERROR,
                    "An unexpected error occurred while deleting",
                    record=record,
                )

    def _rollback(self, record: PropertyRecord, positions: dict[str, int]) -> None:
        restored = self._working_set.reinsert(record, positions)
        if restored:
            logger.warning("Rolled back delete of %s (%s)", record.id, ", ".join(restored))

    # -------------------------------------------------------------------------
    # Editing helpers
    # -------------------------------------------------------------------------

    def _edit(self, record_id: str, change: Callable[[dict[str, Any]], None]) -> MutationResult:
        try:
            existing = self._find_mutable(record_id)
        except ImmotrackError as e:
            return self._refuse_lookup(e)
        data = existing.to_dict()
        change(data)
        return self.update(data)

    def add_note(self, record_id: str, text: str, author: str = "User") -> MutationResult:
        """Append a note. Raises ValueError for blank text."""
        text = text.strip()
        if not text:
            raise ValueError("Note text must not be empty")
        now = self._gateway.clock()
        note = Note(
            id=f"note_{epoch_millis(now)}_{_random_suffix()}",
            timestamp=format_timestamp(now),
            text=text,
            author=author.strip() or "User",
        )
        return self._edit(record_id, lambda data: data["notes"].append(note.to_dict()))

    def set_checklist_item(self, record_id: str, item: str, completed: bool = True) -> MutationResult:
        """
        Mark a checklist task done or not done.

        Status tasks (heating returns, owner approvals) get the accepted
        status added or cleared instead.

        Raises:
            KeyError: If the record's checklist has no such task
        """
        existing = self._working_set.find(record_id)
        if existing is not None and item not in existing.checklist:
            raise KeyError(item)

        def change(data: dict[str, Any]) -> None:
            state = data["checklist"][item]
            if not isinstance(state, dict):
                state = data["checklist"][item] = {}
            status_key = None
            if is_heating_return_item(item):
                status_key = "heatingStatus"
            elif is_owner_approval_item(item):
                status_key = "ownerApprovalStatus"
            if status_key is not None:
                status = [s for s in state.get(status_key) or [] if s != STATUS_ACCEPTED]
                state[status_key] = [STATUS_ACCEPTED] + status if completed else status
            state["completed"] = completed

        return self._edit(record_id, change)

    def add_feature(self, record_id: str, feature_type: str, description: str = "") -> MutationResult:
        feature = {"type": feature_type, "description": description}
        return self._edit(record_id, lambda data: data["specialFeatures"].append(feature))

    def remove_feature(self, record_id: str, index: int) -> MutationResult:
        """Remove a special feature by position. Raises IndexError if out of range."""
        existing = self._working_set.find(record_id)
        if existing is not None and not 0 <= index < len(existing.special_features):
            raise IndexError(f"No special feature at position {index}")
        return self._edit(record_id, lambda data: data["specialFeatures"].pop(index))
