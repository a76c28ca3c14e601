"""
Checklist templates, repair and progress scoring.

Every property carries a checklist keyed by task name. The expected set of
tasks depends on the property type (rental management ``MV`` or owners'
association ``WEG``) and on whether heating costs are billed. Two kinds of
task track a multi-valued status instead of a plain checkbox:

- heating-return tasks (``heatingStatus``)
- owner-approval tasks (``ownerApprovalStatus``)

Status lists hold any of ``"ja"`` (accepted), ``"korrektur"`` (returned for
correction) and ``"nein"`` (rejected).
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

TYPE_RENTAL = "MV"
TYPE_OWNERS_ASSOCIATION = "WEG"
PROPERTY_TYPES = (TYPE_RENTAL, TYPE_OWNERS_ASSOCIATION)

STATUS_ACCEPTED = "ja"
STATUS_CORRECTION = "korrektur"
STATUS_REJECTED = "nein"

_COMMON_INVOICES = [
    "Utility invoices available",
    "Service invoice available",
    "Maintenance invoice available",
]

_HEATING_RETURN_ITEMS = (
    "Heating cost statement returned",
    "Heating cost summary returned",
)

_OWNER_APPROVAL_ITEMS = (
    "Approval received from owner",
    "Annual statement approved by owners' association",
)

_SPECIAL_OPTION_ITEMS = frozenset({
    "Heating cost statement returned",
    "Heating cost summary returned",
    "Approval received from owner",
    "Statement sent to owner for approval",
    "Annual statement approved by owners' association",
})

_TEMPLATES: dict[tuple[str, bool], list[str]] = {
    (TYPE_RENTAL, True): _COMMON_INVOICES + [
        "Heating cost receipts available",
        "Heating cost summary submitted",
        "Heating cost statement returned",
        "Bookings completed",
        "Statement sent to owner for approval",
        "Approval received from owner",
        "Statement sent",
    ],
    (TYPE_RENTAL, False): _COMMON_INVOICES + [
        "Bookings completed",
        "Statement prepared",
        "Statement sent to owner for approval",
        "Approval received from owner",
        "Statement booked / charged",
        "Statement sent",
    ],
    (TYPE_OWNERS_ASSOCIATION, True): _COMMON_INVOICES + [
        "Heating cost summary submitted",
        "Heating cost summary returned",
        "Bookings prepared",
        "Receipts audited by advisory board / auditor",
        "Annual statement sent with invitation to owners",
        "Annual statement approved by owners' association",
        "Annual statement booked / charged",
        "Separate-ownership management: operating cost statement sent to tenants",
    ],
    (TYPE_OWNERS_ASSOCIATION, False): _COMMON_INVOICES + [
        "Bookings prepared",
        "Receipts audited by advisory board / auditor",
        "Annual statement sent with invitation to owners",
        "Annual statement approved by owners' association",
        "Annual statement booked / charged",
        "Separate-ownership management: operating cost statement sent to tenants",
    ],
}


def template_items(property_type: str, has_heating: bool) -> Optional[list[str]]:
    """Task names for a property type, or None for an unknown type."""
    items = _TEMPLATES.get((property_type, bool(has_heating)))
    return list(items) if items is not None else None


def is_heating_return_item(name: str) -> bool:
    return any(item in name for item in _HEATING_RETURN_ITEMS)


def is_owner_approval_item(name: str) -> bool:
    return any(item in name for item in _OWNER_APPROVAL_ITEMS)


def has_special_option(name: str) -> bool:
    return name in _SPECIAL_OPTION_ITEMS


def new_item_state(name: str) -> dict[str, Any]:
    """Fresh, not-started state for a task."""
    return {
        "completed": False,
        "hasSpecialOption": has_special_option(name),
        "specialOptionChecked": False,
        "heatingStatus": [] if is_heating_return_item(name) else None,
        "ownerApprovalStatus": [] if is_owner_approval_item(name) else None,
    }


def build_checklist(property_type: str, has_heating: bool) -> dict[str, Any]:
    """Fresh checklist for a property type; empty for unknown types."""
    return {name: new_item_state(name) for name in template_items(property_type, has_heating) or []}


def _as_state(value: Any) -> dict[str, Any]:
    """Item states may be bare booleans in older data."""
    if isinstance(value, dict):
        return value
    if isinstance(value, bool):
        return {"completed": value}
    return {}


def _carry_over(name: str, old: Any) -> dict[str, Any]:
    state = new_item_state(name)
    prev = _as_state(old)
    state["completed"] = prev.get("completed") is True
    state["specialOptionChecked"] = prev.get("specialOptionChecked") is True
    if state["heatingStatus"] is not None and isinstance(prev.get("heatingStatus"), list):
        state["heatingStatus"] = list(prev["heatingStatus"])
    if state["ownerApprovalStatus"] is not None and isinstance(prev.get("ownerApprovalStatus"), list):
        state["ownerApprovalStatus"] = list(prev["ownerApprovalStatus"])
    return state


def repair_checklist(record) -> dict[str, Any]:
    """
    Return a checklist whose tasks match the record's type and heating flag.

    A checklist that already has exactly the expected task names is returned
    unchanged. Otherwise a fresh template is built and the state of every
    task present in both is carried over. Unknown property types leave the
    checklist as given.

    Args:
        record: Anything with ``type``, ``has_heating``, ``checklist``
            and ``name`` attributes (normally a PropertyRecord)
    """
    expected = template_items(record.type, record.has_heating)
    checklist = record.checklist if isinstance(record.checklist, dict) else {}
    if expected is None:
        return checklist
    if set(expected) == set(checklist):
        return checklist

    logger.debug("Checklist repaired for property %r", record.name)
    return {name: _carry_over(name, checklist.get(name)) for name in expected}


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

def _status_list(name: str, state: dict[str, Any]) -> Optional[list]:
    if is_heating_return_item(name):
        status = state.get("heatingStatus")
    elif is_owner_approval_item(name):
        status = state.get("ownerApprovalStatus")
    else:
        return None
    return status if isinstance(status, list) else []


def is_item_completed(name: str, value: Any) -> bool:
    state = _as_state(value)
    status = _status_list(name, state)
    if status is not None:
        return STATUS_ACCEPTED in status
    return state.get("completed") is True


def calculate_progress(checklist: dict[str, Any]) -> int:
    """
    Overall completion percentage (0-100).

    Completed tasks score 1.0. Status tasks returned for correction score
    0.7 and rejected ones 0.3. Each accepted status adds a 0.05 bonus.
    """
    if not checklist:
        return 0

    base = 0.0
    bonus = 0.0
    for name, value in checklist.items():
        status = _status_list(name, _as_state(value)) or []
        if is_item_completed(name, value):
            base += 1.0
        elif STATUS_CORRECTION in status:
            base += 0.7
        elif STATUS_REJECTED in status:
            base += 0.3
        if STATUS_ACCEPTED in status:
            bonus += 0.1

    total = base + bonus * 0.5
    return min(100, round(total / len(checklist) * 100))


def progress_status(progress: int) -> str:
    if progress == 0:
        return "notStarted"
    if progress == 100:
        return "completed"
    return "inProgress"


def next_task(checklist: dict[str, Any]) -> Optional[str]:
    """First task, in checklist order, that is not yet completed."""
    for name, value in checklist.items():
        if not is_item_completed(name, value):
            return name
    return None


def checklist_stats(checklist: dict[str, Any]) -> dict[str, Any]:
    total = len(checklist)
    completed = sum(1 for name, value in checklist.items() if is_item_completed(name, value))
    progress = calculate_progress(checklist)
    return {
        "total": total,
        "completed": completed,
        "remaining": total - completed,
        "progress": progress,
        "status": progress_status(progress),
        "nextTask": next_task(checklist),
    }
