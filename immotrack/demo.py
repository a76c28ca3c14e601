"""
Synthetic demo properties.

Demo records show what a filled-in store looks like. They live only in the
working set: the gateway drops them on save, import skips them, and the
coordinator refuses to edit or delete them.
"""

from typing import Optional

from .checklist import (
    STATUS_ACCEPTED,
    STATUS_CORRECTION,
    TYPE_OWNERS_ASSOCIATION,
    TYPE_RENTAL,
    build_checklist,
)
from .types import Clock, Note, PropertyRecord, system_clock

DEMO_ID_PREFIX = "demo-"

_DEMO_TIMESTAMP = "2025-06-20T10:30:00.000Z"


def _rental_demo(year: int) -> PropertyRecord:
    checklist = build_checklist(TYPE_RENTAL, True)
    for name in list(checklist)[:5]:
        checklist[name]["completed"] = True
    checklist["Heating cost statement returned"]["heatingStatus"] = [STATUS_ACCEPTED]
    checklist["Heating cost statement returned"]["completed"] = True

    return PropertyRecord(
        id=f"{DEMO_ID_PREFIX}1",
        name="124 Abbey Road (Demo)",
        portfolio="Portfolio 1",
        type=TYPE_RENTAL,
        has_heating=True,
        accounting_year=year,
        accounting_period=f"01.01.{year} - 31.12.{year}",
        is_demo=True,
        notes=[
            Note(id="demo_note_1", timestamp="2025-06-20T10:30:00.000Z",
                 text="Annual accounts completed and archived.",
                 author="Property manager"),
            Note(id="demo_note_2", timestamp="2025-06-15T14:20:00.000Z",
                 text="Heating serviced, new circulation pump installed.",
                 author="Caretaker"),
        ],
        special_features=[
            {"type": "Underground parking",
             "description": "15 spaces with charging points for electric vehicles"},
            {"type": "Lift", "description": "Passenger lift modernised in 2023, step-free"},
        ],
        checklist=checklist,
        created_at=_DEMO_TIMESTAMP,
        updated_at=_DEMO_TIMESTAMP,
    )


def _association_demo(year: int) -> PropertyRecord:
    checklist = build_checklist(TYPE_OWNERS_ASSOCIATION, False)
    for name in list(checklist)[:3]:
        checklist[name]["completed"] = True
    approval = "Annual statement approved by owners' association"
    checklist[approval]["ownerApprovalStatus"] = [STATUS_CORRECTION]

    return PropertyRecord(
        id=f"{DEMO_ID_PREFIX}2",
        name="8 Garden Terrace (Demo)",
        portfolio="Portfolio 2",
        type=TYPE_OWNERS_ASSOCIATION,
        has_heating=False,
        accounting_year=year,
        accounting_period=f"01.01.{year} - 31.12.{year}",
        is_demo=True,
        notes=[
            Note(id="demo_note_3", timestamp="2025-06-10T09:15:00.000Z",
                 text="Owners' meeting planned for March.",
                 author="Accountant"),
        ],
        special_features=[
            {"type": "Garden", "description": "Shared garden maintained by contractor"},
        ],
        checklist=checklist,
        created_at=_DEMO_TIMESTAMP,
        updated_at=_DEMO_TIMESTAMP,
    )


def demo_records(clock: Optional[Clock] = None) -> list[PropertyRecord]:
    """Fresh demo records for the previous accounting year."""
    year = (clock or system_clock)().year - 1
    return [_rental_demo(year), _association_demo(year)]
