"""
Immotrack

A client-side store of property records for tracking annual accounting
work: a checklist per property, notes, special features, automatic
backups and JSON import/export.

Quick Start:
    from immotrack import PropertyStore

    with PropertyStore() as store:  # uses ~/.immotrack/
        store.initialize()
        result = store.create({"name": "12 High Street", "type": "MV"})
        print(result.record.id)

CLI Usage:
    immotrack list
    immotrack add "12 High Street" --type WEG --heating
    immotrack data export backup.json

Default Store:
    ~/.immotrack/ (created automatically).
    Override with IMMOTRACK_STORE_PATH or an explicit path argument.

Environment Variables:
    IMMOTRACK_STORE_PATH  - Override default store location
    IMMOTRACK_VERBOSE     - Set to 1 for debug logging

Configuration is persisted in a TOML file within the store directory.
"""

from .api import PropertyStore
from .types import (
    FailureReason,
    ImportResult,
    MutationResult,
    Note,
    PropertyRecord,
    Settings,
)
from .working_set import RecordFilter

__version__ = "0.1.0"
__all__ = [
    "PropertyStore",
    "PropertyRecord",
    "Note",
    "Settings",
    "MutationResult",
    "ImportResult",
    "FailureReason",
    "RecordFilter",
]
