"""
CLI interface for the property store.

Usage:
    immotrack list --portfolio "Portfolio 1"
    immotrack add "12 High Street" --type MV --heating
    immotrack check prop_1718000000000_abc123xyz 1
    immotrack data export backup.json
"""

import atexit
import json
import sys
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import PropertyStore
from .checklist import PROPERTY_TYPES, checklist_stats, is_item_completed
from .logging_config import configure_quiet_mode, enable_debug_mode, is_verbose_env
from .types import MutationResult, PropertyRecord, Settings
from .working_set import RecordFilter


# Configure quiet mode by default
# Set IMMOTRACK_VERBOSE=1 to enable debug mode via environment
if is_verbose_env():
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"immotrack {version('immotrack')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="immotrack",
    help="Track annual accounting progress for managed properties.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="IMMOTRACK_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Track annual accounting progress for managed properties."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="IMMOTRACK_STORE_PATH",
        help="Path to the store directory (default: ~/.immotrack/)"
    )
]

YesOption = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")]


class EchoNotifier:
    """Print store notifications to stderr."""

    _PREFIX = {"error": "Error: ", "warning": "Warning: "}

    def notify(self, message: str, kind: str = "info", duration_ms: int = 3000) -> None:
        typer.echo(f"{self._PREFIX.get(kind, '')}{message}", err=True)


def _get_store(store: Optional[Path]) -> PropertyStore:
    """Open and initialize the store, handling errors gracefully."""
    actual_store = store if store is not None else _get_store_override()
    try:
        ps = PropertyStore(actual_store, notifier=EchoNotifier())
        atexit.register(ps.close)
        ps.initialize()
        return ps
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _require(ps: PropertyStore, record_id: str) -> PropertyRecord:
    record = ps.get(record_id)
    if record is None:
        typer.echo(f"Error: property not found: {record_id}", err=True)
        raise typer.Exit(1)
    return record


def _finish(result: MutationResult) -> None:
    """Print the mutated record's id, or exit non-zero on failure."""
    if not result.success:
        raise typer.Exit(1)
    if _get_json_output():
        typer.echo(json.dumps(result.record.to_dict(), indent=2, ensure_ascii=False))
    else:
        typer.echo(result.record.id)


def _check_type(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in PROPERTY_TYPES:
        raise typer.BadParameter(f"must be one of {', '.join(PROPERTY_TYPES)}")
    return value


# -----------------------------------------------------------------------------
# Output Formatting
# -----------------------------------------------------------------------------

def _format_summary_line(record: PropertyRecord) -> str:
    stats = checklist_stats(record.checklist)
    demo = " (demo)" if record.is_demo else ""
    return (
        f"{record.id}  {record.name}{demo}  "
        f"[{record.portfolio}] {record.type} {record.accounting_year}  "
        f"{stats['progress']:3d}%"
    )


def _format_details(record: PropertyRecord) -> str:
    stats = checklist_stats(record.checklist)
    lines = [
        f"id: {record.id}",
        f"name: {record.name}",
        f"portfolio: {record.portfolio}",
        f"type: {record.type}" + (" (heating)" if record.has_heating else ""),
        f"accounting: {record.accounting_year} {record.accounting_period}".rstrip(),
        f"progress: {stats['progress']}% ({stats['completed']}/{stats['total']})",
    ]
    if stats["nextTask"]:
        lines.append(f"next: {stats['nextTask']}")
    if record.is_demo:
        lines.append("demo: true")
    lines.append("checklist:")
    for i, (name, state) in enumerate(record.checklist.items(), start=1):
        done = "x" if is_item_completed(name, state) else " "
        lines.append(f"  {i:2d}. [{done}] {name}")
    if record.special_features:
        lines.append("features:")
        for i, feature in enumerate(record.special_features, start=1):
            desc = f": {feature['description']}" if feature.get("description") else ""
            lines.append(f"  {i}. {feature['type']}{desc}")
    if record.notes:
        lines.append("notes:")
        for note in record.notes:
            lines.append(f"  - {note.timestamp[:10]} {note.author}: {note.text}")
    return "\n".join(lines)


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------

@app.command("list")
def list_properties(
    portfolio: Annotated[Optional[str], typer.Option(
        "--portfolio", "-p", help="Only this portfolio"
    )] = None,
    property_type: Annotated[Optional[str], typer.Option(
        "--type", "-t", help="Only this type (MV or WEG)", callback=_check_type
    )] = None,
    query: Annotated[str, typer.Option(
        "--query", "-q", help="Text to match in name, portfolio or period"
    )] = "",
    store: StoreOption = None,
):
    """List properties with their checklist progress."""
    ps = _get_store(store)
    records = ps.list_records(RecordFilter(query=query, portfolio=portfolio, type=property_type))

    if _get_json_output():
        typer.echo(json.dumps([
            {**r.to_dict(), "stats": checklist_stats(r.checklist)} for r in records
        ], indent=2, ensure_ascii=False))
        return
    if not records:
        typer.echo("No properties.", err=True)
        return
    for record in records:
        typer.echo(_format_summary_line(record))


@app.command()
def show(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    store: StoreOption = None,
):
    """Show one property in full."""
    ps = _get_store(store)
    record = _require(ps, record_id)
    if _get_json_output():
        data = record.to_dict()
        data["stats"] = checklist_stats(record.checklist)
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        typer.echo(_format_details(record))


@app.command()
def add(
    name: Annotated[str, typer.Argument(help="Property name")],
    property_type: Annotated[str, typer.Option(
        "--type", "-t", help="MV (rental management) or WEG (owners' association)",
        callback=_check_type,
    )] = "MV",
    heating: Annotated[bool, typer.Option(
        "--heating/--no-heating", help="Heating costs are billed"
    )] = False,
    year: Annotated[Optional[int], typer.Option(
        "--year", help="Accounting year (default: from settings)"
    )] = None,
    period: Annotated[str, typer.Option(
        "--period", help="Accounting period, e.g. '01.01.2024 - 31.12.2024'"
    )] = "",
    portfolio: Annotated[str, typer.Option(
        "--portfolio", "-p", help="Portfolio name"
    )] = "Standard",
    store: StoreOption = None,
):
    """Add a property. Prints the new ID."""
    ps = _get_store(store)
    if year is None:
        year = ps.load_settings().default_accounting_year
    _finish(ps.create({
        "name": name,
        "type": property_type,
        "hasHeating": heating,
        "accountingYear": year,
        "accountingPeriod": period,
        "portfolio": portfolio,
    }))


@app.command()
def edit(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    name: Annotated[Optional[str], typer.Option("--name", "-n", help="New name")] = None,
    property_type: Annotated[Optional[str], typer.Option(
        "--type", "-t", help="MV or WEG", callback=_check_type,
    )] = None,
    heating: Annotated[Optional[bool], typer.Option(
        "--heating/--no-heating", help="Heating costs are billed"
    )] = None,
    year: Annotated[Optional[int], typer.Option("--year", help="Accounting year")] = None,
    period: Annotated[Optional[str], typer.Option("--period", help="Accounting period")] = None,
    portfolio: Annotated[Optional[str], typer.Option(
        "--portfolio", "-p", help="Portfolio name"
    )] = None,
    store: StoreOption = None,
):
    """Change a property's details.

    Changing the type or heating flag rebuilds the checklist, keeping the
    state of tasks both versions share.
    """
    ps = _get_store(store)
    data = _require(ps, record_id).to_dict()
    changes = {
        "name": name,
        "type": property_type,
        "hasHeating": heating,
        "accountingYear": year,
        "accountingPeriod": period,
        "portfolio": portfolio,
    }
    data.update({k: v for k, v in changes.items() if v is not None})
    _finish(ps.update(data))


@app.command()
def note(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    text: Annotated[str, typer.Argument(help="Note text")],
    author: Annotated[str, typer.Option("--author", "-a", help="Note author")] = "User",
    store: StoreOption = None,
):
    """Add a note to a property."""
    if not text.strip():
        raise typer.BadParameter("note text must not be empty", param_hint="TEXT")
    ps = _get_store(store)
    _require(ps, record_id)
    _finish(ps.coordinator.add_note(record_id, text, author))


@app.command()
def check(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    item: Annotated[str, typer.Argument(
        help="Checklist task: its number as shown by 'show', or its full name"
    )],
    undo: Annotated[bool, typer.Option("--undo", help="Mark as not done")] = False,
    store: StoreOption = None,
):
    """Mark a checklist task as done (or not done with --undo)."""
    ps = _get_store(store)
    record = _require(ps, record_id)
    names = list(record.checklist)
    if item.isdigit() and 1 <= int(item) <= len(names):
        item = names[int(item) - 1]
    if item not in record.checklist:
        typer.echo(f"Error: no checklist task {item!r}", err=True)
        raise typer.Exit(1)
    _finish(ps.coordinator.set_checklist_item(record_id, item, completed=not undo))


@app.command()
def feature(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    feature_type: Annotated[Optional[str], typer.Argument(
        help="Feature type, e.g. 'Lift'"
    )] = None,
    description: Annotated[str, typer.Option(
        "--description", "-d", help="Feature description"
    )] = "",
    remove: Annotated[Optional[int], typer.Option(
        "--remove", help="Remove the feature at this position (1-based)"
    )] = None,
    store: StoreOption = None,
):
    """Add or remove a special feature."""
    if (feature_type is None) == (remove is None):
        typer.echo("Error: give either a feature type or --remove", err=True)
        raise typer.Exit(1)
    ps = _get_store(store)
    record = _require(ps, record_id)
    if remove is not None:
        if not 1 <= remove <= len(record.special_features):
            typer.echo(f"Error: no feature at position {remove}", err=True)
            raise typer.Exit(1)
        _finish(ps.coordinator.remove_feature(record_id, remove - 1))
    else:
        _finish(ps.coordinator.add_feature(record_id, feature_type, description))


@app.command()
def delete(
    record_id: Annotated[str, typer.Argument(help="Property ID")],
    yes: YesOption = False,
    store: StoreOption = None,
):
    """Delete a property."""
    ps = _get_store(store)
    record = _require(ps, record_id)
    if not yes and not record.is_demo:
        if not typer.confirm(f"Delete '{record.name}'?"):
            raise typer.Exit(0)
    result = ps.delete(record_id)
    if not result.success:
        raise typer.Exit(1)


@app.command()
def info(
    store: StoreOption = None,
):
    """Show store location, storage usage and backup status."""
    ps = _get_store(store)
    usage = ps.storage_info()
    last_backup = ps.backups.last_backup_at()
    records = ps.working_set.real_records()
    data = {
        "store": str(ps.config.path),
        "backend": ps.config.backend,
        "properties": len(records),
        "portfolios": sorted({r.portfolio for r in records}),
        "storage": usage.to_dict(),
        "backups": len(ps.list_backups()),
        "lastBackup": last_backup.isoformat() if last_backup else None,
    }
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
        return
    quota = (
        f" of {usage.quota_bytes / 1024 / 1024:.2f} MB ({usage.usage_percent}%)"
        if usage.quota_bytes else ""
    )
    typer.echo(f"store: {data['store']} ({data['backend']})")
    typer.echo(f"properties: {data['properties']} in {len(data['portfolios'])} portfolios")
    typer.echo(f"storage: {usage.total_bytes / 1024 / 1024:.2f} MB{quota}")
    typer.echo(f"backups: {data['backups']}, last {data['lastBackup'] or 'never'}")


# -----------------------------------------------------------------------------
# Data
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Data management: export, import, clear.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[str, typer.Argument(
        help="Output file path (use '-' for stdout)"
    )],
    store: StoreOption = None,
):
    """Export all properties and settings to JSON."""
    ps = _get_store(store)
    document = ps.export_all()
    if output == "-":
        typer.echo(document)
        return
    Path(output).write_text(document + "\n", encoding="utf-8")
    count = len(ps.working_set.real_records())
    typer.echo(f"Exported {count} properties to {output}", err=True)


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON export file to import ('-' for stdin)")],
    mode: Annotated[str, typer.Option(
        "--mode", "-m", help="Import mode: replace (overwrite all) or merge (by ID)"
    )] = "replace",
    yes: YesOption = False,
    store: StoreOption = None,
):
    """Import properties from a JSON export file."""
    if mode not in ("merge", "replace"):
        typer.echo(f"Error: --mode must be 'merge' or 'replace', got '{mode}'", err=True)
        raise SystemExit(1)

    if file == "-":
        document = sys.stdin.read()
    else:
        path = Path(file)
        if not path.exists():
            typer.echo(f"Error: file not found: {file}", err=True)
            raise SystemExit(1)
        document = path.read_text(encoding="utf-8")

    ps = _get_store(store)
    if mode == "replace" and not yes:
        existing = len(ps.working_set.real_records())
        if existing and not typer.confirm(
            f"This will replace all {existing} stored properties with the contents of {file}. Continue?"
        ):
            raise SystemExit(0)

    result = ps.import_all(document, mode=mode)
    if _get_json_output():
        typer.echo(json.dumps(result.to_dict(), indent=2))
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo(
        f"Imported {result.imported_count} properties "
        f"({result.previous_count} previously stored).",
        err=True,
    )


@data_app.command("clear")
def data_clear(
    yes: YesOption = False,
    store: StoreOption = None,
):
    """Delete all stored properties and settings. Backups are kept."""
    ps = _get_store(store)
    if not yes and not typer.confirm(
        "Delete all stored properties and settings? This cannot be undone."
    ):
        raise typer.Exit(0)
    removed = ps.clear_all()
    typer.echo(f"Cleared {removed} stored entries.", err=True)


# -----------------------------------------------------------------------------
# Backups
# -----------------------------------------------------------------------------

backup_app = typer.Typer(
    name="backup",
    help="Backup snapshots: create, list, restore, prune.",
    rich_markup_mode=None,
)
app.add_typer(backup_app)


@backup_app.command("create")
def backup_create(
    store: StoreOption = None,
):
    """Write a backup snapshot now."""
    ps = _get_store(store)
    snapshot = ps.create_backup()
    if snapshot is None:
        typer.echo("Error: backup could not be stored", err=True)
        raise typer.Exit(1)
    typer.echo(snapshot.key)


@backup_app.command("list")
def backup_list(
    store: StoreOption = None,
):
    """List backup snapshots, newest first."""
    ps = _get_store(store)
    snapshots = ps.list_backups()
    if _get_json_output():
        typer.echo(json.dumps(
            [{"key": s.key, "createdAt": s.created_iso} for s in snapshots], indent=2
        ))
        return
    if not snapshots:
        typer.echo("No backups.", err=True)
    for snapshot in snapshots:
        typer.echo(f"{snapshot.key}  {snapshot.created_iso}")


@backup_app.command("restore")
def backup_restore(
    key: Annotated[str, typer.Argument(help="Backup key as shown by 'backup list'")],
    yes: YesOption = False,
    store: StoreOption = None,
):
    """Replace stored properties with a backup snapshot."""
    ps = _get_store(store)
    if not yes and not typer.confirm(
        f"Replace all stored properties with backup {key}?"
    ):
        raise typer.Exit(0)
    result = ps.restore(key)
    if not result.success:
        typer.echo(f"Error: {result.error}", err=True)
        raise typer.Exit(1)
    typer.echo(
        f"Restored {result.imported_count} properties "
        f"({result.previous_count} previously stored).",
        err=True,
    )


@backup_app.command("prune")
def backup_prune(
    store: StoreOption = None,
):
    """Remove backups older than the retention period."""
    ps = _get_store(store)
    removed = ps.prune_backups()
    typer.echo(f"Removed {removed} old backups.", err=True)


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

settings_app = typer.Typer(
    name="settings",
    help="User settings: show, set.",
    rich_markup_mode=None,
)
app.add_typer(settings_app)

_BOOL_VALUES = {"true": True, "yes": True, "1": True, "on": True,
                "false": False, "no": False, "0": False, "off": False}


def _parse_setting(key: str, value: str):
    """Convert a command-line value to the type the setting holds."""
    defaults = Settings().to_dict()
    if key not in defaults:
        raise typer.BadParameter(
            f"unknown setting {key!r}; known: {', '.join(defaults)}", param_hint="KEY"
        )
    current = defaults[key]
    if isinstance(current, bool):
        if value.lower() not in _BOOL_VALUES:
            raise typer.BadParameter(f"{key} takes true or false", param_hint="VALUE")
        return _BOOL_VALUES[value.lower()]
    if isinstance(current, int):
        try:
            number = int(value)
        except ValueError:
            raise typer.BadParameter(f"{key} takes a whole number", param_hint="VALUE")
        if number < 0:
            raise typer.BadParameter(f"{key} must not be negative", param_hint="VALUE")
        return number
    return value


@settings_app.command("show")
def settings_show(
    store: StoreOption = None,
):
    """Show user settings."""
    ps = _get_store(store)
    data = ps.load_settings().to_dict()
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2))
        return
    for key, value in data.items():
        typer.echo(f"{key}: {json.dumps(value)}")


@settings_app.command("set")
def settings_set(
    key: Annotated[str, typer.Argument(help="Setting name, e.g. backupInterval")],
    value: Annotated[str, typer.Argument(help="New value")],
    store: StoreOption = None,
):
    """Change one user setting."""
    parsed = _parse_setting(key, value)
    ps = _get_store(store)
    settings = Settings.from_dict({key: parsed}, base=ps.load_settings())
    if not ps.save_settings(settings):
        typer.echo("Error: settings could not be saved", err=True)
        raise typer.Exit(1)
    typer.echo(f"{key}: {json.dumps(parsed)}", err=True)


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------


def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="immotrack CLI", store_path=_get_store_override())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
