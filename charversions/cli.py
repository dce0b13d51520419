"""
charversions/cli.py -- Command-line front end.

Documents are JSON files (a V2 card or plain field data).  Commands that
change a document write it back atomically.

Usage::

    charversions diff local.json remote.json --field description --field tags
    charversions snapshot save card.json --label "Before rewrite"
    charversions snapshot list card.json
    charversions restore card.json remote.json --ref v12
    charversions restore card.json --snapshot 3
    charversions undo card.json
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from charversions.comparator import FieldComparator
from charversions.config import load_settings
from charversions.diff_engine import FieldDiff, compare_documents
from charversions.document import (
    JsonFileDocumentWriter,
    card_data,
    load_document,
    normalize_card_definition,
)
from charversions.entry_matcher import entry_display_name
from charversions.errors import CharVersionsError, ValidationError
from charversions.schema import FieldKind
from charversions.snapshot_store import SnapshotStore
from charversions.storage import FileStorage
from charversions.text_diff import ADDED, REMOVED
from charversions.utils import format_timestamp
from charversions.version_controller import VersionController

logger = logging.getLogger(__name__)

_LINE_PREFIX = {REMOVED: "- ", ADDED: "+ "}


def _setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def _controller(args, doc_path: str) -> VersionController:
    settings = load_settings(args.settings)
    storage = FileStorage(args.storage or settings.storage_dir)
    writer = JsonFileDocumentWriter(doc_path)
    store = SnapshotStore(storage, writer=writer, max_auto_backups=settings.max_auto_backups)
    return VersionController(store, writer=writer, settings=settings)


def _load_source(path: str) -> dict:
    return normalize_card_definition(load_document(path))


def _snapshot_uid(controller: VersionController, doc: dict) -> str | None:
    return controller.store.find_identity(doc)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _render_diff(diff: FieldDiff) -> list[str]:
    out = [f"== {diff.label} ({diff.field})"]
    if diff.entries is not None:
        entries = diff.entries
        if entries.removed_entirely:
            out.append(f"  lorebook removed ({entries.local_count} entries)")
            return out
        for change in entries.meta_changes:
            out.append(f"  {change.label}: {change.local_text} -> {change.remote_text}")
        for entry in entries.added:
            out.append(f"  + {entry_display_name(entry)}")
        for entry in entries.removed:
            out.append(f"  - {entry_display_name(entry)}")
        for match in entries.modified:
            out.append(
                f"  ~ {entry_display_name(match.local)}: {', '.join(match.changed_fields)}"
            )
        if entries.unchanged_count:
            out.append(f"  {entries.unchanged_count} unchanged")
        return out

    if diff.list_changes is not None:
        if diff.list_changes.added:
            out.append("  + " + ", ".join(diff.list_changes.added))
        if diff.list_changes.removed:
            out.append("  - " + ", ".join(diff.list_changes.removed))
        return out

    if diff.is_long_text or diff.kind is FieldKind.ORDERED_LIST:
        for line in diff.text_lines():
            out.append(_LINE_PREFIX.get(line.type, "  ") + line.text)
        return out

    out.append(
        f"  {FieldComparator.truncate(FieldComparator.format(diff.local_value))} -> "
        f"{FieldComparator.truncate(FieldComparator.format(diff.remote_value))}"
    )
    return out


def _diff_as_json(diff: FieldDiff) -> dict:
    return {
        "field": diff.field,
        "label": diff.label,
        "kind": diff.kind.value,
        "local": diff.local_value,
        "remote": diff.remote_value,
    }


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_diff(args) -> int:
    local = card_data(load_document(args.local))
    remote = _load_source(args.source)
    diffs = compare_documents(local, remote, allowed_fields=args.field or None)
    if args.json:
        print(json.dumps([_diff_as_json(d) for d in diffs], indent=2, ensure_ascii=False))
    elif not diffs:
        print("No differences.")
    else:
        for diff in diffs:
            print("\n".join(_render_diff(diff)))
    return 0


def cmd_snapshot(args) -> int:
    controller = _controller(args, args.document)
    store = controller.store
    doc = load_document(args.document)

    if args.snapshot_command == "save":
        snap_id = controller.save_current_snapshot(doc, args.label or "")
        print(f"Saved snapshot #{snap_id}")
        return 0

    uid = _snapshot_uid(controller, doc)
    if args.snapshot_command == "list":
        snaps = store.list_snapshots(uid) if uid else []
        if not snaps:
            print("No snapshots.")
        for snap in snaps:
            print(f"#{snap.id:<4} {format_timestamp(snap.timestamp)}  "
                  f"{snap.source.value:<16} {snap.label}")
        return 0

    if uid is None:
        raise ValidationError(f"'{args.document}' has no saved versions.")
    if args.snapshot_command == "delete":
        store.delete_snapshot(uid, args.id)
        print(f"Deleted snapshot #{args.id}")
    elif args.snapshot_command == "rename":
        store.rename_snapshot(uid, args.id, args.label)
        print(f"Renamed snapshot #{args.id}")
    elif args.snapshot_command == "show":
        snap = store.get_snapshot(uid, args.id)
        print(json.dumps(snap.model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0


def cmd_restore(args) -> int:
    controller = _controller(args, args.document)
    doc = load_document(args.document)

    if args.snapshot is not None:
        uid = _snapshot_uid(controller, doc)
        if uid is None:
            raise ValidationError(f"'{args.document}' has no saved versions.")
        snap = controller.store.get_snapshot(uid, args.snapshot)
        source, label, ref = snap.data, f'snapshot "{snap.label}"', None
    elif args.source:
        source, label, ref = _load_source(args.source), args.source, args.ref
    else:
        raise ValidationError("Give a source file or --snapshot ID to restore from.")

    result = controller.restore(
        doc, source, args.field or None, source_label=label, source_ref=ref
    )
    print(f"Restored {len(result.applied_fields)} field(s) from {label}. "
          f"Run 'charversions undo {args.document}' to revert.")
    if result.ephemeral:
        print("Warning: the version id could not be saved into the document.")
    return 0


def cmd_undo(args) -> int:
    controller = _controller(args, args.document)
    doc = load_document(args.document)
    backup = controller.undo(doc)
    print(f"Reverted to the backup from {format_timestamp(backup.timestamp)}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="charversions", description="Compare, snapshot and restore character cards"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")
    parser.add_argument("--storage", help="Directory holding saved versions")
    parser.add_argument("--settings", help="Settings file to use")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("diff", help="Show differences between two cards")
    p.add_argument("local")
    p.add_argument("source")
    p.add_argument("--field", action="append", help="Only compare this field (repeatable)")
    p.add_argument("--json", action="store_true", help="Print differences as JSON")
    p.set_defaults(func=cmd_diff)

    p = sub.add_parser("snapshot", help="Manage saved snapshots")
    snap_sub = p.add_subparsers(dest="snapshot_command", required=True)
    s = snap_sub.add_parser("save", help="Save the card's current state")
    s.add_argument("document")
    s.add_argument("--label")
    s = snap_sub.add_parser("list", help="List snapshots, newest first")
    s.add_argument("document")
    s = snap_sub.add_parser("delete", help="Delete a snapshot")
    s.add_argument("document")
    s.add_argument("id", type=int)
    s = snap_sub.add_parser("rename", help="Rename a snapshot")
    s.add_argument("document")
    s.add_argument("id", type=int)
    s.add_argument("label")
    s = snap_sub.add_parser("show", help="Print a snapshot as JSON")
    s.add_argument("document")
    s.add_argument("id", type=int)
    p.set_defaults(func=cmd_snapshot)

    p = sub.add_parser("restore", help="Restore fields from another version")
    p.add_argument("document")
    p.add_argument("source", nargs="?")
    p.add_argument("--snapshot", type=int, help="Restore from a saved snapshot instead")
    p.add_argument("--field", action="append", help="Only restore this field (repeatable)")
    p.add_argument("--ref", help="External version reference to record")
    p.set_defaults(func=cmd_restore)

    p = sub.add_parser("undo", help="Undo the last restore")
    p.add_argument("document")
    p.set_defaults(func=cmd_undo)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return args.func(args)
    except CharVersionsError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
