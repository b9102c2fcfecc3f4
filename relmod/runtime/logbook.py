"""Append-only ledger of module evaluations."""
from __future__ import annotations

from datetime import datetime, timezone
import hashlib
import json

from ..constants import LOGBOOK_FILE
from .registry import ModuleEvaluation


def definitions_digest(identifiers) -> str:
    """SHA-256 of a canonical encoding of an identifier set."""

    canonical = json.dumps(sorted(str(i) for i in identifiers), separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_logbook_entry(evaluation: ModuleEvaluation) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "module": str(evaluation.name),
        "definitions": sorted(str(i) for i in evaluation.definitions),
        "added": sorted(str(i) for i in evaluation.added),
        "removed": sorted(str(i) for i in evaluation.removed),
        "digest": definitions_digest(evaluation.definitions),
    }


def record_evaluation(evaluation: ModuleEvaluation, path=LOGBOOK_FILE) -> dict:
    """Append this evaluation's outcome to the logbook."""

    entry = build_logbook_entry(evaluation)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry) + "\n")

    print(f"  📜 Recorded {entry['module']} → {path}")
    return entry


def read_logbook(path=LOGBOOK_FILE, limit=None) -> list[dict]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            lines = [line for line in f.readlines() if line.strip()]
    except FileNotFoundError:
        return []
    if limit is not None:
        lines = lines[-limit:]
    return [json.loads(line) for line in lines]


def show_logbook(limit=10, path=LOGBOOK_FILE):
    """Display recent logbook entries."""

    entries = read_logbook(path, limit)
    if not entries:
        print("No logbook yet.")
        return

    print(f"\nrelmod logbook — last {len(entries)} entries:")
    for e in reversed(entries):
        print(
            f"• {e['timestamp']}  {e['module']}  "
            f"[{len(e['definitions'])} defs]  {e['digest'][:12]}…"
        )
        if e["added"]:
            print(f"    + {' '.join(e['added'])}")
        if e["removed"]:
            print(f"    - {' '.join(e['removed'])}")


__all__ = [
    "build_logbook_entry",
    "definitions_digest",
    "read_logbook",
    "record_evaluation",
    "show_logbook",
]
