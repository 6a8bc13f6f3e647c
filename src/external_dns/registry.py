"""Ownership registry: which resource owns each DNS name we manage.

Persisted as a JSON state file so that records can be deleted, and their
deletion attributed to the right resource, after the resource that created
them is gone.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .changes import Changes
from .endpoint import RECORD_TYPE_A, Endpoint, ObjectReference

logger = logging.getLogger(__name__)

STATE_VERSION = 2


@dataclass
class OwnedRecord:
    dns_name: str
    targets: List[str] = field(default_factory=list)
    record_type: str = RECORD_TYPE_A
    ref: Optional[ObjectReference] = None

    def to_endpoint(self) -> Endpoint:
        return Endpoint(
            dns_name=self.dns_name,
            targets=list(self.targets),
            record_type=self.record_type,
            ref=self.ref,
        )


class StateStore:
    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Dict[str, OwnedRecord]:
        if not self.path.exists():
            return {}
        try:
            state = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            return {}

        if not isinstance(state, dict) or state.get("version") != STATE_VERSION:
            logger.warning(f"Ignoring state file {self.path} with unsupported layout")
            return {}

        records: Dict[str, OwnedRecord] = {}
        for dns_name, entry in (state.get("records") or {}).items():
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed state entry for {dns_name}")
                continue
            records[dns_name] = OwnedRecord(
                dns_name=dns_name,
                targets=[str(t) for t in entry.get("targets") or []],
                record_type=str(entry.get("recordType") or RECORD_TYPE_A),
                ref=ObjectReference.from_dict(entry.get("ref")),
            )
        return records

    def save(self, records: Dict[str, OwnedRecord]) -> None:
        state: Dict[str, Any] = {
            "version": STATE_VERSION,
            "records": {
                name: {
                    "targets": r.targets,
                    "recordType": r.record_type,
                    "ref": r.ref.to_dict() if r.ref else None,
                }
                for name, r in records.items()
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), "utf-8")
        tmp_path.replace(self.path)


def record_applied(
    records: Dict[str, OwnedRecord], changes: Changes, failed: List[Endpoint]
) -> None:
    """Update ownership in place after the provider applied ``changes``.

    Creates and updates are claimed even when they failed: a partial apply can
    leave some targets upstream, and only an owned name gets an update on the
    next cycle. A failed delete keeps its previous owner.
    """
    failed_ids = {id(ep) for ep in failed}

    for ep in changes.delete:
        if id(ep) not in failed_ids:
            records.pop(ep.dns_name, None)

    for ep in changes.create + changes.update_new:
        records[ep.dns_name] = OwnedRecord(
            dns_name=ep.dns_name,
            targets=list(ep.targets),
            record_type=ep.record_type,
            ref=ep.ref,
        )
