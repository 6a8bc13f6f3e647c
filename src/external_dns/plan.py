"""Compute the changes needed to move the provider towards the desired records."""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, FrozenSet, Iterable, List, Optional

from .changes import Changes
from .endpoint import Endpoint
from .registry import OwnedRecord

logger = logging.getLogger(__name__)


def parse_exclude_patterns(value: str) -> List[re.Pattern]:
    """Parse domain exclusion patterns: exact names, ``*``/``?`` wildcards, or ``~regex``."""
    patterns: List[re.Pattern] = []
    if not value:
        return patterns

    for raw_item in value.split(","):
        item = raw_item.strip()
        if not item:
            continue

        try:
            if item.startswith("~"):
                patterns.append(re.compile(item[1:], re.IGNORECASE))
            elif "*" in item or "?" in item:
                regex_str = re.escape(item).replace(r"\*", ".*").replace(r"\?", ".")
                patterns.append(re.compile(f"^{regex_str}$", re.IGNORECASE))
            else:
                patterns.append(re.compile(f"^{re.escape(item)}$", re.IGNORECASE))
            logger.debug(f"Added exclusion pattern: {item}")
        except re.error as e:
            logger.warning(f"Invalid exclusion pattern '{item}': {e}")

    return patterns


def is_domain_excluded(domain: str, patterns: List[re.Pattern]) -> bool:
    return any(pattern.search(domain) for pattern in patterns)


class Planner:
    """Diff desired endpoints against provider state and the ownership registry.

    Only names recorded in the registry are ever updated or deleted; names
    that exist upstream without an owner belong to someone else.
    """

    def __init__(
        self,
        *,
        exclude_patterns: Optional[List[re.Pattern]] = None,
        supported_record_types: Optional[FrozenSet[str]] = None,
    ):
        self.exclude_patterns = exclude_patterns or []
        self.supported_record_types = supported_record_types

    def _desired_by_name(self, desired: Iterable[Endpoint], blocked: List[Endpoint]) -> Dict[str, Endpoint]:
        by_name: Dict[str, Endpoint] = {}
        ordered = sorted(desired, key=lambda e: (e.ref.key if e.ref else "", e.dns_name))
        for ep in ordered:
            if is_domain_excluded(ep.dns_name, self.exclude_patterns):
                logger.debug(f"Excluding domain '{ep.dns_name}' (matches exclusion pattern)")
                blocked.append(ep)
                continue
            if self.supported_record_types and ep.record_type not in self.supported_record_types:
                logger.debug(f"Skipping {ep.record_type} record '{ep.dns_name}' (unsupported type)")
                blocked.append(ep)
                continue
            if not ep.targets:
                logger.debug(f"Skipping '{ep.dns_name}' (no targets)")
                continue

            existing = by_name.get(ep.dns_name)
            if existing is None:
                by_name[ep.dns_name] = dataclasses.replace(
                    ep, targets=list(dict.fromkeys(ep.targets)), labels=dict(ep.labels)
                )
            elif existing.ref == ep.ref:
                existing.targets.extend(t for t in ep.targets if t not in existing.targets)
            else:
                owner = existing.ref.key if existing.ref else "unknown"
                claimant = ep.ref.key if ep.ref else "unknown"
                logger.warning(
                    f"Domain '{ep.dns_name}' claimed by multiple resources; "
                    f"keeping '{owner}', ignoring '{claimant}'"
                )
                blocked.append(ep)
        return by_name

    def calculate(
        self,
        desired: Iterable[Endpoint],
        current: Dict[str, Endpoint],
        owned: Dict[str, OwnedRecord],
    ) -> Changes:
        changes = Changes()
        wanted = self._desired_by_name(desired, changes.blocked)

        for name, ep in sorted(wanted.items()):
            upstream = current.get(name)
            owner = owned.get(name)
            if upstream is None:
                changes.create.append(ep)
            elif owner is None:
                logger.warning(f"Domain '{name}' exists upstream but is not owned; skipping")
                changes.blocked.append(ep)
            elif sorted(upstream.targets) != sorted(ep.targets) or owner.ref != ep.ref:
                changes.update_old.append(
                    Endpoint(
                        dns_name=name,
                        targets=list(upstream.targets),
                        record_type=upstream.record_type,
                        ref=owner.ref,
                    )
                )
                changes.update_new.append(ep)

        for name, owner in sorted(owned.items()):
            if name in wanted:
                continue
            upstream = current.get(name)
            stale = owner.to_endpoint()
            stale.targets = list(upstream.targets) if upstream else []
            changes.delete.append(stale)

        return changes
