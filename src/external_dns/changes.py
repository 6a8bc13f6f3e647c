"""Change sets produced by one sync cycle and their originating resources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List

from .endpoint import Endpoint, ObjectReference


@dataclass
class Changes:
    """Endpoint-level changes computed by the plan for one sync cycle."""

    create: List[Endpoint] = field(default_factory=list)
    update_old: List[Endpoint] = field(default_factory=list)
    update_new: List[Endpoint] = field(default_factory=list)
    delete: List[Endpoint] = field(default_factory=list)
    # Desired endpoints the plan skipped. Not part of the change set itself.
    blocked: List[Endpoint] = field(default_factory=list)

    def all_endpoints(self) -> Iterator[Endpoint]:
        for bucket in (self.create, self.update_old, self.update_new, self.delete):
            yield from bucket

    def has_changes(self) -> bool:
        return bool(self.create or self.update_new or self.delete)

    def __len__(self) -> int:
        return len(self.create) + len(self.update_new) + len(self.delete)


def referenced_resources(changes: Changes, kind: str) -> Dict[str, ObjectReference]:
    """Collect the distinct resources of ``kind`` that produced ``changes``.

    Returns a mapping keyed by ``namespace/name``. Entries without a
    back-reference, or referencing another kind, are not ours to report on and
    are skipped. Callers must not rely on the mapping's order.
    """
    refs: Dict[str, ObjectReference] = {}
    for ep in changes.all_endpoints():
        ref = ep.ref
        if ref is None or ref.kind != kind:
            continue
        refs.setdefault(ref.key, ref)
    return refs


def blocked_resources(changes: Changes, kind: str) -> Dict[str, List[str]]:
    """Map ``namespace/name`` of each resource of ``kind`` to its blocked DNS names."""
    blocked: Dict[str, List[str]] = {}
    for ep in changes.blocked:
        ref = ep.ref
        if ref is None or ref.kind != kind:
            continue
        names = blocked.setdefault(ref.key, [])
        if ep.dns_name not in names:
            names.append(ep.dns_name)
    for names in blocked.values():
        names.sort()
    return blocked
