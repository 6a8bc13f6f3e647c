"""DNS endpoint and object reference types shared by sources, plan and providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

RESOURCE_LABEL_KEY = "external-dns/resource"

RECORD_TYPE_A = "A"
RECORD_TYPE_AAAA = "AAAA"
RECORD_TYPE_CNAME = "CNAME"
RECORD_TYPE_TXT = "TXT"
RECORD_TYPE_NAPTR = "NAPTR"


@dataclass(frozen=True)
class ObjectReference:
    """Back-reference from a DNS record to the cluster object that produced it."""

    kind: str
    namespace: str
    name: str
    uid: str = ""
    api_version: str = ""

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> Dict[str, str]:
        return {
            "kind": self.kind,
            "namespace": self.namespace,
            "name": self.name,
            "uid": self.uid,
            "apiVersion": self.api_version,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["ObjectReference"]:
        if not isinstance(data, dict):
            return None
        kind = data.get("kind")
        name = data.get("name")
        if not kind or not name:
            return None
        return cls(
            kind=str(kind),
            namespace=str(data.get("namespace", "")),
            name=str(name),
            uid=str(data.get("uid", "")),
            api_version=str(data.get("apiVersion", "")),
        )


@dataclass
class Endpoint:
    """A single desired (or existing) DNS record set."""

    dns_name: str
    targets: List[str] = field(default_factory=list)
    record_type: str = RECORD_TYPE_A
    ttl: int = 0
    labels: Dict[str, str] = field(default_factory=dict)
    ref: Optional[ObjectReference] = None

    @classmethod
    def from_spec(cls, data: Dict[str, Any]) -> "Endpoint":
        """Build an Endpoint from one entry of a DNSEndpoint's ``spec.endpoints``.

        Raises:
            ValueError: if the entry has no dnsName or malformed targets.
        """
        dns_name = data.get("dnsName")
        if not isinstance(dns_name, str) or not dns_name.strip():
            raise ValueError(f"endpoint has no dnsName: {data!r}")

        targets = data.get("targets") or []
        if not isinstance(targets, list) or not all(isinstance(t, str) for t in targets):
            raise ValueError(f"endpoint {dns_name} has malformed targets: {targets!r}")

        try:
            ttl = int(data.get("recordTTL") or 0)
        except (TypeError, ValueError):
            raise ValueError(f"endpoint {dns_name} has invalid recordTTL: {data.get('recordTTL')!r}")

        labels = data.get("labels") or {}
        return cls(
            dns_name=dns_name.strip().rstrip("."),
            targets=list(targets),
            record_type=str(data.get("recordType") or RECORD_TYPE_A).upper(),
            ttl=ttl,
            labels={str(k): str(v) for k, v in labels.items()} if isinstance(labels, dict) else {},
        )

    def with_label(self, key: str, value: str) -> "Endpoint":
        self.labels[key] = value
        return self

    def with_ref(self, ref: ObjectReference) -> "Endpoint":
        self.ref = ref
        return self

    def __str__(self) -> str:
        return f"{self.dns_name} {self.ttl} IN {self.record_type} {' '.join(self.targets)}"
