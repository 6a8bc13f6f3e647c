"""DNSEndpoint custom resource model.

API objects arrive as plain JSON dicts (from either transport). ``DNSEndpoint``
parses the parts this controller reads or owns (metadata identity, generation,
the endpoint count and the whole ``status`` block) and keeps the original dict
so that ``to_dict()`` writes back every field it does not understand, including
conditions owned by other controllers.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

API_GROUP = "externaldns.k8s.io"
API_VERSION = "v1alpha1"
KIND = "DNSEndpoint"

# Condition types
CONDITION_ACCEPTED = "Accepted"
CONDITION_PROGRAMMED = "Programmed"

# Condition reasons
REASON_ACCEPTED = "Accepted"
REASON_PROGRAMMED = "Programmed"
REASON_INVALID = "Invalid"
REASON_PENDING = "Pending"
REASON_FAILED = "Failed"

# Condition status values
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

RECORDS_SENTINEL = "0/0"

_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(_TIME_FORMAT)


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp as written by the API server."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValueError(f"invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def resource_plural(kind: str) -> str:
    return kind.lower() + "s"


@dataclass
class Condition:
    type: str
    status: str = CONDITION_UNKNOWN
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        return cls(
            type=str(data["type"]),
            status=str(data.get("status", CONDITION_UNKNOWN)),
            reason=str(data.get("reason", "")),
            message=str(data.get("message", "")),
            observed_generation=int(data.get("observedGeneration") or 0),
            last_transition_time=parse_time(data.get("lastTransitionTime")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "message": self.message,
            "observedGeneration": self.observed_generation,
        }
        if self.last_transition_time is not None:
            data["lastTransitionTime"] = format_time(self.last_transition_time)
        return data


@dataclass
class DNSEndpointStatus:
    observed_generation: int = 0
    conditions: List[Condition] = field(default_factory=list)
    records: str = RECORDS_SENTINEL
    records_total: int = 0
    records_provisioned: int = 0
    last_status_change: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "DNSEndpointStatus":
        data = data or {}
        conditions = []
        for raw in data.get("conditions") or []:
            if isinstance(raw, dict) and raw.get("type"):
                conditions.append(Condition.from_dict(raw))
        return cls(
            observed_generation=int(data.get("observedGeneration") or 0),
            conditions=conditions,
            records=str(data.get("records") or RECORDS_SENTINEL),
            records_total=int(data.get("recordsTotal") or 0),
            records_provisioned=int(data.get("recordsProvisioned") or 0),
            last_status_change=parse_time(data.get("lastStatusChange")),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "observedGeneration": self.observed_generation,
            "conditions": [c.to_dict() for c in self.conditions],
            "records": self.records,
            "recordsTotal": self.records_total,
            "recordsProvisioned": self.records_provisioned,
        }
        if self.last_status_change is not None:
            data["lastStatusChange"] = format_time(self.last_status_change)
        return data


@dataclass
class DNSEndpoint:
    namespace: str
    name: str
    generation: int = 0
    uid: str = ""
    resource_version: str = ""
    endpoints: List[Dict[str, Any]] = field(default_factory=list)
    status: DNSEndpointStatus = field(default_factory=DNSEndpointStatus)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def labels(self) -> Dict[str, str]:
        return self.raw.get("metadata", {}).get("labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.raw.get("metadata", {}).get("annotations") or {}

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "DNSEndpoint":
        """Parse an API object.

        Raises:
            ValueError: if the object is not a well-formed DNSEndpoint.
        """
        if not isinstance(obj, dict):
            raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
        metadata = obj.get("metadata") or {}
        name = metadata.get("name")
        if not name:
            raise ValueError("object has no metadata.name")

        spec = obj.get("spec") or {}
        endpoints = spec.get("endpoints") or []
        if not isinstance(endpoints, list):
            raise ValueError(f"{name}: spec.endpoints is not a list")

        try:
            status = DNSEndpointStatus.from_dict(obj.get("status"))
            generation = int(metadata.get("generation") or 0)
        except (TypeError, KeyError) as e:
            raise ValueError(f"{name}: malformed status: {e}")

        return cls(
            namespace=str(metadata.get("namespace", "")),
            name=str(name),
            generation=generation,
            uid=str(metadata.get("uid", "")),
            resource_version=str(metadata.get("resourceVersion", "")),
            endpoints=list(endpoints),
            status=status,
            raw=copy.deepcopy(obj),
        )

    def to_dict(self) -> Dict[str, Any]:
        obj = copy.deepcopy(self.raw)
        obj.setdefault("apiVersion", f"{API_GROUP}/{API_VERSION}")
        obj.setdefault("kind", KIND)
        metadata = obj.setdefault("metadata", {})
        metadata["namespace"] = self.namespace
        metadata["name"] = self.name
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        status = dict(obj.get("status") or {})
        status.update(self.status.to_dict())
        obj["status"] = status
        return obj
