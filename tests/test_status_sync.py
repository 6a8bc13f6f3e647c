"""Unit tests for DNSEndpointStatusSyncer.

Uses an in-memory status client that mimics the API server's
resourceVersion check, so conflicts behave like they do against a cluster.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from external_dns.changes import Changes
from external_dns.conditions import get_condition, set_programmed
from external_dns.dnsendpoint import (
    CONDITION_ACCEPTED,
    CONDITION_FALSE,
    CONDITION_PROGRAMMED,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    REASON_FAILED,
    REASON_PENDING,
    DNSEndpoint,
)
from external_dns.endpoint import Endpoint, ObjectReference
from external_dns.status_client import (
    ConflictError,
    NotFoundError,
    StatusClient,
    StatusClientError,
)
from external_dns.status_sync import ACCEPTED_MESSAGE, DNSEndpointStatusSyncer

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# =============================================================================
# Mock Status Client
# =============================================================================


class MockStatusClient(StatusClient):
    """In-memory status client with optimistic concurrency and call tracking."""

    def __init__(
        self,
        objects: List[Dict[str, Any]],
        failing_gets: Optional[Set[str]] = None,
        failing_updates: Optional[Set[str]] = None,
    ):
        self._objects: Dict[str, Dict[str, Any]] = {}
        for obj in objects:
            meta = obj["metadata"]
            meta.setdefault("resourceVersion", "1")
            self._objects[f"{meta['namespace']}/{meta['name']}"] = obj
        self.failing_gets = failing_gets or set()
        self.failing_updates = failing_updates or set()
        self.get_calls: List[str] = []
        self.update_calls: List[str] = []

    def get(self, namespace: str, name: str) -> DNSEndpoint:
        key = f"{namespace}/{name}"
        self.get_calls.append(key)
        if key in self.failing_gets:
            raise StatusClientError(f"connection refused for {key}")
        if key not in self._objects:
            raise NotFoundError(f"{key} not found")
        return DNSEndpoint.from_dict(self._objects[key])

    def update_status(self, resource: DNSEndpoint) -> DNSEndpoint:
        key = resource.key
        self.update_calls.append(key)
        if key in self.failing_updates:
            raise StatusClientError(f"admission webhook denied {key}")
        stored = self._objects[key]
        if stored["metadata"]["resourceVersion"] != resource.resource_version:
            raise ConflictError(f"{key} has been modified")
        new_obj = dict(stored)
        new_obj["metadata"] = dict(stored["metadata"])
        new_obj["metadata"]["resourceVersion"] = str(int(resource.resource_version) + 1)
        new_obj["status"] = resource.to_dict()["status"]
        self._objects[key] = new_obj
        return DNSEndpoint.from_dict(new_obj)

    def bump(self, key: str) -> None:
        """Simulate a concurrent writer."""
        meta = self._objects[key]["metadata"]
        meta["resourceVersion"] = str(int(meta["resourceVersion"]) + 1)

    def stored(self, key: str) -> DNSEndpoint:
        return DNSEndpoint.from_dict(self._objects[key])


# =============================================================================
# Test Helpers
# =============================================================================


def make_object(
    name: str,
    namespace: str = "ns",
    endpoint_count: int = 3,
    generation: int = 1,
    status: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    obj: Dict[str, Any] = {
        "apiVersion": "externaldns.k8s.io/v1alpha1",
        "kind": "DNSEndpoint",
        "metadata": {"name": name, "namespace": namespace, "generation": generation, "uid": f"uid-{name}"},
        "spec": {
            "endpoints": [
                {"dnsName": f"{name}{i}.example.com", "recordType": "A", "targets": ["10.0.0.1"]}
                for i in range(endpoint_count)
            ]
        },
    }
    if status is not None:
        obj["status"] = status
    return obj


def make_ref(name: str, namespace: str = "ns", kind: str = "DNSEndpoint") -> ObjectReference:
    return ObjectReference(kind=kind, namespace=namespace, name=name, uid=f"uid-{name}")


def changes_for(*names: str) -> Changes:
    return Changes(
        create=[Endpoint(dns_name=f"{n}.example.com", targets=["10.0.0.1"], ref=make_ref(n)) for n in names]
    )


def create_syncer(client: StatusClient) -> DNSEndpointStatusSyncer:
    return DNSEndpointStatusSyncer(client, clock=lambda: T0)


# =============================================================================
# reconcile
# =============================================================================


def test_reconcile_success_marks_resource_programmed() -> None:
    client = MockStatusClient([make_object("a", endpoint_count=3, generation=2)])
    syncer = create_syncer(client)

    updated = syncer.reconcile(changes_for("a"), True, "ok")

    assert updated == 1
    resource = client.stored("ns/a")
    assert resource.status.records == "3/3"
    assert resource.status.observed_generation == 2
    programmed = get_condition(resource.status, CONDITION_PROGRAMMED)
    assert programmed.status == CONDITION_TRUE
    assert programmed.message == "ok"


def test_reconcile_failure_keeps_partial_record_counts() -> None:
    status = {"records": "2/5", "recordsProvisioned": 2, "recordsTotal": 5}
    client = MockStatusClient([make_object("a", endpoint_count=5, status=status)])
    syncer = create_syncer(client)

    syncer.reconcile(changes_for("a"), False, "timeout")

    resource = client.stored("ns/a")
    programmed = get_condition(resource.status, CONDITION_PROGRAMMED)
    assert programmed.status == CONDITION_FALSE
    assert programmed.reason == REASON_FAILED
    assert programmed.message == "timeout"
    assert resource.status.records == "2/5"


def test_reconcile_fetches_and_writes_each_resource_once() -> None:
    client = MockStatusClient([make_object("a"), make_object("b")])
    syncer = create_syncer(client)
    changes = changes_for("a", "a", "b")
    changes.delete.append(Endpoint(dns_name="old.example.com", ref=make_ref("a")))

    syncer.reconcile(changes, True, "ok")

    assert sorted(client.get_calls) == ["ns/a", "ns/b"]
    assert sorted(client.update_calls) == ["ns/a", "ns/b"]


def test_reconcile_ignores_foreign_and_unreferenced_changes() -> None:
    client = MockStatusClient([make_object("a")])
    syncer = create_syncer(client)
    changes = Changes(
        create=[
            Endpoint(dns_name="svc.example.com", ref=make_ref("svc", kind="Service")),
            Endpoint(dns_name="bare.example.com"),
        ]
    )

    assert syncer.reconcile(changes, True, "ok") == 0
    assert client.get_calls == []


def test_reconcile_get_failure_does_not_block_other_resources() -> None:
    client = MockStatusClient([make_object("a"), make_object("b")], failing_gets={"ns/a"})
    syncer = create_syncer(client)

    updated = syncer.reconcile(changes_for("a", "b"), True, "ok")

    assert updated == 1
    assert client.update_calls == ["ns/b"]
    assert get_condition(client.stored("ns/b").status, CONDITION_PROGRAMMED).status == CONDITION_TRUE


def test_reconcile_missing_resource_is_skipped() -> None:
    client = MockStatusClient([make_object("b")])
    syncer = create_syncer(client)

    updated = syncer.reconcile(changes_for("gone", "b"), True, "ok")

    assert updated == 1
    assert client.update_calls == ["ns/b"]


def test_reconcile_write_failure_does_not_block_other_resources() -> None:
    client = MockStatusClient([make_object("a"), make_object("b")], failing_updates={"ns/a"})
    syncer = create_syncer(client)

    updated = syncer.reconcile(changes_for("a", "b"), False, "boom")

    assert updated == 1
    assert "ns/b" in client.update_calls
    assert client.stored("ns/a").status.conditions == []


def test_reconcile_conflict_is_not_retried_and_heals_next_cycle() -> None:
    client = MockStatusClient([make_object("a")])
    syncer = create_syncer(client)

    original_get = client.get

    def get_then_race(namespace: str, name: str) -> DNSEndpoint:
        resource = original_get(namespace, name)
        client.bump(f"{namespace}/{name}")
        return resource

    client.get = get_then_race  # type: ignore[method-assign]
    assert syncer.reconcile(changes_for("a"), True, "ok") == 0
    assert client.update_calls == ["ns/a"]

    client.get = original_get  # type: ignore[method-assign]
    assert syncer.reconcile(changes_for("a"), True, "ok") == 1
    assert get_condition(client.stored("ns/a").status, CONDITION_PROGRAMMED).status == CONDITION_TRUE


def test_reconcile_preserves_foreign_conditions() -> None:
    status = {
        "conditions": [
            {
                "type": "Ready",
                "status": "True",
                "reason": "Other",
                "message": "set by another controller",
                "observedGeneration": 1,
                "lastTransitionTime": "2023-06-01T00:00:00Z",
            }
        ]
    }
    client = MockStatusClient([make_object("a", status=status)])
    syncer = create_syncer(client)

    syncer.reconcile(changes_for("a"), True, "ok")

    conditions = client.stored("ns/a").status.conditions
    assert [c.type for c in conditions] == ["Ready", CONDITION_PROGRAMMED]
    assert conditions[0].message == "set by another controller"


def test_reconcile_stops_when_cancelled() -> None:
    client = MockStatusClient([make_object("a"), make_object("b")])
    syncer = create_syncer(client)
    stop_event = threading.Event()
    stop_event.set()

    assert syncer.reconcile(changes_for("a", "b"), True, "ok", stop_event) == 0
    assert client.get_calls == []


def test_reconcile_writes_even_when_generation_already_observed() -> None:
    status = {"observedGeneration": 1}
    client = MockStatusClient([make_object("a", generation=1, status=status)])
    syncer = create_syncer(client)

    assert syncer.reconcile(changes_for("a"), False, "boom") == 1


# =============================================================================
# observe (generation-only path)
# =============================================================================


def test_observe_accepts_new_resource_and_records_generation() -> None:
    client = MockStatusClient([make_object("a", endpoint_count=3, generation=2)])
    syncer = create_syncer(client)

    assert syncer.observe(client.get("ns", "a")) is True

    resource = client.stored("ns/a")
    assert resource.status.observed_generation == 2
    assert resource.status.records == "0/3"
    accepted = get_condition(resource.status, CONDITION_ACCEPTED)
    assert accepted.status == CONDITION_UNKNOWN
    assert accepted.message == ACCEPTED_MESSAGE
    programmed = get_condition(resource.status, CONDITION_PROGRAMMED)
    assert programmed.reason == REASON_PENDING


def test_observe_skips_resource_already_observed_at_generation() -> None:
    client = MockStatusClient([make_object("a", generation=2)])
    syncer = create_syncer(client)
    syncer.observe(client.get("ns", "a"))
    client.update_calls.clear()

    assert syncer.observe(client.get("ns", "a")) is False
    assert client.update_calls == []


def test_observe_only_moves_generation_when_already_accepted() -> None:
    client = MockStatusClient([make_object("a", generation=1)])
    syncer = create_syncer(client)
    resource = client.get("ns", "a")
    syncer.observe(resource)
    resource = client.get("ns", "a")
    resource.status.observed_generation = 0
    conditions_before = [c.to_dict() for c in resource.status.conditions]

    assert syncer.observe(resource) is True

    stored = client.stored("ns/a")
    assert stored.status.observed_generation == 1
    assert [c.to_dict() for c in stored.status.conditions] == conditions_before


def test_observe_write_failure_is_swallowed() -> None:
    client = MockStatusClient([make_object("a")], failing_updates={"ns/a"})
    syncer = create_syncer(client)

    assert syncer.observe(client.get("ns", "a")) is False


# =============================================================================
# program_settled
# =============================================================================


def test_program_settled_marks_unchanged_resources_programmed() -> None:
    client = MockStatusClient([make_object("a", endpoint_count=2), make_object("b")])
    syncer = create_syncer(client)
    resources = [client.get("ns", "a"), client.get("ns", "b")]

    updated = syncer.program_settled(resources, changes_for("b"))

    assert updated == 1
    assert client.update_calls == ["ns/a"]
    resource = client.stored("ns/a")
    programmed = get_condition(resource.status, CONDITION_PROGRAMMED)
    assert programmed.status == CONDITION_TRUE
    assert programmed.message == "All (2) records successfully provisioned"
    assert resource.status.records == "2/2"


def test_program_settled_skips_resources_programmed_at_generation() -> None:
    client = MockStatusClient([make_object("a", generation=3)])
    syncer = create_syncer(client)
    resource = client.get("ns", "a")
    set_programmed(resource, "ok", now=T0 - timedelta(hours=1))
    client.update_status(resource)
    client.update_calls.clear()

    assert syncer.program_settled([client.get("ns", "a")], Changes()) == 0
    assert client.update_calls == []


# =============================================================================
# blocked records
# =============================================================================


def blocked_for(name: str, *dns_names: str) -> Changes:
    return Changes(
        blocked=[Endpoint(dns_name=d, targets=["10.0.0.1"], ref=make_ref(name)) for d in dns_names]
    )


def test_report_blocked_marks_resource_failed_and_keeps_counts() -> None:
    client = MockStatusClient([make_object("a", endpoint_count=2, status={"records": "1/2", "recordsTotal": 2, "recordsProvisioned": 1}), make_object("b")])
    syncer = create_syncer(client)
    resources = [client.get("ns", "a"), client.get("ns", "b")]

    updated = syncer.report_blocked(resources, blocked_for("a", "a1.example.com"))

    assert updated == 1
    assert client.update_calls == ["ns/a"]
    resource = client.stored("ns/a")
    programmed = get_condition(resource.status, CONDITION_PROGRAMMED)
    assert programmed.status == CONDITION_FALSE
    assert programmed.reason == REASON_FAILED
    assert programmed.message.endswith(": a1.example.com")
    assert resource.status.records == "1/2"


def test_report_blocked_does_not_rewrite_same_failure() -> None:
    client = MockStatusClient([make_object("a")])
    syncer = create_syncer(client)
    changes = blocked_for("a", "a0.example.com")
    syncer.report_blocked([client.get("ns", "a")], changes)
    client.update_calls.clear()

    assert syncer.report_blocked([client.get("ns", "a")], changes) == 0
    assert client.update_calls == []

    assert syncer.report_blocked([client.get("ns", "a")], blocked_for("a", "a0.example.com", "a1.example.com")) == 1


def test_blocked_resource_is_not_programmed() -> None:
    client = MockStatusClient([make_object("a")])
    syncer = create_syncer(client)
    changes = changes_for("a")
    changes.blocked.append(Endpoint(dns_name="a9.example.com", targets=["10.0.0.9"], ref=make_ref("a")))

    assert syncer.reconcile(changes, True, "All (1) records successfully provisioned") == 0
    assert syncer.program_settled([client.get("ns", "a")], changes) == 0
    assert client.update_calls == []
