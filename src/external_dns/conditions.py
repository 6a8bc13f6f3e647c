"""Status condition transitions for DNSEndpoint resources.

These functions mutate the ``status`` of a ``DNSEndpoint`` in place and never
perform I/O, so the same transition can be replayed against a freshly fetched
resource after a lost write.

Rules applied by every transition:

- ``lastTransitionTime`` only moves when the condition's status value
  (True/False/Unknown) changes; reason, message and observedGeneration
  updates keep the previous timestamp.
- ``lastStatusChange`` is stamped on every call.
- Conditions of other types are left where they are.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from .dnsendpoint import (
    CONDITION_ACCEPTED,
    CONDITION_FALSE,
    CONDITION_PROGRAMMED,
    CONDITION_TRUE,
    CONDITION_UNKNOWN,
    REASON_ACCEPTED,
    REASON_FAILED,
    REASON_PENDING,
    REASON_PROGRAMMED,
    RECORDS_SENTINEL,
    Condition,
    DNSEndpoint,
    DNSEndpointStatus,
)

PROGRAMMED_PLACEHOLDER_MESSAGE = "Waiting for controller"


def utcnow() -> datetime:
    """Current time truncated to the second precision the API server stores."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def get_condition(status: DNSEndpointStatus, condition_type: str) -> Optional[Condition]:
    for condition in status.conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_condition_true(status: DNSEndpointStatus, condition_type: str) -> bool:
    condition = get_condition(status, condition_type)
    return condition is not None and condition.status == CONDITION_TRUE


def set_records(status: DNSEndpointStatus, provisioned: int, total: int) -> None:
    status.records_provisioned = provisioned
    status.records_total = total
    status.records = f"{provisioned}/{total}"


def update_programmed_status(
    status: DNSEndpointStatus,
    condition_status: str,
    reason: str,
    generation: int,
    *,
    now: Optional[datetime] = None,
) -> None:
    """Move the Programmed condition to ``condition_status``, keeping its message.

    A Programmed condition that already carries ``condition_status`` is left
    untouched. A missing one is created with a placeholder message.
    """
    now = now or utcnow()
    existing = get_condition(status, CONDITION_PROGRAMMED)
    if existing is not None:
        if existing.status != condition_status:
            existing.status = condition_status
            existing.reason = reason
            existing.observed_generation = generation
            existing.last_transition_time = now
        return

    status.conditions.append(
        Condition(
            type=CONDITION_PROGRAMMED,
            status=condition_status,
            reason=reason,
            message=PROGRAMMED_PLACEHOLDER_MESSAGE,
            observed_generation=generation,
            last_transition_time=now,
        )
    )


def set_condition(
    resource: DNSEndpoint,
    condition_type: str,
    condition_status: str,
    reason: str,
    message: str,
    *,
    now: Optional[datetime] = None,
) -> Condition:
    """Set or replace the condition of ``condition_type`` on the resource status.

    Accepted and Programmed=True carry side effects on the record counters,
    see ``set_accepted`` and ``set_programmed``.
    """
    now = now or utcnow()
    status = resource.status
    total = len(resource.endpoints)

    if condition_type == CONDITION_ACCEPTED:
        if status.records == RECORDS_SENTINEL:
            # Never observed before: stale counters must not leak through.
            set_records(status, 0, total)
        else:
            set_records(status, status.records_provisioned, total)
        if status.records_provisioned != total:
            update_programmed_status(
                status, CONDITION_UNKNOWN, REASON_PENDING, resource.generation, now=now
            )
    elif condition_type == CONDITION_PROGRAMMED and condition_status == CONDITION_TRUE:
        set_records(status, total, total)
        status.observed_generation = resource.generation

    new_condition = Condition(
        type=condition_type,
        status=condition_status,
        reason=reason,
        message=message,
        observed_generation=resource.generation,
        last_transition_time=now,
    )

    for index, existing in enumerate(status.conditions):
        if existing.type == condition_type:
            if existing.status == condition_status:
                new_condition.last_transition_time = existing.last_transition_time
            status.conditions[index] = new_condition
            break
    else:
        status.conditions.append(new_condition)

    status.last_status_change = now
    return new_condition


def set_accepted(resource: DNSEndpoint, message: str, *, now: Optional[datetime] = None) -> Condition:
    """Mark the resource as seen and validated, but not yet programmed."""
    return set_condition(
        resource, CONDITION_ACCEPTED, CONDITION_UNKNOWN, REASON_ACCEPTED, message, now=now
    )


def set_programmed(resource: DNSEndpoint, message: str, *, now: Optional[datetime] = None) -> Condition:
    """Mark every record of the resource as provisioned upstream."""
    return set_condition(
        resource, CONDITION_PROGRAMMED, CONDITION_TRUE, REASON_PROGRAMMED, message, now=now
    )


def set_failed(resource: DNSEndpoint, message: str, *, now: Optional[datetime] = None) -> Condition:
    """Mark programming as failed. Record counters keep their last value."""
    return set_condition(
        resource, CONDITION_PROGRAMMED, CONDITION_FALSE, REASON_FAILED, message, now=now
    )


def is_accepted_at(resource: DNSEndpoint, generation: int) -> bool:
    condition = get_condition(resource.status, CONDITION_ACCEPTED)
    return condition is not None and condition.observed_generation == generation


def is_programmed_at(resource: DNSEndpoint, generation: int) -> bool:
    condition = get_condition(resource.status, CONDITION_PROGRAMMED)
    return (
        condition is not None
        and condition.status == CONDITION_TRUE
        and condition.observed_generation == generation
    )
