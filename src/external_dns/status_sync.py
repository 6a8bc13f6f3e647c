"""Report the outcome of a DNS sync cycle onto DNSEndpoint status.

Every resource is handled by its own fetch -> transition -> write sequence.
A failure on one resource is logged and skipped; it never stops the others
and never propagates into the sync loop. Lost writes (conflicts with another
writer) are not retried in the same cycle: the next cycle re-reads the live
object and replays the same transition.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from .changes import Changes, blocked_resources, referenced_resources
from .conditions import (
    get_condition,
    is_accepted_at,
    is_programmed_at,
    set_accepted,
    set_failed,
    set_programmed,
    utcnow,
)
from .dnsendpoint import CONDITION_FALSE, CONDITION_PROGRAMMED, KIND, DNSEndpoint
from .status_client import ConflictError, StatusClient, StatusClientError

logger = logging.getLogger(__name__)

ACCEPTED_MESSAGE = "DNSEndpoint accepted by controller"


def programmed_message(resource: DNSEndpoint) -> str:
    return f"All ({len(resource.endpoints)}) records successfully provisioned"


def blocked_message(names: List[str]) -> str:
    return f"Records not provisioned (excluded, unsupported or owned elsewhere): {', '.join(names)}"


class DNSEndpointStatusSyncer:
    def __init__(
        self,
        client: StatusClient,
        *,
        kind: str = KIND,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client = client
        self.kind = kind
        self._clock = clock

    def reconcile(
        self,
        changes: Changes,
        success: bool,
        message: str,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """Mark every resource behind ``changes`` as Programmed or Failed.

        Resources with blocked records are left to ``report_blocked``.
        Returns the number of resources whose status was written.
        """
        blocked = blocked_resources(changes, self.kind)
        refs = {
            key: ref
            for key, ref in referenced_resources(changes, self.kind).items()
            if key not in blocked
        }
        if not refs:
            return 0

        logger.debug(f"Updating status for {len(refs)} {self.kind}(s): success={success}")
        updated = 0
        for key, ref in refs.items():
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Sync cancelled; skipping status update for {self.kind} {key}")
                continue
            if self._transition(ref.namespace, ref.name, success, message):
                updated += 1
        return updated

    def _transition(self, namespace: str, name: str, success: bool, message: str) -> bool:
        key = f"{namespace}/{name}"
        try:
            resource = self.client.get(namespace, name)
        except StatusClientError as e:
            logger.warning(f"Failed to get {self.kind} {key}: {e}")
            return False

        if success:
            set_programmed(resource, message, now=self._clock())
        else:
            set_failed(resource, message, now=self._clock())

        if not self._write(resource):
            return False
        logger.debug(f"Updated status for {self.kind} {key}: success={success}, message={message}")
        return True

    def _write(self, resource: DNSEndpoint) -> bool:
        try:
            self.client.update_status(resource)
        except ConflictError as e:
            logger.warning(
                f"Status of {self.kind} {resource.key} changed concurrently, "
                f"will retry next cycle: {e}"
            )
            return False
        except StatusClientError as e:
            logger.warning(f"Failed to update status for {self.kind} {resource.key}: {e}")
            return False
        return True

    def observe(self, resource: DNSEndpoint) -> bool:
        """Record that a freshly read resource has been seen at its generation.

        Accepts the resource if it has not been accepted at this generation
        and moves ``observedGeneration`` forward. Resources already observed
        at their current generation are not written again.
        """
        needs_accept = not is_accepted_at(resource, resource.generation)
        stale = resource.status.observed_generation != resource.generation
        if not needs_accept and not stale:
            return False

        if needs_accept:
            set_accepted(resource, ACCEPTED_MESSAGE, now=self._clock())
        resource.status.observed_generation = resource.generation

        if not self._write(resource):
            return False
        logger.debug(f"Observed {self.kind} {resource.key} at generation {resource.generation}")
        return True

    def program_settled(
        self,
        resources: Iterable[DNSEndpoint],
        changes: Changes,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """Mark resources Programmed whose records needed no provider change.

        Only called after a fully successful cycle. Resources referenced by
        ``changes`` are reported by ``reconcile`` instead, and resources
        with blocked records by ``report_blocked``.
        """
        changed = referenced_resources(changes, self.kind)
        blocked = blocked_resources(changes, self.kind)
        updated = 0
        for resource in resources:
            if resource.key in changed or resource.key in blocked:
                continue
            if is_programmed_at(resource, resource.generation):
                continue
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Sync cancelled; skipping status update for {self.kind} {resource.key}")
                continue

            try:
                live = self.client.get(resource.namespace, resource.name)
            except StatusClientError as e:
                logger.warning(f"Failed to get {self.kind} {resource.key}: {e}")
                continue
            if is_programmed_at(live, live.generation):
                continue

            set_programmed(live, programmed_message(live), now=self._clock())
            if self._write(live):
                updated += 1
        return updated

    def report_blocked(
        self,
        resources: Iterable[DNSEndpoint],
        changes: Changes,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """Mark resources Failed when the plan could not provision some of their records.

        A resource already failed with the same message at its current
        generation is not written again.
        """
        blocked = blocked_resources(changes, self.kind)
        updated = 0
        for resource in resources:
            names = blocked.get(resource.key)
            if not names:
                continue
            if stop_event is not None and stop_event.is_set():
                logger.info(f"Sync cancelled; skipping status update for {self.kind} {resource.key}")
                continue

            message = blocked_message(names)
            try:
                live = self.client.get(resource.namespace, resource.name)
            except StatusClientError as e:
                logger.warning(f"Failed to get {self.kind} {resource.key}: {e}")
                continue

            cond = get_condition(live.status, CONDITION_PROGRAMMED)
            if (
                cond is not None
                and cond.status == CONDITION_FALSE
                and cond.message == message
                and cond.observed_generation == live.generation
            ):
                continue

            set_failed(live, message, now=self._clock())
            if self._write(live):
                logger.warning(f"{self.kind} {live.key}: {message}")
                updated += 1
        return updated
