"""One DNS sync cycle: read desired state, plan, apply, report."""

from __future__ import annotations

import logging
import threading
from typing import Optional

import requests

from .plan import Planner
from .provider import DNSProvider
from .registry import StateStore, record_applied
from .source import CRDSource
from .status_client import StatusClientError
from .status_sync import DNSEndpointStatusSyncer

logger = logging.getLogger(__name__)


class Controller:
    def __init__(
        self,
        *,
        source: CRDSource,
        dns_provider: DNSProvider,
        state_store: StateStore,
        planner: Planner,
        status_syncer: Optional[DNSEndpointStatusSyncer] = None,
    ):
        self.source = source
        self.dns_provider = dns_provider
        self.state_store = state_store
        self.planner = planner
        self.status_syncer = status_syncer

    def run_once(self, stop_event: Optional[threading.Event] = None) -> bool:
        """Run a single sync cycle. Returns True if every change was applied."""
        try:
            desired, resources = self.source.endpoints()
        except StatusClientError as e:
            logger.error(f"Failed to read desired endpoints: {e}")
            return False

        try:
            current = self.dns_provider.endpoints()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Failed to read records from {self.dns_provider.name}: {e}")
            return False

        owned = self.state_store.load()
        changes = self.planner.calculate(desired, current, owned)

        if not changes.has_changes():
            logger.debug("All records are already up to date")
            if self.status_syncer is not None:
                self.status_syncer.report_blocked(resources, changes, stop_event)
                self.status_syncer.program_settled(resources, changes, stop_event)
            return True

        logger.info(
            f"Applying {len(changes.create)} create(s), {len(changes.update_new)} update(s), "
            f"{len(changes.delete)} delete(s) to {self.dns_provider.name}"
        )
        failed = self.dns_provider.apply_changes(changes)
        record_applied(owned, changes, failed)
        self.state_store.save(owned)

        success = not failed
        if success:
            message = f"All ({len(changes)}) records successfully provisioned"
        else:
            message = f"Failed to provision {len(failed)} of {len(changes)} record changes"
            logger.warning(message)

        if self.status_syncer is not None:
            self.status_syncer.reconcile(changes, success, message, stop_event)
            self.status_syncer.report_blocked(resources, changes, stop_event)
            if success:
                self.status_syncer.program_settled(resources, changes, stop_event)
        return success
