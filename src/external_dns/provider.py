"""DNS provider interface and implementations."""

from __future__ import annotations

import ipaddress
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List

import requests
from requests.auth import HTTPBasicAuth

from .changes import Changes
from .endpoint import RECORD_TYPE_A, RECORD_TYPE_AAAA, RECORD_TYPE_CNAME, Endpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DNSRecord:
    """A single upstream record: one name, one answer."""

    domain: str
    answer: str


def infer_record_type(answer: str) -> str:
    try:
        address = ipaddress.ip_address(answer)
    except ValueError:
        return RECORD_TYPE_CNAME
    return RECORD_TYPE_AAAA if address.version == 6 else RECORD_TYPE_A


class DNSProvider(ABC):
    """Abstract base class for DNS providers."""

    supported_record_types = frozenset({RECORD_TYPE_A, RECORD_TYPE_AAAA, RECORD_TYPE_CNAME})

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def test_connection(self) -> bool:
        """Test connection to the DNS provider."""
        pass

    @abstractmethod
    def get_records(self) -> List[DNSRecord]:
        """Get all DNS records held by this provider."""
        pass

    @abstractmethod
    def add_record(self, domain: str, answer: str) -> bool:
        """Add a DNS record."""
        pass

    @abstractmethod
    def delete_record(self, domain: str, answer: str) -> bool:
        """Delete a DNS record."""
        pass

    def endpoints(self) -> Dict[str, Endpoint]:
        """Current upstream state grouped by DNS name."""
        grouped: Dict[str, Endpoint] = {}
        for record in self.get_records():
            ep = grouped.get(record.domain)
            if ep is None:
                grouped[record.domain] = Endpoint(
                    dns_name=record.domain,
                    targets=[record.answer],
                    record_type=infer_record_type(record.answer),
                )
            else:
                ep.targets.append(record.answer)
        return grouped

    def apply_changes(self, changes: Changes) -> List[Endpoint]:
        """Apply deletes, then updates, then creates.

        Returns the endpoints whose change could not be fully applied.
        """
        failed: List[Endpoint] = []

        for ep in changes.delete:
            if not all([self.delete_record(ep.dns_name, t) for t in ep.targets]):
                failed.append(ep)

        for old, new in zip(changes.update_old, changes.update_new):
            removed = set(old.targets) - set(new.targets)
            added = [t for t in new.targets if t not in old.targets]
            results = [self.delete_record(old.dns_name, t) for t in sorted(removed)]
            results += [self.add_record(new.dns_name, t) for t in added]
            if not all(results):
                failed.append(new)

        for ep in changes.create:
            if not all([self.add_record(ep.dns_name, t) for t in ep.targets]):
                failed.append(ep)

        return failed


class AdGuardDNSProvider(DNSProvider):
    """AdGuard Home DNS rewrites provider implementation."""

    def __init__(self, url: str, username: str, password: str, timeout_seconds: float = 5.0):
        self._url = url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        if username and password:
            self._session.auth = HTTPBasicAuth(username, password)

    @property
    def name(self) -> str:
        return "AdGuard Home"

    def test_connection(self) -> bool:
        try:
            response = self._session.get(f"{self._url}/control/status", timeout=self._timeout)
            response.raise_for_status()
            logger.info(f"{self.name} connection successful")
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to connect to {self.name}: {e}")
            return False

    def get_records(self) -> List[DNSRecord]:
        try:
            response = self._session.get(f"{self._url}/control/rewrite/list", timeout=self._timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            logger.error(f"Failed to get records from {self.name}: {e}")
            raise

        records = []
        for r in data or []:
            domain = r.get("domain") if isinstance(r, dict) else None
            answer = r.get("answer") if isinstance(r, dict) else None
            if not isinstance(domain, str) or not isinstance(answer, str):
                logger.warning(f"Skipping malformed record: {r}")
                continue
            records.append(DNSRecord(domain=domain, answer=answer))
        return records

    def _post(self, action: str, domain: str, answer: str) -> bool:
        try:
            response = self._session.post(
                f"{self._url}/control/rewrite/{action}",
                json={"domain": domain, "answer": answer},
                timeout=self._timeout,
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to {action} record {domain} -> {answer}: {e}")
            return False

    def add_record(self, domain: str, answer: str) -> bool:
        if self._post("add", domain, answer):
            logger.info(f"Added DNS record: {domain} -> {answer}")
            return True
        return False

    def delete_record(self, domain: str, answer: str) -> bool:
        if self._post("delete", domain, answer):
            logger.info(f"Deleted DNS record: {domain} -> {answer}")
            return True
        return False


def create_dns_provider(
    provider: str, *, url: str, username: str = "", password: str = ""
) -> DNSProvider:
    """Factory function to create the configured DNS provider."""
    if provider == "adguard":
        return AdGuardDNSProvider(url, username, password)
    else:
        raise ValueError(f"Unsupported DNS provider: '{provider}'. Supported providers: adguard")
