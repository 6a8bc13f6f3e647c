#!/usr/bin/env python3
"""external-dns - DNSEndpoint synchronization

Syncs DNS records declared in Kubernetes DNSEndpoint custom resources into a
DNS provider, and reports the outcome back onto each resource's status
(Accepted / Programmed conditions and a "provisioned/total" records counter).

Supported DNS Providers:
    - adguard: AdGuard Home DNS rewrites

Environment variables:

    DNS Provider:
        DNS_PROVIDER           DNS provider type: "adguard" (default: adguard)
        ADGUARD_URL            AdGuard Home base URL (default: http://adguard)
        ADGUARD_USERNAME       Admin username (optional)
        ADGUARD_PASSWORD       Admin password (optional)

    Kubernetes:
        KUBECONFIG             Path to a kubeconfig file. When unset, the in-cluster
                               service account is used, then ~/.kube/config.
        KUBE_API_SERVER        Override the API server URL from the kubeconfig.
        KUBE_NAMESPACE         Only watch this namespace (default: all namespaces)
        CLIENT_IMPL            API client transport: "rest" (plain HTTP) or
                               "kubernetes" (kubernetes python client) (default: rest)
        REQUEST_TIMEOUT_SECONDS  Timeout for each API server request (default: 30)

    CRD Source:
        CRD_SOURCE_API_VERSION API version of the DNSEndpoint CRD
                               (default: externaldns.k8s.io/v1alpha1)
        CRD_SOURCE_KIND        Kind of the CRD (default: DNSEndpoint)
        CRD_LABEL_SELECTOR     Label selector applied when listing resources (optional)
        CRD_ANNOTATION_FILTER  Annotation filter in label selector syntax, applied after
                               listing, e.g. "dns/sync=adguard,!example.com/skip" (optional)
        UPDATE_DNSENDPOINT_STATUS  Write sync results to resource status (default: true)

    Domain exclusions:
        EXTERNAL_DNS_EXCLUDE_DOMAINS  Comma-separated patterns for domains to exclude from sync.
                                  Supports three formats:
                                    - Exact domain: "auth.example.com"
                                    - Wildcard (fnmatch-style): "*.internal.*", "dev-*"
                                    - Regex (prefix with ~): "~^staging-\\d+\\.example\\.com$"
                                  Owned records matching exclusions are removed.

    Runtime:
        SYNC_MODE              "once" or "watch" (polling loop) (default: watch)
        POLL_INTERVAL_SECONDS  Poll interval in watch mode (default: 60, minimum: 5)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
        STATE_PATH             JSON ownership state file path (default: /data/state.json)
"""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from typing import Any

from kubernetes.config import ConfigException

from .controller import Controller
from .dnsendpoint import API_GROUP, API_VERSION, KIND
from .plan import Planner, parse_exclude_patterns
from .provider import create_dns_provider
from .registry import StateStore
from .source import CRDSource, parse_annotation_filter
from .status_client import create_dnsendpoint_client
from .status_sync import DNSEndpointStatusSyncer


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


# =============================================================================
# Configuration
# =============================================================================

# DNS provider configuration
DNS_PROVIDER = os.getenv("DNS_PROVIDER", "adguard").lower().strip()
ADGUARD_URL = os.getenv("ADGUARD_URL", "http://adguard")
ADGUARD_USERNAME = os.getenv("ADGUARD_USERNAME", "")
ADGUARD_PASSWORD = os.getenv("ADGUARD_PASSWORD", "")

# Kubernetes configuration
KUBECONFIG = os.getenv("KUBECONFIG", "")
KUBE_API_SERVER = os.getenv("KUBE_API_SERVER", "")
KUBE_NAMESPACE = os.getenv("KUBE_NAMESPACE", "")
CLIENT_IMPL = os.getenv("CLIENT_IMPL", "rest").lower().strip()
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))

# CRD source configuration
CRD_SOURCE_API_VERSION = os.getenv("CRD_SOURCE_API_VERSION", f"{API_GROUP}/{API_VERSION}")
CRD_SOURCE_KIND = os.getenv("CRD_SOURCE_KIND", KIND)
CRD_LABEL_SELECTOR = os.getenv("CRD_LABEL_SELECTOR", "")
CRD_ANNOTATION_FILTER = os.getenv("CRD_ANNOTATION_FILTER", "")
UPDATE_DNSENDPOINT_STATUS = _parse_bool(os.getenv("UPDATE_DNSENDPOINT_STATUS"), default=True)

# Exclusions
EXTERNAL_DNS_EXCLUDE_DOMAINS = os.getenv("EXTERNAL_DNS_EXCLUDE_DOMAINS", "")

# Runtime configuration
SYNC_MODE = os.getenv("SYNC_MODE", "watch")
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "60"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
STATE_PATH = os.getenv("STATE_PATH", "/data/state.json")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Main
# =============================================================================


def validate_config() -> bool:
    """Validate configuration."""
    errors = []

    if DNS_PROVIDER == "adguard":
        if not ADGUARD_URL:
            errors.append("ADGUARD_URL is required when DNS_PROVIDER=adguard")
        if not ADGUARD_USERNAME or not ADGUARD_PASSWORD:
            logger.warning("ADGUARD_USERNAME/PASSWORD not set. Using unauthenticated access.")
    else:
        errors.append(f"Unsupported DNS_PROVIDER: {DNS_PROVIDER}. Supported: adguard")

    if CLIENT_IMPL not in ("rest", "kubernetes"):
        errors.append(f"Unsupported CLIENT_IMPL: {CLIENT_IMPL}. Supported: rest, kubernetes")

    group, sep, version = CRD_SOURCE_API_VERSION.partition("/")
    if not sep or not group or not version:
        errors.append(
            f"CRD_SOURCE_API_VERSION must look like 'group/version', got '{CRD_SOURCE_API_VERSION}'"
        )

    try:
        parse_annotation_filter(CRD_ANNOTATION_FILTER)
    except ValueError as e:
        errors.append(f"Invalid CRD_ANNOTATION_FILTER: {e}")

    if SYNC_MODE not in ("once", "watch"):
        errors.append(f"Invalid SYNC_MODE: {SYNC_MODE}. Use 'once' or 'watch'")

    if REQUEST_TIMEOUT_SECONDS <= 0:
        errors.append("REQUEST_TIMEOUT_SECONDS must be positive")

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True


def build_controller() -> Controller:
    """Wire up the configured source, provider, registry and status syncer."""
    client = create_dnsendpoint_client(
        CLIENT_IMPL,
        kubeconfig=KUBECONFIG,
        api_server_url=KUBE_API_SERVER,
        namespace=KUBE_NAMESPACE,
        api_version=CRD_SOURCE_API_VERSION,
        kind=CRD_SOURCE_KIND,
        timeout_seconds=REQUEST_TIMEOUT_SECONDS,
    )
    status_syncer = (
        DNSEndpointStatusSyncer(client, kind=CRD_SOURCE_KIND) if UPDATE_DNSENDPOINT_STATUS else None
    )
    dns_provider = create_dns_provider(
        DNS_PROVIDER, url=ADGUARD_URL, username=ADGUARD_USERNAME, password=ADGUARD_PASSWORD
    )

    exclude_patterns = parse_exclude_patterns(EXTERNAL_DNS_EXCLUDE_DOMAINS)
    if exclude_patterns:
        logger.info(f"Domain exclusions: {len(exclude_patterns)} pattern(s) configured")

    return Controller(
        source=CRDSource(
            client,
            label_selector=CRD_LABEL_SELECTOR,
            annotation_filter=CRD_ANNOTATION_FILTER,
            api_version=CRD_SOURCE_API_VERSION,
            status_syncer=status_syncer,
        ),
        dns_provider=dns_provider,
        state_store=StateStore(STATE_PATH),
        planner=Planner(
            exclude_patterns=exclude_patterns,
            supported_record_types=dns_provider.supported_record_types,
        ),
        status_syncer=status_syncer,
    )


def main():
    """Main entry point."""
    logger.info(f"external-dns: {CRD_SOURCE_KIND} ({CRD_SOURCE_API_VERSION}) -> {DNS_PROVIDER}")

    if not validate_config():
        logger.error("Configuration validation failed")
        sys.exit(1)

    try:
        controller = build_controller()
    except (ConfigException, OSError, ValueError) as e:
        logger.error(f"Failed to configure Kubernetes client: {e}")
        sys.exit(1)

    logger.info(f"DNS Provider: {controller.dns_provider.name}")
    logger.info(f"API client: {CLIENT_IMPL}, namespace: {KUBE_NAMESPACE or '<all>'}")
    logger.info(f"Status updates: {'enabled' if UPDATE_DNSENDPOINT_STATUS else 'disabled'}")
    logger.info(f"Sync mode: {SYNC_MODE}")

    if not controller.dns_provider.test_connection():
        logger.error(f"Cannot connect to {controller.dns_provider.name}. Exiting.")
        sys.exit(1)

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.info("Shutting down gracefully...")
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)

    try:
        if SYNC_MODE == "once":
            if not controller.run_once(stop_event):
                sys.exit(1)
            return

        interval = max(5, POLL_INTERVAL_SECONDS)
        logger.info(f"Poll interval: {interval}s")
        while not stop_event.is_set():
            try:
                controller.run_once(stop_event)
            except Exception as e:
                logger.error(f"Sync cycle failed: {e}", exc_info=True)
            stop_event.wait(interval)

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
