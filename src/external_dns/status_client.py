"""Clients for reading DNSEndpoint resources and writing their status subresource.

The status syncer only needs ``get`` and ``update_status`` (``StatusClient``);
the CRD source also lists resources (``DNSEndpointClient``). Two transports
implement the same interface:

    rest        direct HTTP calls to the API server with ``requests``
    kubernetes  the generic custom-objects client of the ``kubernetes`` package

``update_status`` always targets the ``/status`` subresource, so spec and
metadata edits made by other actors are never overwritten. The API server's
resourceVersion check turns a write based on a stale read into a
``ConflictError``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import kubernetes
import requests
import urllib3
from kubernetes.client.exceptions import ApiException

from .dnsendpoint import API_GROUP, API_VERSION, KIND, DNSEndpoint, resource_plural

logger = logging.getLogger(__name__)

# =============================================================================
# Errors
# =============================================================================


class StatusClientError(Exception):
    """A read or write against the API server failed."""


class NotFoundError(StatusClientError):
    """The resource does not exist (HTTP 404)."""


class ConflictError(StatusClientError):
    """The write was based on a stale resourceVersion (HTTP 409)."""


def _error_for_status(code: Optional[int], message: str) -> StatusClientError:
    if code == 404:
        return NotFoundError(message)
    if code == 409:
        return ConflictError(message)
    return StatusClientError(message)


# =============================================================================
# Client Interfaces
# =============================================================================


class StatusClient(ABC):
    """Read a DNSEndpoint and write back its status."""

    @abstractmethod
    def get(self, namespace: str, name: str) -> DNSEndpoint:
        """Fetch the live resource.

        Raises:
            StatusClientError: on any transport or API failure.
        """
        pass

    @abstractmethod
    def update_status(self, resource: DNSEndpoint) -> DNSEndpoint:
        """Write ``resource.status`` to the status subresource.

        Raises:
            ConflictError: if the resource changed since it was read.
            StatusClientError: on any other transport or API failure.
        """
        pass


class DNSEndpointClient(StatusClient):
    """Status client that can also list resources for the CRD source."""

    @abstractmethod
    def list(self, label_selector: str = "") -> List[DNSEndpoint]:
        pass


def _split_api_version(api_version: str) -> Tuple[str, str]:
    group, sep, version = api_version.partition("/")
    if not sep or not group or not version:
        raise ValueError(f"API version must look like 'group/version', got '{api_version}'")
    return group, version


def _parse_object(obj: Any) -> DNSEndpoint:
    try:
        return DNSEndpoint.from_dict(obj)
    except ValueError as e:
        raise StatusClientError(f"Malformed DNSEndpoint in API response: {e}")


# =============================================================================
# Connection Settings
# =============================================================================


def load_kube_configuration(kubeconfig: str = "", api_server_url: str = "") -> kubernetes.client.Configuration:
    """Resolve API server settings for either transport.

    An explicit kubeconfig path wins. Without one the in-cluster service
    account is tried first, then the default kubeconfig (``$KUBECONFIG`` or
    ``~/.kube/config``). ``api_server_url`` overrides the server found.

    Raises:
        kubernetes.config.ConfigException: if no usable configuration exists.
    """
    configuration = kubernetes.client.Configuration()
    if kubeconfig:
        kubernetes.config.load_kube_config(config_file=kubeconfig, client_configuration=configuration)
        logger.info(f"Loaded Kubernetes config from {kubeconfig}")
    else:
        try:
            kubernetes.config.load_incluster_config(client_configuration=configuration)
            logger.info("Loaded in-cluster Kubernetes config")
        except kubernetes.config.ConfigException:
            kubernetes.config.load_kube_config(client_configuration=configuration)
            logger.info("Loaded local Kubernetes config")

    if api_server_url:
        configuration.host = api_server_url
    return configuration


# =============================================================================
# REST Transport
# =============================================================================


class RestDNSEndpointClient(DNSEndpointClient):
    """DNSEndpoint access through plain HTTP calls to the API server."""

    def __init__(
        self,
        configuration: kubernetes.client.Configuration,
        *,
        namespace: str = "",
        api_version: str = f"{API_GROUP}/{API_VERSION}",
        kind: str = KIND,
        timeout_seconds: float = 30.0,
    ):
        self._configuration = configuration
        self._server = configuration.host.rstrip("/")
        self._namespace = namespace
        self._group, self._version = _split_api_version(api_version)
        self._plural = resource_plural(kind)
        self._timeout = timeout_seconds
        self._session = requests.Session()
        if not configuration.verify_ssl:
            self._session.verify = False
        elif configuration.ssl_ca_cert:
            self._session.verify = configuration.ssl_ca_cert
        if configuration.cert_file and configuration.key_file:
            self._session.cert = (configuration.cert_file, configuration.key_file)

    def _headers(self) -> Dict[str, str]:
        # Looked up per request: exec plugins and projected tokens rotate.
        authorization = self._configuration.get_api_key_with_prefix("authorization")
        return {"Authorization": authorization} if authorization else {}

    def _resource_path(self, namespace: str, name: str = "") -> str:
        base = f"{self._server}/apis/{self._group}/{self._version}"
        if namespace:
            base = f"{base}/namespaces/{namespace}"
        path = f"{base}/{self._plural}"
        return f"{path}/{name}" if name else path

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise StatusClientError(f"{method} {url} failed: {e}")

        if response.status_code >= 400:
            raise _error_for_status(
                response.status_code,
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
            )
        try:
            return response.json()
        except ValueError as e:
            raise StatusClientError(f"{method} {url} returned invalid JSON: {e}")

    def get(self, namespace: str, name: str) -> DNSEndpoint:
        return _parse_object(self._request("GET", self._resource_path(namespace, name)))

    def update_status(self, resource: DNSEndpoint) -> DNSEndpoint:
        url = self._resource_path(resource.namespace, resource.name) + "/status"
        return _parse_object(self._request("PUT", url, json=resource.to_dict()))

    def list(self, label_selector: str = "") -> List[DNSEndpoint]:
        params = {"labelSelector": label_selector} if label_selector else None
        data = self._request("GET", self._resource_path(self._namespace), params=params)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise StatusClientError(f"List of {self._plural} returned no items array")
        return [_parse_object(item) for item in items]


# =============================================================================
# Kubernetes Client Transport
# =============================================================================


class KubernetesDNSEndpointClient(DNSEndpointClient):
    """DNSEndpoint access through ``kubernetes.client.CustomObjectsApi``."""

    def __init__(
        self,
        api: Optional[kubernetes.client.CustomObjectsApi] = None,
        *,
        namespace: str = "",
        api_version: str = f"{API_GROUP}/{API_VERSION}",
        kind: str = KIND,
        timeout_seconds: float = 30.0,
    ):
        self._api = api or kubernetes.client.CustomObjectsApi()
        self._namespace = namespace
        self._group, self._version = _split_api_version(api_version)
        self._plural = resource_plural(kind)
        self._timeout = timeout_seconds

    def _call(self, description: str, fn: Any, **kwargs: Any) -> Any:
        try:
            return fn(
                group=self._group,
                version=self._version,
                plural=self._plural,
                _request_timeout=self._timeout,
                **kwargs,
            )
        except ApiException as e:
            raise _error_for_status(e.status, f"{description} failed: {e.status} {e.reason}")
        except urllib3.exceptions.HTTPError as e:
            raise StatusClientError(f"{description} failed: {e}")

    def get(self, namespace: str, name: str) -> DNSEndpoint:
        obj = self._call(
            f"get {namespace}/{name}",
            self._api.get_namespaced_custom_object,
            namespace=namespace,
            name=name,
        )
        return _parse_object(obj)

    def update_status(self, resource: DNSEndpoint) -> DNSEndpoint:
        obj = self._call(
            f"update status of {resource.key}",
            self._api.replace_namespaced_custom_object_status,
            namespace=resource.namespace,
            name=resource.name,
            body=resource.to_dict(),
        )
        return _parse_object(obj)

    def list(self, label_selector: str = "") -> List[DNSEndpoint]:
        if self._namespace:
            data = self._call(
                f"list {self._plural}",
                self._api.list_namespaced_custom_object,
                namespace=self._namespace,
                label_selector=label_selector,
            )
        else:
            data = self._call(
                f"list {self._plural}",
                self._api.list_cluster_custom_object,
                label_selector=label_selector,
            )
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise StatusClientError(f"List of {self._plural} returned no items array")
        return [_parse_object(item) for item in items]


# =============================================================================
# Factory
# =============================================================================


def create_dnsendpoint_client(
    impl: str,
    *,
    kubeconfig: str = "",
    api_server_url: str = "",
    namespace: str = "",
    api_version: str = f"{API_GROUP}/{API_VERSION}",
    kind: str = KIND,
    timeout_seconds: float = 30.0,
) -> DNSEndpointClient:
    """Build the configured transport. The choice is made once, at startup."""
    if impl not in ("rest", "kubernetes"):
        raise ValueError(f"Unsupported client implementation: '{impl}'. Supported: rest, kubernetes")

    configuration = load_kube_configuration(kubeconfig, api_server_url)
    if impl == "rest":
        return RestDNSEndpointClient(
            configuration,
            namespace=namespace,
            api_version=api_version,
            kind=kind,
            timeout_seconds=timeout_seconds,
        )
    return KubernetesDNSEndpointClient(
        kubernetes.client.CustomObjectsApi(kubernetes.client.ApiClient(configuration)),
        namespace=namespace,
        api_version=api_version,
        kind=kind,
        timeout_seconds=timeout_seconds,
    )
