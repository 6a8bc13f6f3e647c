"""Desired endpoints read from DNSEndpoint custom resources."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Tuple

from .dnsendpoint import KIND, DNSEndpoint
from .endpoint import (
    RECORD_TYPE_NAPTR,
    RECORD_TYPE_TXT,
    RESOURCE_LABEL_KEY,
    Endpoint,
    ObjectReference,
)
from .status_client import DNSEndpointClient
from .status_sync import DNSEndpointStatusSyncer

logger = logging.getLogger(__name__)

_KEY = r"[A-Za-z0-9](?:[-A-Za-z0-9_./]*[A-Za-z0-9])?"
_VALUE = r"(?:[A-Za-z0-9](?:[-A-Za-z0-9_.]*[A-Za-z0-9])?)?"
_EXISTS_RE = re.compile(rf"^(!?)\s*({_KEY})$")
_EQUALITY_RE = re.compile(rf"^({_KEY})\s*(==|=|!=)\s*({_VALUE})$")
_SET_RE = re.compile(rf"^({_KEY})\s+(in|notin)\s*\((.*)\)$")


def has_illegal_target(ep: Endpoint) -> bool:
    """NAPTR targets must be fully qualified; other targets must not be.

    TXT targets are free text and are never rejected.
    """
    if ep.record_type == RECORD_TYPE_TXT:
        return False
    is_naptr = ep.record_type == RECORD_TYPE_NAPTR
    for target in ep.targets:
        has_dot = target.endswith(".")
        if (is_naptr and not has_dot) or (not is_naptr and has_dot):
            return True
    return False


@dataclass(frozen=True)
class AnnotationRequirement:
    """One term of an annotation filter, in label selector syntax."""

    key: str
    operator: str
    values: FrozenSet[str] = frozenset()

    def matches(self, annotations: Dict[str, str]) -> bool:
        present = self.key in annotations
        value = annotations.get(self.key)
        if self.operator == "exists":
            return present
        if self.operator == "!":
            return not present
        if self.operator in ("=", "==", "in"):
            return present and value in self.values
        # "!=" and "notin" also match when the key is absent.
        return not present or value not in self.values


def _split_terms(value: str) -> List[str]:
    terms: List[str] = []
    depth = 0
    current = ""
    for char in value:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            terms.append(current)
            current = ""
        else:
            current += char
    terms.append(current)
    return terms


def parse_annotation_filter(value: str) -> List[AnnotationRequirement]:
    """Parse a filter such as ``team=infra,env in (prod,staging),!skip``.

    An empty filter has no requirements and matches every resource.

    Raises:
        ValueError: if a term is not valid selector syntax.
    """
    requirements: List[AnnotationRequirement] = []
    if not value or not value.strip():
        return requirements

    for raw_term in _split_terms(value):
        term = raw_term.strip()
        match = _SET_RE.match(term)
        if match:
            values = [v.strip() for v in match.group(3).split(",")]
            if not all(re.fullmatch(_VALUE, v) for v in values):
                raise ValueError(f"invalid annotation filter term '{term}'")
            requirements.append(AnnotationRequirement(match.group(1), match.group(2), frozenset(values)))
            continue
        match = _EQUALITY_RE.match(term)
        if match:
            requirements.append(
                AnnotationRequirement(match.group(1), match.group(2), frozenset([match.group(3)]))
            )
            continue
        match = _EXISTS_RE.match(term)
        if match:
            requirements.append(AnnotationRequirement(match.group(2), match.group(1) or "exists"))
            continue
        raise ValueError(f"invalid annotation filter term '{term}'")
    return requirements


def matches_annotation_filter(
    annotations: Dict[str, str], requirements: List[AnnotationRequirement]
) -> bool:
    return all(req.matches(annotations) for req in requirements)


class CRDSource:
    """Lists DNSEndpoint resources and turns their spec into endpoints.

    Every emitted endpoint carries a back-reference to its resource so that
    the status of the resource can be updated once its records are applied.
    Resources are listed by label selector and then narrowed by an optional
    annotation filter; resources filtered out are neither synced nor observed.
    """

    def __init__(
        self,
        client: DNSEndpointClient,
        *,
        label_selector: str = "",
        annotation_filter: str = "",
        api_version: str = "",
        status_syncer: Optional[DNSEndpointStatusSyncer] = None,
    ):
        self.client = client
        self.label_selector = label_selector
        self.annotation_filter = parse_annotation_filter(annotation_filter)
        self.api_version = api_version
        self.status_syncer = status_syncer

    def _endpoints_for(self, resource: DNSEndpoint) -> List[Endpoint]:
        ref = ObjectReference(
            kind=KIND,
            namespace=resource.namespace,
            name=resource.name,
            uid=resource.uid,
            api_version=self.api_version,
        )
        endpoints: List[Endpoint] = []
        for raw in resource.endpoints:
            try:
                ep = Endpoint.from_spec(raw if isinstance(raw, dict) else {})
            except ValueError as e:
                logger.warning(f"Skipping invalid endpoint in {KIND} {resource.key}: {e}")
                continue

            if has_illegal_target(ep):
                logger.warning(
                    f"Endpoint {resource.key} with DNSName {ep.dns_name} has an illegal target format."
                )
                continue

            ep.with_label(RESOURCE_LABEL_KEY, f"crd/{resource.namespace}/{resource.name}")
            ep.with_ref(ref)
            endpoints.append(ep)
        return endpoints

    def endpoints(self) -> Tuple[List[Endpoint], List[DNSEndpoint]]:
        """Return the desired endpoints and the resources they were read from.

        Raises:
            StatusClientError: if the resources cannot be listed.
        """
        resources = [
            resource
            for resource in self.client.list(self.label_selector)
            if matches_annotation_filter(resource.annotations, self.annotation_filter)
        ]
        endpoints: List[Endpoint] = []
        for resource in resources:
            endpoints.extend(self._endpoints_for(resource))
            if self.status_syncer is not None:
                self.status_syncer.observe(resource)

        logger.debug(f"Read {len(endpoints)} endpoint(s) from {len(resources)} {KIND}(s)")
        return endpoints, resources
