# ABOUTME: Fetches raw CRD manifests from URL and Kubernetes cluster sources
# ABOUTME: Wraps transport, HTTP and parse failures in FetchError per source

"""
CRD source fetching.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Given a source descriptor, return the raw CRD objects it provides:

URL SOURCE:
    GET the URL, split the body into YAML documents on lines that are
    exactly "---", parse each one on its own, keep the CustomResourceDefinitions.
    Plain scalars follow YAML 1.2: dates and on/off/yes/no stay strings.
    A document that fails to parse is logged and skipped; the rest of the
    batch is still used.

CLUSTER SOURCE:
    Resolve kubeconfig credentials for the source's context, apply the
    source's API server / CA overrides, and list
    /apis/apiextensions.k8s.io/v1/customresourcedefinitions.

=============================================================================
FAILURES
=============================================================================

Transport errors, non-2xx responses and undecodable bodies raise FetchError,
which carries the source id and the underlying exception. The orchestrator
catches FetchError per source so one broken source does not stop the others.

Kubeconfig problems (KubeConfigError) and a CRD list without an "items"
array (InvalidResponseShapeError) are NOT wrapped: they mean the run is
misconfigured and abort it.
"""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

import httpx
import structlog
import yaml

from crd_schema_sync.config import ClusterSource, UrlSource
from crd_schema_sync.crds import ParsedCRD, RawCRD, is_crd, parse_crds
from crd_schema_sync.kubeconfig import resolve_auth
from crd_schema_sync.utils.client import KubernetesApiError, KubernetesClient

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

logger = structlog.get_logger(__name__)

# A line consisting solely of "---" separates YAML documents
DOCUMENT_SEPARATOR = re.compile(r"^---[ \t]*\r?$", re.MULTILINE)


class ManifestLoader(yaml.SafeLoader):
    """
    SafeLoader with YAML 1.2 core-schema scalars.

    PyYAML resolves plain scalars with YAML 1.1 rules: `2024-01-01` becomes a
    date and `on`/`off`/`yes`/`no` become booleans. CRD manifests are written
    for YAML 1.2 parsers, where those are strings. Here only `true`/`false`
    are booleans and timestamps stay strings.
    """


ManifestLoader.yaml_implicit_resolvers = {
    first: [
        (tag, regexp)
        for tag, regexp in resolvers
        if tag not in ("tag:yaml.org,2002:bool", "tag:yaml.org,2002:timestamp")
    ]
    for first, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}
ManifestLoader.add_implicit_resolver(
    "tag:yaml.org,2002:bool",
    re.compile(r"^(?:true|True|TRUE|false|False|FALSE)$"),
    list("tTfF"),
)


def load_manifest(document: str) -> Any:
    """Parse one YAML document with ManifestLoader."""
    return yaml.load(document, Loader=ManifestLoader)  # noqa: S506 - SafeLoader subclass


class FetchError(Exception):
    """
    Fetching CRDs from one source failed.

    Attributes:
        source_id: Id of the source that failed
        cause: The underlying exception
    """

    def __init__(self, source_id: str, cause: BaseException) -> None:
        self.source_id = source_id
        self.cause = cause
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"{self.source_id}: {self.cause}"


def split_yaml_documents(content: str) -> list[str]:
    """Split a multi-document YAML body, dropping blank documents."""
    return [doc for doc in DOCUMENT_SEPARATOR.split(content) if doc.strip()]


def extract_crds(
    content: str,
    source_id: str,
    log: FilteringBoundLogger | None = None,
) -> list[RawCRD]:
    """
    Parse every YAML document in ``content`` and keep the CRDs.

    Documents that fail to parse are logged and skipped.
    """
    log = log or logger
    crds: list[RawCRD] = []

    for doc in split_yaml_documents(content):
        try:
            parsed = load_manifest(doc)
        except yaml.YAMLError as e:
            log.error("Failed to parse YAML document", source=source_id, error=str(e))
            continue
        if is_crd(parsed):
            crds.append(parsed)

    return crds


async def fetch_crds_from_url(
    source: UrlSource,
    log: FilteringBoundLogger | None = None,
    timeout: float = 30.0,
) -> list[RawCRD]:
    """
    Fetch CRDs from a URL serving YAML manifests.

    Raises:
        FetchError: On transport failure or a non-2xx response
    """
    log = log or logger
    log.debug("Fetching CRDs from URL", source=source.id, url=source.url)

    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(source.url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        raise FetchError(source.id, e) from e

    crds = extract_crds(response.text, source.id, log=log)
    log.debug("Fetched CRDs from URL", source=source.id, count=len(crds))
    return crds


async def fetch_crds_from_cluster(
    source: ClusterSource,
    log: FilteringBoundLogger | None = None,
    timeout: float = 30.0,
) -> list[RawCRD]:
    """
    List CRDs from the cluster behind a kubeconfig context.

    Temporary credential files created while resolving the context are
    removed once the API call completes.

    Raises:
        KubeConfigError: Kubeconfig missing or context/cluster unresolvable
        InvalidResponseShapeError: The list response has no items array
        FetchError: Transport, TLS, HTTP or JSON decoding failure
    """
    log = log or logger

    # Exec credential plugins block, so resolve off the event loop
    profile = await asyncio.to_thread(resolve_auth, source.context, log=log)
    with profile:
        if source.api_server_url:
            profile.server_url = source.api_server_url
        if source.ca_path:
            profile.ca_path = source.ca_path

        log.debug("Fetching CRDs from cluster", source=source.id, server=profile.server_url)

        try:
            async with KubernetesClient(profile, timeout=timeout) as client:
                return await client.list_custom_resource_definitions()
        except (KubernetesApiError, httpx.HTTPError, OSError, ValueError) as e:
            raise FetchError(source.id, e) from e


async def fetch_crds(
    source: UrlSource | ClusterSource,
    log: FilteringBoundLogger | None = None,
) -> list[RawCRD]:
    """
    Fetch raw CRDs from any source.

    Raises:
        FetchError: See fetch_crds_from_url() / fetch_crds_from_cluster()
    """
    if isinstance(source, UrlSource):
        return await fetch_crds_from_url(source, log=log)
    if isinstance(source, ClusterSource):
        return await fetch_crds_from_cluster(source, log=log)
    raise TypeError(f"Unknown source type: {type(source).__name__}")


async def fetch_and_parse_crds(
    source: UrlSource | ClusterSource,
    log: FilteringBoundLogger | None = None,
) -> list[ParsedCRD]:
    """Fetch CRDs from a source and expand them into per-version records."""
    crds = await fetch_crds(source, log=log)
    return parse_crds(crds, source, log=log)
