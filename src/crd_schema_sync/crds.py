# ABOUTME: Normalizes raw CustomResourceDefinition objects into per-version records
# ABOUTME: Applies URL-source group filtering and skips versions without a schema

"""Expand raw CRD manifests into one ParsedCRD per served schema version."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
import yaml

from crd_schema_sync.config import UrlSource

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from crd_schema_sync.config import ClusterSource

logger = structlog.get_logger(__name__)

CRD_KIND = "CustomResourceDefinition"

# A raw CRD as decoded from YAML or the API server's JSON
RawCRD = dict[str, Any]


@dataclass(frozen=True)
class ParsedCRD:
    """
    One (CRD, version) pair carrying an OpenAPI v3 schema.

    ``plural_name`` is the first segment of ``name``: "kongconsumers" for
    "kongconsumers.configuration.konghq.com". ``raw_yaml`` is the whole
    owning CRD rendered as YAML, kept for reference.
    """

    name: str
    plural_name: str
    group: str
    kind: str
    version: str
    openapi_v3_schema: dict[str, Any]
    raw_yaml: str
    source: UrlSource | ClusterSource


def is_crd(document: Any) -> bool:
    """True for a mapping whose kind is CustomResourceDefinition."""
    return isinstance(document, dict) and document.get("kind") == CRD_KIND


def _accepts_group(source: UrlSource | ClusterSource, group: str) -> bool:
    # Cluster sources list whatever is installed; only URL sources filter
    if isinstance(source, UrlSource) and source.group:
        return group == source.group
    return True


def parse_crds(
    crds: list[RawCRD],
    source: UrlSource | ClusterSource,
    log: FilteringBoundLogger | None = None,
) -> list[ParsedCRD]:
    """
    Expand raw CRDs into ParsedCRD records.

    - URL sources with a group skip CRDs of other groups entirely.
    - Versions without ``schema.openAPIV3Schema`` are skipped with a warning.
    - Output order follows input CRD order, then version order.

    Args:
        crds: Raw CRD objects
        source: Source the CRDs came from
        log: Logger to report on (default: module logger)

    Returns:
        One record per (CRD, version-with-schema) pair
    """
    log = log or logger
    parsed: list[ParsedCRD] = []

    for crd in crds:
        spec = crd.get("spec") or {}
        metadata = crd.get("metadata") or {}
        group = spec.get("group", "")
        kind = (spec.get("names") or {}).get("kind", "")

        if not _accepts_group(source, group):
            log.debug("Skipping CRD outside source group", crd=metadata.get("name"), group=group)
            continue

        name = metadata.get("name", "")
        plural_name = name.split(".")[0]
        raw_yaml: str | None = None

        for version_spec in spec.get("versions") or []:
            version = version_spec.get("name", "")
            schema = (version_spec.get("schema") or {}).get("openAPIV3Schema")

            if not schema:
                log.warning("No OpenAPI v3 schema found", kind=kind, version=version)
                continue

            if raw_yaml is None:
                raw_yaml = yaml.safe_dump(crd, sort_keys=False)

            parsed.append(
                ParsedCRD(
                    name=name,
                    plural_name=plural_name,
                    group=group,
                    kind=kind,
                    version=version,
                    openapi_v3_schema=schema,
                    raw_yaml=raw_yaml,
                    source=source,
                )
            )

    return parsed
