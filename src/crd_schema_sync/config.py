# ABOUTME: Configuration management for crd-schema-sync
# ABOUTME: Defines CRD source descriptors and environment-driven sync settings

"""
Configuration management using pydantic-settings.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

This module defines two kinds of configuration:

1. CRD SOURCES: Where CRDs come from. A source is EITHER a URL serving
   (multi-document) YAML manifests OR a Kubernetes cluster whose API server
   is asked for its CustomResourceDefinitions.

2. SYNC SETTINGS: Where schemas are written, whether a pull request is
   created, which repository/branch it targets, logging verbosity.

=============================================================================
SOURCES AS A TAGGED UNION
=============================================================================

Each source carries a "type" tag:

    {"type": "url", "id": "kong", "name": "Kong", "url": "https://...",
     "group": "configuration.konghq.com"}

    {"type": "k8s-cluster", "id": "prod", "name": "Prod", "context": "prod"}

Pydantic's discriminated unions use the tag to pick exactly one model,
so a URL source can never carry cluster fields and vice versa (unknown
fields are rejected). Code that consumes a source checks the model class:

    if isinstance(source, UrlSource): ...

=============================================================================
ENVIRONMENT VARIABLE MAPPING
=============================================================================

    CRD_SYNC_SOURCES            -> JSON array of sources
    CRD_SYNC_SOURCES_FILE       -> YAML file with a top-level "sources:" list
    CRD_SYNC_TARGET_REPO        -> GitHub repository (owner/repo)
    CRD_SYNC_TARGET_BRANCH      -> Base branch for pull requests (default: main)
    CRD_SYNC_CREATE_PR          -> Open a pull request for changed schemas
    CRD_SYNC_DRY_RUN            -> Log what would be published, publish nothing
    CRD_SYNC_WORK_DIR           -> Directory schemas are written to
    CRD_SYNC_VERBOSE            -> Enable DEBUG logging
    CRD_SYNC_LOG_LEVEL          -> Log level when not verbose
    CRD_SYNC_ENV_FILE           -> Optional dotenv file read by load_settings()
    GITHUB_TOKEN                -> Token used to create pull requests
"""

from __future__ import annotations

import os
from pathlib import Path  # noqa: TC003 - Required at runtime for Pydantic
from typing import Annotated, Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, TypeAdapter, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PR_TITLE_TEMPLATE = "chore: update CRD schemas from {source}"

DEFAULT_PR_BODY_TEMPLATE = """## CRD Schema Update

Sources: {source}
Schemas updated: {count}
Timestamp: {timestamp}

Generated by `crd-schema-sync`."""


# =============================================================================
# CRD SOURCES
# =============================================================================


class UrlSource(BaseModel):
    """
    CRDs served as YAML from a URL.

    The optional ``group`` narrows the result to CRDs of one API group,
    which is useful when a release bundle ships CRDs from several groups.
    An empty group means "keep everything".
    """

    model_config = {"extra": "forbid", "frozen": True}

    type: Literal["url"] = "url"
    id: str = Field(description="Stable source identifier")
    name: str = Field(description="Display name")
    url: str = Field(description="URL of the YAML manifest(s)")
    group: str = Field(default="", description="Only keep CRDs of this API group")
    enabled: bool = Field(default=True, description="Process this source")


class ClusterSource(BaseModel):
    """
    CRDs listed from a live Kubernetes cluster.

    Credentials come from the kubeconfig context (current-context when
    ``context`` is not set). ``api_server_url`` and ``ca_path`` override
    what the kubeconfig says, e.g. when reaching the API server through a
    tunnel.
    """

    model_config = {"extra": "forbid", "frozen": True, "populate_by_name": True}

    type: Literal["k8s-cluster"] = "k8s-cluster"
    id: str = Field(description="Stable source identifier")
    name: str = Field(description="Display name")
    context: str | None = Field(default=None, description="Kubeconfig context name")
    # Reserved: CRDs are cluster-scoped, so listing ignores it
    namespace: str | None = Field(default=None, description="Namespace filter")
    api_server_url: str | None = Field(
        default=None,
        alias="apiServerUrl",
        description="API server URL overriding the kubeconfig cluster",
    )
    ca_path: str | None = Field(
        default=None,
        alias="caPath",
        description="CA bundle path overriding the kubeconfig cluster",
    )
    enabled: bool = Field(default=True, description="Process this source")

    @field_validator("api_server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str | None) -> str | None:
        """Drop trailing slashes so API paths can be appended directly."""
        return v.rstrip("/") if v else v


CRDSource = Annotated[UrlSource | ClusterSource, Field(discriminator="type")]

_sources_adapter: TypeAdapter[list[UrlSource | ClusterSource]] = TypeAdapter(list[CRDSource])


def parse_sources(data: Any) -> list[UrlSource | ClusterSource]:
    """
    Validate a list of raw source mappings into source models.

    Raises:
        pydantic.ValidationError: If an entry has an unknown type or bad fields.
    """
    return _sources_adapter.validate_python(data or [])


def load_sources_file(path: Path) -> list[UrlSource | ClusterSource]:
    """
    Read sources from a YAML file with a top-level ``sources:`` list.

    Example file:

        sources:
          - type: url
            id: kong
            name: Kong Ingress Controller
            url: https://raw.githubusercontent.com/Kong/.../all-crds.yaml
            group: configuration.konghq.com
          - type: k8s-cluster
            id: staging
            name: Staging cluster
            context: staging
    """
    with path.open(encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}
    if not isinstance(document, dict):
        raise ValueError(f"Sources file {path} must contain a mapping with a 'sources' list")
    return parse_sources(document.get("sources"))


# =============================================================================
# SYNC SETTINGS
# =============================================================================


class SyncSettings(BaseSettings):
    """
    Main configuration for a sync run.

    USAGE:
    ------
        settings = load_settings(work_dir=Path("./schemas"), create_pr=True)
        for source in settings.enabled_sources:
            ...
    """

    model_config = SettingsConfigDict(
        env_prefix="CRD_SYNC_",
        extra="ignore",
        populate_by_name=True,
    )

    sources: list[CRDSource] = Field(
        default_factory=list,
        description="CRD sources, processed in order",
    )

    sources_file: Path | None = Field(
        default=None,
        description="YAML file whose 'sources' list is appended to sources",
    )

    target_repo: str = Field(
        default="",
        description="GitHub repository receiving pull requests (owner/repo)",
    )

    target_branch: str = Field(default="main", description="Base branch for pull requests")

    github_token: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="GITHUB_TOKEN",
        description="GitHub token used to create pull requests",
    )

    create_pr: bool = Field(default=False, description="Open a PR for changed schemas")

    dry_run: bool = Field(default=False, description="Do not publish anything")

    pr_title_template: str = Field(
        default=DEFAULT_PR_TITLE_TEMPLATE,
        description="PR title; {source} is replaced by the changed source names",
    )

    pr_body_template: str = Field(
        default=DEFAULT_PR_BODY_TEMPLATE,
        description="PR body; supports {source}, {count} and {timestamp}",
    )

    work_dir: Path = Field(default=Path("./schemas"), description="Schema output directory")

    verbose: bool = Field(default=False, description="Enable DEBUG logging")

    log_level: Annotated[str, Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")] = Field(
        default="INFO",
        description="Logging level",
    )

    @model_validator(mode="after")
    def merge_sources_file(self) -> SyncSettings:
        """Append the sources declared in sources_file, if one is configured."""
        if self.sources_file is not None:
            self.sources = [*self.sources, *load_sources_file(self.sources_file)]
            self.sources_file = None
        return self

    @property
    def enabled_sources(self) -> list[UrlSource | ClusterSource]:
        """Sources with enabled=True, in configuration order."""
        return [source for source in self.sources if source.enabled]

    @property
    def effective_log_level(self) -> str:
        """DEBUG when verbose, otherwise the configured log level."""
        return "DEBUG" if self.verbose else self.log_level


def load_settings(**overrides: Any) -> SyncSettings:
    """
    Load settings from the environment, applying explicit overrides.

    Overrides (typically from CLI flags) win over environment variables.
    When CRD_SYNC_ENV_FILE is set, that dotenv file is read as well.

    Raises:
        pydantic.ValidationError: If configuration is invalid.
    """
    return SyncSettings(
        _env_file=os.environ.get("CRD_SYNC_ENV_FILE"),
        **{key: value for key, value in overrides.items() if value is not None},
    )
