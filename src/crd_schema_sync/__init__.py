# ABOUTME: CRD schema sync package initialization
# ABOUTME: Exposes version information for the crd_schema_sync package

"""
crd-schema-sync - Kubernetes CRD schemas as strict JSON Schema.

=============================================================================
WHAT DOES THIS PACKAGE DO?
=============================================================================

Kubernetes CustomResourceDefinitions (CRDs) embed an OpenAPI v3 schema for
every API version they serve. Editors and validators (kubeconform, the YAML
language server, ...) want plain JSON Schema instead.

This package:

1. FETCHES CRDs from a URL (multi-document YAML) or a live cluster API
2. NORMALIZES them into one record per (CRD, version) pair
3. CONVERTS each OpenAPI v3 schema into a strict JSON Schema document
4. DETECTS which converted schemas differ from what is already on disk
5. SAVES them as {group}/{kind}_{version}.json and optionally opens a PR

=============================================================================
PACKAGE STRUCTURE OVERVIEW
=============================================================================

crd_schema_sync/
├── __init__.py          <- YOU ARE HERE: Package entry point
├── config.py            <- Settings and CRD source descriptors
├── kubeconfig.py        <- Kubeconfig loading and credential resolution
├── sources.py           <- Fetch raw CRDs from URLs and clusters
├── crds.py              <- Expand raw CRDs into per-version records
├── schema.py            <- OpenAPI v3 -> JSON Schema conversion
├── storage.py           <- Change detection, saving and loading schemas
├── sync.py              <- Command orchestration (sync/dump/download/publish)
├── cli.py               <- Command-line entry point
└── utils/
    ├── client.py        <- HTTP client for the Kubernetes API server
    ├── github.py        <- HTTP client for the GitHub REST API
    └── logging.py       <- Structured logging with run ids
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
