# ABOUTME: Utilities package initialization for crd-schema-sync
# ABOUTME: Contains shared HTTP clients and logging helpers

"""
crd-schema-sync Utilities Package

Shared utilities:
    - client.py: Kubernetes API server client (CRD listing)
    - github.py: GitHub REST API client for publishing schema PRs
    - logging.py: Structured logging with run ids
"""
