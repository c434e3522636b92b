# ABOUTME: Orchestrates sync, dump, download and publish runs end to end
# ABOUTME: Collects per-source failures and reports every run as a SyncResult

"""
Run orchestration.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Each command the CLI offers is one coroutine here, and each returns a
SyncResult instead of raising:

    run_sync()                    fetch -> detect changes -> save -> maybe PR
    dump_crds_from_cluster()      one cluster -> save
    download_crds_from_sources()  all enabled sources -> save
    publish_schemas()             on-disk schema tree -> PR

=============================================================================
FAILURE HANDLING
=============================================================================

Two levels:

1. PER SOURCE: A FetchError from one source is recorded in result.errors
   as "Failed to fetch from {name}: {error}" and the run continues with
   the remaining sources.

2. FATAL: Anything else (kubeconfig problems, a malformed CRD list, a
   write failure, a GitHub API error, a missing token) ends the run with
   success=False; the error text becomes result.message and is appended
   to result.errors.

Every run gets a fresh run id, so all of its log lines can be grepped
together.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

from crd_schema_sync.config import ClusterSource, SyncSettings, UrlSource, load_settings
from crd_schema_sync.crds import ParsedCRD
from crd_schema_sync.kubeconfig import get_cluster_info
from crd_schema_sync.sources import FetchError, fetch_and_parse_crds
from crd_schema_sync.storage import detect_changed_schemas, save_schemas, schema_path
from crd_schema_sync.utils.github import GitHubClient, parse_github_repo
from crd_schema_sync.utils.logging import new_run_id

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

logger = structlog.get_logger(__name__)

TOKEN_REQUIRED_MESSAGE = "GITHUB_TOKEN environment variable is required to create PRs"
DRY_RUN_MESSAGE = "Dry run completed. PR would have been created."

PUBLISH_PR_TITLE = "chore: publish CRD schemas"

PUBLISH_PR_BODY = """## CRD Schema Publication

Schemas updated: {count}
Timestamp: {timestamp}

Generated by `crd-schema-sync`."""


@dataclass
class SyncResult:
    """
    Outcome of one command run.

    Attributes:
        success: Whether the run completed (per-source fetch errors allowed)
        message: Human-readable status line
        generated_schemas: Every record produced (or read back from disk)
        changed_schemas: Records considered new or changed
        errors: Per-source and fatal error messages, in order
        pr_url: URL of the pull request, when one was created
    """

    success: bool = False
    message: str = ""
    generated_schemas: list[ParsedCRD] = field(default_factory=list)
    changed_schemas: list[ParsedCRD] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    pr_url: str | None = None


# =============================================================================
# HELPERS
# =============================================================================


def _utc_timestamp() -> str:
    """Current UTC time as ISO 8601 with millisecond precision, "Z" suffix."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def branch_name_for(timestamp: str) -> str:
    """Head branch for a PR opened at ``timestamp``: crd-sync/YYYY-MM-DD."""
    return f"crd-sync/{timestamp[:10]}"


def _fail(result: SyncResult, error: Exception, log: FilteringBoundLogger) -> SyncResult:
    message = str(error)
    result.success = False
    result.message = message
    result.errors.append(message)
    log.error("Run failed", error=message, error_type=type(error).__name__)
    return result


async def _collect_from_sources(
    sources: list[UrlSource | ClusterSource],
    result: SyncResult,
    log: FilteringBoundLogger,
) -> list[ParsedCRD]:
    """Fetch and parse every source, recording FetchErrors in result.errors."""
    all_crds: list[ParsedCRD] = []

    for source in sources:
        log.info("Fetching CRDs", source=source.name)
        try:
            crds = await fetch_and_parse_crds(source, log=log)
        except FetchError as e:
            message = f"Failed to fetch from {source.name}: {e}"
            log.error(message)
            result.errors.append(message)
            continue

        log.debug("Parsed CRDs", source=source.name, count=len(crds))
        all_crds.extend(crds)

    return all_crds


async def _open_pull_request(
    settings: SyncSettings,
    title: str,
    body: str,
    files: dict[str, str],
    branch: str,
    log: FilteringBoundLogger,
) -> str:
    repo = parse_github_repo(settings.target_repo)
    log.info("Creating GitHub PR", repo=str(repo), branch=branch, files=len(files))

    async with GitHubClient(settings.github_token, repo, settings.target_branch) as gh:
        pr_url = await gh.create_pr_with_files(title, body, files, branch)

    log.info("PR created", url=pr_url)
    return pr_url


# =============================================================================
# COMMANDS
# =============================================================================


async def run_sync(
    settings: SyncSettings | None = None,
    log: FilteringBoundLogger | None = None,
) -> SyncResult:
    """
    Fetch all enabled sources, save their schemas, and open a PR for changes.

    A pull request is only attempted when settings.create_pr is set and at
    least one schema is new or changed. Its files are exactly the changed
    schemas, with the content that was just written to disk.
    """
    settings = settings or load_settings()
    new_run_id()
    log = (log or logger).bind(command="sync")
    result = SyncResult()

    try:
        log.info("Starting CRD schema sync")
        log.debug(
            "Sync configuration",
            target_repo=settings.target_repo,
            work_dir=str(settings.work_dir),
            sources=[source.name for source in settings.enabled_sources],
        )

        all_crds = await _collect_from_sources(settings.enabled_sources, result, log)
        result.generated_schemas = all_crds

        log.info("Detecting changes")
        changed = detect_changed_schemas(all_crds, settings.work_dir, log=log)
        result.changed_schemas = changed
        log.debug("Schemas changed or new", count=len(changed))

        log.info("Saving schemas to disk", work_dir=str(settings.work_dir))
        files = save_schemas(all_crds, settings.work_dir, log=log)

        if settings.create_pr and changed:
            if not settings.github_token.get_secret_value():
                raise ValueError(TOKEN_REQUIRED_MESSAGE)

            if settings.dry_run:
                log.info("DRY RUN: Would create PR with changes", files=sorted(files))
                result.message = DRY_RUN_MESSAGE
            else:
                timestamp = _utc_timestamp()
                source_names = ", ".join(dict.fromkeys(crd.source.name for crd in changed))
                title = settings.pr_title_template.replace("{source}", source_names)
                body = (
                    settings.pr_body_template.replace("{source}", source_names)
                    .replace("{count}", str(len(changed)))
                    .replace("{timestamp}", timestamp)
                )
                pr_files = {schema_path(crd): files.get(schema_path(crd), "{}") for crd in changed}

                result.pr_url = await _open_pull_request(
                    settings, title, body, pr_files, branch_name_for(timestamp), log
                )
                result.message = f"Successfully created PR: {result.pr_url}"
        elif not changed:
            result.message = "No changes detected"
        else:
            result.message = "Schemas generated successfully"

        result.success = True
        log.info("Sync completed successfully")
    except Exception as e:
        return _fail(result, e, log)

    return result


async def dump_crds_from_cluster(
    context_name: str | None = None,
    output_dir: Path = Path("./schemas"),
    log: FilteringBoundLogger | None = None,
) -> SyncResult:
    """
    Save the schemas of every CRD installed in one cluster.

    Args:
        context_name: Kubeconfig context (default: current-context)
        output_dir: Schema output directory
    """
    new_run_id()
    log = (log or logger).bind(command="dump")
    result = SyncResult()

    try:
        log.info("Fetching cluster information")
        cluster = get_cluster_info(context_name, log=log)
        log.info("Dumping CRDs from cluster", cluster=cluster.name, server=cluster.server_url)

        source = ClusterSource(
            id="k8s-cluster",
            name=cluster.name,
            context=context_name,
        )

        crds = await fetch_and_parse_crds(source, log=log)
        result.generated_schemas = crds
        log.info("Fetched CRDs", count=len(crds))

        log.info("Saving schemas to disk", work_dir=str(output_dir))
        save_schemas(crds, output_dir, log=log)

        result.message = f"Successfully dumped {len(crds)} CRDs to {output_dir}"
        result.success = True
        log.info("Dump completed successfully")
    except Exception as e:
        return _fail(result, e, log)

    return result


async def download_crds_from_sources(
    settings: SyncSettings | None = None,
    log: FilteringBoundLogger | None = None,
) -> SyncResult:
    """Fetch all enabled sources and save their schemas; no change detection, no PR."""
    settings = settings or load_settings()
    new_run_id()
    log = (log or logger).bind(command="download")
    result = SyncResult()

    try:
        log.info("Downloading CRDs from configured sources")
        all_crds = await _collect_from_sources(settings.enabled_sources, result, log)
        result.generated_schemas = all_crds

        log.info("Saving schemas to disk", work_dir=str(settings.work_dir))
        save_schemas(all_crds, settings.work_dir, log=log)

        result.message = f"Successfully downloaded {len(all_crds)} CRDs to {settings.work_dir}"
        result.success = True
        log.info("Download completed successfully")
    except Exception as e:
        return _fail(result, e, log)

    return result


def load_local_schemas(
    base_dir: Path,
    log: FilteringBoundLogger | None = None,
) -> list[tuple[ParsedCRD, str]]:
    """
    Rebuild records from a schema tree written by save_schemas().

    Only ``{base_dir}/{group}/{kind}_{version}.json`` files are considered.
    The kind and version come from the file name (lowercase, as written);
    a name without "_" gets version "v1". Files that are not valid JSON
    are logged and skipped. A missing ``base_dir`` yields no records.

    Returns:
        (record, file content) pairs in path order
    """
    log = log or logger
    records: list[tuple[ParsedCRD, str]] = []

    if not base_dir.is_dir():
        log.warning("Schema directory does not exist", work_dir=str(base_dir))
        return records

    for group_dir in sorted(p for p in base_dir.iterdir() if p.is_dir()):
        group = group_dir.name
        source = UrlSource(id="local", name="Local Schemas", url="", group=group)

        for path in sorted(group_dir.glob("*.json")):
            try:
                content = path.read_text(encoding="utf-8")
                schema = json.loads(content)
            except (OSError, ValueError) as e:
                log.warning("Failed to parse schema", path=str(path), error=str(e))
                continue

            kind, _, version = path.stem.partition("_")
            records.append(
                (
                    ParsedCRD(
                        name=f"{kind}.{group}",
                        plural_name=kind,
                        group=group,
                        kind=kind,
                        version=version or "v1",
                        openapi_v3_schema=schema,
                        raw_yaml="",
                        source=source,
                    ),
                    content,
                )
            )

    return records


async def publish_schemas(
    settings: SyncSettings | None = None,
    log: FilteringBoundLogger | None = None,
) -> SyncResult:
    """
    Open a pull request with every schema file currently on disk.

    Without settings.create_pr this only reports what is on disk.
    """
    settings = settings or load_settings()
    new_run_id()
    log = (log or logger).bind(command="publish")
    result = SyncResult()

    try:
        log.info("Publishing schemas via PR")
        log.debug("Publish configuration", target_repo=settings.target_repo)

        local = load_local_schemas(settings.work_dir, log=log)
        result.generated_schemas = [crd for crd, _ in local]

        if not settings.create_pr:
            result.message = "Publish command requires --create-pr flag to be set"
            result.success = True
            log.info(result.message)
            return result

        if not settings.github_token.get_secret_value():
            raise ValueError(TOKEN_REQUIRED_MESSAGE)

        result.changed_schemas = list(result.generated_schemas)

        if not local:
            result.message = "No schemas to publish"
            result.success = True
            return result

        if settings.dry_run:
            log.info("DRY RUN: Would create PR with changes", count=len(local))
            result.message = DRY_RUN_MESSAGE
        else:
            timestamp = _utc_timestamp()
            body = PUBLISH_PR_BODY.format(count=len(local), timestamp=timestamp)
            pr_files = {schema_path(crd): content for crd, content in local}

            result.pr_url = await _open_pull_request(
                settings, PUBLISH_PR_TITLE, body, pr_files, branch_name_for(timestamp), log
            )
            result.message = f"Successfully created PR: {result.pr_url}"

        result.success = True
        log.info("Publish completed successfully")
    except Exception as e:
        return _fail(result, e, log)

    return result
