# ABOUTME: Command-line entry point: crd-schema-sync {sync,dump,download,publish}
# ABOUTME: Maps flags onto settings, runs one command and prints a run summary

"""
Command-line interface.

    crd-schema-sync sync --create-pr --target-repo owner/schemas
    crd-schema-sync dump --context kind-dev --work-dir ./schemas
    crd-schema-sync download --sources-file sources.yaml
    crd-schema-sync publish --create-pr --dry-run

Flags override the matching CRD_SYNC_* environment variables. The exit
code is 0 when the command succeeded and 1 otherwise. When running under
GitHub Actions, the PR URL is also written to $GITHUB_OUTPUT as pr-url.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from crd_schema_sync import __version__
from crd_schema_sync.config import SyncSettings, load_settings
from crd_schema_sync.sync import (
    SyncResult,
    download_crds_from_sources,
    dump_crds_from_cluster,
    publish_schemas,
    run_sync,
)
from crd_schema_sync.utils.logging import configure_logging, debug_requested

if TYPE_CHECKING:
    from collections.abc import Coroutine, Sequence

logger = structlog.get_logger(__name__)

COMMANDS = ("sync", "dump", "download", "publish")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per run type."""
    parser = argparse.ArgumentParser(
        prog="crd-schema-sync",
        description="Convert Kubernetes CRD schemas to JSON Schema and publish changes.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--work-dir", type=Path, help="Schema output directory")
    common.add_argument(
        "--verbose",
        action="store_true",
        default=None,
        help="Enable DEBUG logging",
    )

    publishing = argparse.ArgumentParser(add_help=False)
    publishing.add_argument("--target-repo", help="GitHub repository for PRs (owner/repo)")
    publishing.add_argument("--target-branch", help="Base branch for PRs")
    publishing.add_argument(
        "--create-pr",
        action="store_true",
        default=None,
        help="Open a pull request with changed schemas",
    )
    publishing.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Report what would be published without creating a PR",
    )

    sourcing = argparse.ArgumentParser(add_help=False)
    sourcing.add_argument(
        "--sources-file",
        type=Path,
        help="YAML file with a top-level 'sources' list",
    )

    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "sync",
        parents=[common, publishing, sourcing],
        help="Fetch sources, save schemas and open a PR for changes",
    )

    dump = subparsers.add_parser(
        "dump",
        parents=[common],
        help="Save schemas of every CRD installed in a cluster",
    )
    dump.add_argument("--context", help="Kubeconfig context (default: current-context)")

    subparsers.add_parser(
        "download",
        parents=[common, sourcing],
        help="Fetch sources and save schemas without publishing",
    )

    subparsers.add_parser(
        "publish",
        parents=[common, publishing],
        help="Open a PR with the schemas already on disk",
    )

    return parser


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Settings overrides for the flags that were given on the command line."""
    return {
        "work_dir": getattr(args, "work_dir", None),
        "verbose": getattr(args, "verbose", None),
        "target_repo": getattr(args, "target_repo", None),
        "target_branch": getattr(args, "target_branch", None),
        "create_pr": getattr(args, "create_pr", None),
        "dry_run": getattr(args, "dry_run", None),
        "sources_file": getattr(args, "sources_file", None),
    }


def dispatch(
    args: argparse.Namespace, settings: SyncSettings
) -> Coroutine[Any, Any, SyncResult]:
    """Coroutine for the selected command."""
    if args.command == "dump":
        return dump_crds_from_cluster(args.context, settings.work_dir)
    if args.command == "download":
        return download_crds_from_sources(settings)
    if args.command == "publish":
        return publish_schemas(settings)
    return run_sync(settings)


def format_summary(result: SyncResult) -> str:
    """Human-readable summary printed after every run."""
    lines = [
        "",
        "Sync Summary:",
        f"   CRDs fetched: {len(result.generated_schemas)}",
        f"   Changed schemas: {len(result.changed_schemas)}",
        f"   Status: {result.message}",
    ]
    if result.pr_url:
        lines.append(f"   PR: {result.pr_url}")
    if result.errors:
        lines.append(f"   Errors: {len(result.errors)}")
        lines.extend(f"     - {error}" for error in result.errors)
    return "\n".join(lines)


def write_github_output(pr_url: str) -> None:
    """Append pr-url to the GitHub Actions step output file, when running in Actions."""
    output_path = os.environ.get("GITHUB_OUTPUT")
    if not output_path:
        return
    with open(output_path, "a", encoding="utf-8") as f:
        f.write(f"pr-url={pr_url}\n")


def main(argv: Sequence[str] | None = None) -> None:
    """Run one crd-schema-sync command and exit with its status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        sys.exit(0)

    configure_logging(level="DEBUG" if debug_requested(bool(args.verbose)) else "INFO")

    try:
        settings = load_settings(**settings_overrides(args))
    except (ValidationError, OSError, ValueError) as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(1)

    if debug_requested(settings.verbose):
        configure_logging(level="DEBUG")
    elif settings.effective_log_level != "INFO":
        configure_logging(level=settings.effective_log_level)

    try:
        result = asyncio.run(dispatch(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(1)

    print(format_summary(result))
    if result.pr_url:
        write_github_output(result.pr_url)

    sys.exit(0 if result.success else 1)


if __name__ == "__main__":
    main()
