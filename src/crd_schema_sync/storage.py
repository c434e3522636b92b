# ABOUTME: Schema persistence: change detection, saving and loading the schema tree
# ABOUTME: Compares converted schemas with on-disk JSON in canonical (key-sorted) form

"""
Schema files on disk.

Layout: ``{base_dir}/{group}/{kind}_{version}.json`` (lowercase kind and
version), UTF-8, 2-space indented JSON.

Change detection compares canonical forms: both the freshly converted
schema and the file on disk are serialized with sorted keys, so formatting
or key order alone never counts as a change.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from crd_schema_sync.schema import convert_openapi_to_json_schema, generate_schema_path

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from crd_schema_sync.crds import ParsedCRD

logger = structlog.get_logger(__name__)


class PersistenceError(Exception):
    """Writing a schema file (or its directory) failed."""

    def __init__(self, path: Path, cause: OSError) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


def canonical_json(value: Any) -> str:
    """Serialize with sorted keys for content comparison."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def render_schema(schema: dict[str, Any]) -> str:
    """Pretty-printed file content for a schema."""
    return json.dumps(schema, indent=2, ensure_ascii=False)


def schema_path(crd: ParsedCRD) -> str:
    """Relative path of the schema file for a record."""
    return generate_schema_path(crd.group, crd.kind, crd.version)


def detect_changed_schemas(
    crds: list[ParsedCRD],
    base_dir: Path,
    log: FilteringBoundLogger | None = None,
) -> list[ParsedCRD]:
    """
    Return the records whose converted schema differs from the file on disk.

    A missing file is new (changed). A file that cannot be read or parsed
    is treated as stale (changed).
    """
    log = log or logger
    changed: list[ParsedCRD] = []

    for crd in crds:
        path = base_dir / schema_path(crd)
        if not path.is_file():
            log.debug("New schema", path=schema_path(crd))
            changed.append(crd)
            continue

        try:
            existing = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.debug(
                "Existing schema unreadable, treating as changed", path=str(path), error=str(e)
            )
            changed.append(crd)
            continue

        schema = convert_openapi_to_json_schema(crd.openapi_v3_schema)
        if canonical_json(schema) != canonical_json(existing):
            log.debug("Changed schema", path=schema_path(crd))
            changed.append(crd)

    return changed


def save_schemas(
    crds: list[ParsedCRD],
    base_dir: Path,
    log: FilteringBoundLogger | None = None,
) -> dict[str, str]:
    """
    Convert and write every record's schema.

    Returns:
        Mapping of relative path to the exact content written

    Raises:
        PersistenceError: If a directory or file cannot be written
    """
    log = log or logger
    files: dict[str, str] = {}

    try:
        base_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise PersistenceError(base_dir, e) from e

    for crd in crds:
        relative = schema_path(crd)
        path = base_dir / relative
        content = render_schema(convert_openapi_to_json_schema(crd.openapi_v3_schema))

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(path, e) from e

        files[relative] = content

    log.debug("Saved schemas", count=len(files), base_dir=str(base_dir))
    return files


def load_existing_schemas(
    base_dir: Path,
    log: FilteringBoundLogger | None = None,
) -> dict[str, Any]:
    """
    Load every ``*.json`` file below ``base_dir``.

    Keys are POSIX paths relative to ``base_dir``. Files that cannot be read
    or parsed are logged and skipped; a missing directory yields ``{}``.
    """
    log = log or logger
    schemas: dict[str, Any] = {}

    if not base_dir.is_dir():
        return schemas

    for path in sorted(base_dir.rglob("*.json")):
        if not path.is_file():
            continue
        try:
            schemas[path.relative_to(base_dir).as_posix()] = json.loads(
                path.read_text(encoding="utf-8")
            )
        except (OSError, ValueError) as e:
            log.error("Failed to load schema", path=str(path), error=str(e))

    return schemas
