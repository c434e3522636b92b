# ABOUTME: Unit tests for run orchestration (sync, dump, download, publish)
# ABOUTME: Tests per-source error collection, fatal errors, messages and PR staging

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
import yaml
from pydantic import SecretStr

from crd_schema_sync.config import SyncSettings, UrlSource
from crd_schema_sync.sync import (
    SyncResult,
    branch_name_for,
    download_crds_from_sources,
    dump_crds_from_cluster,
    load_local_schemas,
    publish_schemas,
    run_sync,
)
from crd_schema_sync.utils.client import CRD_LIST_PATH
from crd_schema_sync.utils.github import GitHubClient

CRD_URL = "https://example.com/crds.yaml"
BROKEN_URL = "https://broken.example.com/crds.yaml"
PR_URL = "https://github.com/acme/schemas/pull/42"
SCHEMA_FILE = "configuration.konghq.com/kongconsumer_v1.json"


def make_settings(schema_dir: Path, **kwargs) -> SyncSettings:
    kwargs.setdefault(
        "sources",
        [UrlSource(id="kong", name="Kong", url=CRD_URL, group="configuration.konghq.com")],
    )
    return SyncSettings(work_dir=schema_dir, target_repo="acme/schemas", **kwargs)


@pytest.fixture
def serve_crds(sample_crd):
    """Serve the sample CRD at CRD_URL (use inside respx.mock)."""

    def _serve(*crds):
        body = "---\n".join(yaml.safe_dump(crd) for crd in (crds or [sample_crd]))
        return respx.get(CRD_URL).mock(return_value=httpx.Response(200, text=body))

    return _serve


@pytest.mark.unit
class TestSyncResult:
    """Tests for SyncResult defaults."""

    def test_defaults(self):
        """Test that a new result is an empty failure."""
        result = SyncResult()

        assert result.success is False
        assert result.message == ""
        assert result.generated_schemas == []
        assert result.changed_schemas == []
        assert result.errors == []
        assert result.pr_url is None

    def test_branch_name(self):
        """Test that PR branches are named after the UTC date."""
        assert branch_name_for("2024-01-15T10:20:30.000Z") == "crd-sync/2024-01-15"


@pytest.mark.unit
class TestRunSync:
    """Tests for run_sync."""

    @respx.mock
    async def test_first_run_generates_schemas(self, serve_crds, schema_dir: Path):
        """Test that a first run writes schemas and reports them as changed."""
        serve_crds()

        result = await run_sync(make_settings(schema_dir))

        assert result.success is True
        assert result.message == "Schemas generated successfully"
        assert len(result.generated_schemas) == 1
        assert len(result.changed_schemas) == 1
        assert (schema_dir / SCHEMA_FILE).is_file()

    @respx.mock
    async def test_unquoted_date_example(self, schema_dir: Path, sample_crd):
        """Test that a manifest with an unquoted date example syncs."""
        schema = sample_crd["spec"]["versions"][0]["schema"]["openAPIV3Schema"]
        schema["properties"]["username"]["example"] = "EXAMPLE_DATE"
        manifest = yaml.safe_dump(sample_crd).replace("EXAMPLE_DATE", "2024-01-01")
        respx.get(CRD_URL).mock(return_value=httpx.Response(200, text=manifest))

        result = await run_sync(make_settings(schema_dir))

        assert result.success is True, result.errors
        saved = json.loads((schema_dir / SCHEMA_FILE).read_text())
        assert saved["properties"]["username"]["example"] == "2024-01-01"

    @respx.mock
    async def test_second_run_no_changes(self, serve_crds, schema_dir: Path):
        """Test that re-running against unchanged sources reports no changes."""
        serve_crds()
        settings = make_settings(schema_dir)

        await run_sync(settings)
        result = await run_sync(settings)

        assert result.success is True
        assert result.message == "No changes detected"
        assert result.changed_schemas == []

    @respx.mock
    async def test_failed_source_is_recorded(self, serve_crds, schema_dir: Path):
        """Test that one failing source does not stop the others."""
        serve_crds()
        respx.get(BROKEN_URL).mock(return_value=httpx.Response(500, text="boom"))
        settings = make_settings(
            schema_dir,
            sources=[
                UrlSource(id="broken", name="Broken", url=BROKEN_URL),
                UrlSource(id="kong", name="Kong", url=CRD_URL),
            ],
        )

        result = await run_sync(settings)

        assert result.success is True
        assert len(result.generated_schemas) == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to fetch from Broken: broken: ")

    @respx.mock
    async def test_disabled_source_skipped(self, schema_dir: Path):
        """Test that disabled sources are never fetched."""
        settings = make_settings(
            schema_dir,
            sources=[UrlSource(id="off", name="Off", url=BROKEN_URL, enabled=False)],
        )

        result = await run_sync(settings)

        assert result.success is True
        assert result.message == "No changes detected"
        assert not respx.calls

    @respx.mock
    async def test_missing_token_is_fatal(self, serve_crds, schema_dir: Path):
        """Test that creating a PR without a token fails the run."""
        serve_crds()

        result = await run_sync(make_settings(schema_dir, create_pr=True))

        assert result.success is False
        assert result.message == "GITHUB_TOKEN environment variable is required to create PRs"
        assert result.errors == [result.message]

    @respx.mock
    async def test_dry_run(self, serve_crds, schema_dir: Path):
        """Test that dry runs report instead of publishing."""
        serve_crds()
        settings = make_settings(
            schema_dir, create_pr=True, dry_run=True, github_token=SecretStr("t")
        )

        with patch.object(GitHubClient, "create_pr_with_files", AsyncMock()) as create:
            result = await run_sync(settings)

        assert result.success is True
        assert result.message == "Dry run completed. PR would have been created."
        create.assert_not_called()

    @respx.mock
    async def test_creates_pr_with_changed_files(self, serve_crds, schema_dir: Path):
        """Test that the PR contains exactly the changed files as written to disk."""
        serve_crds()
        settings = make_settings(schema_dir, create_pr=True, github_token=SecretStr("t"))

        with patch.object(
            GitHubClient, "create_pr_with_files", AsyncMock(return_value=PR_URL)
        ) as create:
            result = await run_sync(settings)

        assert result.success is True
        assert result.pr_url == PR_URL
        assert result.message == f"Successfully created PR: {PR_URL}"

        title, body, files, branch = create.call_args.args
        assert title == "chore: update CRD schemas from Kong"
        assert "Schemas updated: 1" in body
        assert files == {SCHEMA_FILE: (schema_dir / SCHEMA_FILE).read_text(encoding="utf-8")}
        assert branch.startswith("crd-sync/")

    @respx.mock
    async def test_no_pr_without_changes(self, serve_crds, schema_dir: Path):
        """Test that no PR is attempted when nothing changed."""
        serve_crds()
        await run_sync(make_settings(schema_dir))

        with patch.object(GitHubClient, "create_pr_with_files", AsyncMock()) as create:
            result = await run_sync(make_settings(schema_dir, create_pr=True))

        assert result.message == "No changes detected"
        create.assert_not_called()

    @respx.mock
    async def test_github_failure_is_fatal(self, serve_crds, schema_dir: Path):
        """Test that a PR failure fails the run with the error message."""
        serve_crds()
        settings = make_settings(schema_dir, create_pr=True, github_token=SecretStr("t"))

        with patch.object(
            GitHubClient,
            "create_pr_with_files",
            AsyncMock(side_effect=RuntimeError("GitHub API error (403): Forbidden")),
        ):
            result = await run_sync(settings)

        assert result.success is False
        assert result.message == "GitHub API error (403): Forbidden"

    @respx.mock
    async def test_persistence_failure_is_fatal(self, serve_crds, tmp_path: Path):
        """Test that an unwritable output directory fails the run."""
        serve_crds()
        blocker = tmp_path / "blocker"
        blocker.write_text("file")

        result = await run_sync(make_settings(blocker))

        assert result.success is False
        assert "Failed to write" in result.message

    async def test_invalid_repo_is_fatal(self, schema_dir: Path, sample_crd):
        """Test that a malformed target repository fails the run."""
        settings = SyncSettings(
            work_dir=schema_dir,
            target_repo="not-a-repo",
            create_pr=True,
            github_token=SecretStr("t"),
            sources=[UrlSource(id="kong", name="Kong", url=CRD_URL)],
        )
        with respx.mock:
            respx.get(CRD_URL).mock(
                return_value=httpx.Response(200, text=yaml.safe_dump(sample_crd))
            )
            result = await run_sync(settings)

        assert result.success is False
        assert "Expected: owner/repo" in result.message


@pytest.mark.unit
class TestDownload:
    """Tests for download_crds_from_sources."""

    @respx.mock
    async def test_download(self, serve_crds, schema_dir: Path):
        """Test that downloading saves every schema and reports the count."""
        serve_crds()

        result = await download_crds_from_sources(make_settings(schema_dir))

        assert result.success is True
        assert result.message == f"Successfully downloaded 1 CRDs to {schema_dir}"
        assert result.changed_schemas == []
        assert (schema_dir / SCHEMA_FILE).is_file()


@pytest.mark.unit
class TestDump:
    """Tests for dump_crds_from_cluster."""

    @respx.mock
    async def test_dump(self, kubeconfig_file, sample_crd, schema_dir: Path):
        """Test dumping every CRD from the current context."""
        respx.get(f"https://127.0.0.1:6443{CRD_LIST_PATH}").mock(
            return_value=httpx.Response(200, json={"items": [sample_crd]})
        )

        result = await dump_crds_from_cluster(None, schema_dir)

        assert result.success is True
        assert result.message == f"Successfully dumped 1 CRDs to {schema_dir}"
        assert result.generated_schemas[0].source.name == "test"
        assert (schema_dir / SCHEMA_FILE).is_file()

    async def test_dump_without_kubeconfig(self, schema_dir: Path):
        """Test that a missing kubeconfig fails the run."""
        result = await dump_crds_from_cluster(None, schema_dir)

        assert result.success is False
        assert result.message.startswith("No kubeconfig found")

    @respx.mock
    async def test_dump_invalid_response(self, kubeconfig_file, schema_dir: Path):
        """Test that a malformed CRD list fails the run."""
        respx.get(f"https://127.0.0.1:6443{CRD_LIST_PATH}").mock(
            return_value=httpx.Response(200, json={"kind": "Status"})
        )

        result = await dump_crds_from_cluster(None, schema_dir)

        assert result.success is False
        assert result.message == "Invalid response structure - expected items array"


@pytest.mark.unit
class TestLoadLocalSchemas:
    """Tests for reconstructing records from the schema tree."""

    def test_reconstructs_records(self, schema_dir: Path):
        """Test that group, kind and version come from the path."""
        group_dir = schema_dir / "example.com"
        group_dir.mkdir(parents=True)
        (group_dir / "widget_v1beta1.json").write_text(json.dumps({"type": "object"}))

        [(record, content)] = load_local_schemas(schema_dir)

        assert record.group == "example.com"
        assert record.kind == "widget"
        assert record.version == "v1beta1"
        assert record.name == "widget.example.com"
        assert json.loads(content) == {"type": "object"}

    def test_version_defaults_to_v1(self, schema_dir: Path):
        """Test that a file name without a version gets v1."""
        group_dir = schema_dir / "example.com"
        group_dir.mkdir(parents=True)
        (group_dir / "widget.json").write_text("{}")

        [(record, _)] = load_local_schemas(schema_dir)

        assert record.version == "v1"

    def test_skips_invalid_and_top_level_files(self, schema_dir: Path):
        """Test that broken JSON and files outside group directories are ignored."""
        group_dir = schema_dir / "example.com"
        group_dir.mkdir(parents=True)
        (group_dir / "broken_v1.json").write_text("{")
        (schema_dir / "stray_v1.json").write_text("{}")

        assert load_local_schemas(schema_dir) == []

    def test_missing_directory(self, tmp_path: Path):
        """Test that a missing directory yields no records."""
        assert load_local_schemas(tmp_path / "missing") == []


@pytest.mark.unit
class TestPublish:
    """Tests for publish_schemas."""

    @pytest.fixture
    def saved_tree(self, schema_dir: Path) -> Path:
        group_dir = schema_dir / "configuration.konghq.com"
        group_dir.mkdir(parents=True)
        (group_dir / "kongconsumer_v1.json").write_text('{\n  "type": "object"\n}')
        return schema_dir

    async def test_requires_create_pr(self, saved_tree: Path):
        """Test that publishing without --create-pr only reports."""
        result = await publish_schemas(make_settings(saved_tree, sources=[]))

        assert result.success is True
        assert result.message == "Publish command requires --create-pr flag to be set"
        assert len(result.generated_schemas) == 1

    async def test_requires_token(self, saved_tree: Path):
        """Test that publishing without a token fails."""
        result = await publish_schemas(make_settings(saved_tree, sources=[], create_pr=True))

        assert result.success is False
        assert "GITHUB_TOKEN" in result.message

    async def test_nothing_to_publish(self, schema_dir: Path):
        """Test that an empty tree is reported, not published."""
        settings = make_settings(
            schema_dir, sources=[], create_pr=True, github_token=SecretStr("t")
        )

        result = await publish_schemas(settings)

        assert result.success is True
        assert result.message == "No schemas to publish"

    async def test_dry_run(self, saved_tree: Path):
        """Test that dry runs do not publish."""
        settings = make_settings(
            saved_tree, sources=[], create_pr=True, dry_run=True, github_token=SecretStr("t")
        )

        with patch.object(GitHubClient, "create_pr_with_files", AsyncMock()) as create:
            result = await publish_schemas(settings)

        assert result.message == "Dry run completed. PR would have been created."
        create.assert_not_called()

    async def test_publishes_files_from_disk(self, saved_tree: Path):
        """Test that every file on disk is published verbatim."""
        settings = make_settings(
            saved_tree, sources=[], create_pr=True, github_token=SecretStr("t")
        )

        with patch.object(
            GitHubClient, "create_pr_with_files", AsyncMock(return_value=PR_URL)
        ) as create:
            result = await publish_schemas(settings)

        assert result.success is True
        assert result.pr_url == PR_URL
        title, _body, files, _branch = create.call_args.args
        assert title == "chore: publish CRD schemas"
        assert files == {SCHEMA_FILE: '{\n  "type": "object"\n}'}
