# ABOUTME: GitHub REST API client used to publish schema changes as a pull request
# ABOUTME: Creates a branch, commits files through the contents API and opens the PR

"""
GitHub publishing client.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

Publishing changed schemas is a four-step dance with the GitHub REST API:

1. BRANCH: Delete a stale branch of the same name, then create it from the
   tip of the base branch
       GET    /repos/{owner}/{repo}/git/ref/heads/{base}
       POST   /repos/{owner}/{repo}/git/refs
2. COMMIT: One commit per file through the contents API
       GET    /repos/{owner}/{repo}/contents/{path}?ref={branch}   (blob sha)
       PUT    /repos/{owner}/{repo}/contents/{path}
3. PULL REQUEST: Open it against the base branch
       POST   /repos/{owner}/{repo}/pulls
4. RESULT: The PR's html_url

Authentication is a token in the Authorization header:
    Authorization: Bearer <token>

=============================================================================
CONTEXT MANAGER (async with)
=============================================================================

    async with GitHubClient(token, parse_github_repo("owner/repo"), "main") as gh:
        url = await gh.create_pr_with_files(title, body, files, "crd-sync/2024-01-15")
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
import structlog
from pydantic import SecretStr

logger = structlog.get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"


# =============================================================================
# ERRORS
# =============================================================================


class GitHubError(Exception):
    """
    Structured GitHub API error.

    GitHub reports failures as {"message": "...", "documentation_url": "..."};
    validation failures add an "errors" list, kept here as details.
    """

    def __init__(self, code: int, message: str, details: str | None = None) -> None:
        self.code = code
        self.message = message
        self.details = details
        super().__init__(str(self))

    def __str__(self) -> str:
        base = f"GitHub API error ({self.code}): {self.message}"
        if self.details:
            base += f" - {self.details}"
        return base


class GitHubRepoFormatError(ValueError):
    """A repository string is not in owner/repo form."""


# =============================================================================
# REPOSITORY REFERENCE
# =============================================================================


@dataclass(frozen=True)
class GitHubRepo:
    """Repository coordinates."""

    owner: str
    repo: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_github_repo(value: str) -> GitHubRepo:
    """
    Parse "owner/repo".

    Raises:
        GitHubRepoFormatError: If either part is missing.
    """
    parts = value.split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise GitHubRepoFormatError("Invalid GitHub repository format. Expected: owner/repo")
    return GitHubRepo(owner=parts[0], repo=parts[1])


# =============================================================================
# GITHUB CLIENT
# =============================================================================


class GitHubClient:
    """
    Async GitHub REST API client for branch/commit/PR operations.

    Always use as an async context manager; the httpx client lives between
    __aenter__ and __aexit__.
    """

    def __init__(
        self,
        token: SecretStr,
        repo: GitHubRepo,
        base_branch: str,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        self._repo = repo
        self._base_branch = base_branch
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> GitHubClient:
        self._client = httpx.AsyncClient(
            base_url=f"{self._api_url}/repos/{self._repo.owner}/{self._repo.repo}",
            headers={
                "Authorization": f"Bearer {self._token.get_secret_value()}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an HTTP request to the repository API.

        Raises:
            GitHubError: On 4xx/5xx responses
            RuntimeError: If the client was not entered with 'async with'
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        log = logger.bind(method=method, path=path, repo=str(self._repo))
        log.debug("Making GitHub API request")

        response = await self._client.request(method, path, params=params, json=json_data)

        if response.status_code >= 400:
            error_body = response.text
            log.warning("GitHub API error", status=response.status_code, body=error_body[:200])

            message = f"HTTP {response.status_code}"
            details = None
            try:
                error_json = response.json()
                message = error_json.get("message", message)
                if error_json.get("errors"):
                    details = str(error_json["errors"])
            except Exception:
                details = error_body[:200] if error_body else None

            raise GitHubError(code=response.status_code, message=message, details=details)

        if not response.content:
            return {}
        data = response.json()
        return data if isinstance(data, dict) else {"items": data}

    # =========================================================================
    # BRANCHES
    # =========================================================================

    async def branch_exists(self, branch: str) -> bool:
        """Whether ``branch`` exists (any API error counts as "no")."""
        try:
            await self._request("GET", f"/branches/{quote(branch, safe='')}")
        except GitHubError:
            return False
        return True

    async def get_base_commit_sha(self) -> str:
        """SHA of the base branch tip."""
        data = await self._request("GET", f"/git/ref/heads/{self._base_branch}")
        return str(data["object"]["sha"])

    async def create_branch(self, branch: str, sha: str) -> None:
        """Create ``branch`` pointing at ``sha``."""
        await self._request(
            "POST",
            "/git/refs",
            json_data={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    async def delete_branch(self, branch: str) -> None:
        """Delete ``branch``."""
        await self._request("DELETE", f"/git/refs/heads/{branch}")

    # =========================================================================
    # FILES
    # =========================================================================

    async def _get_contents(self, path: str, branch: str) -> dict[str, Any] | None:
        try:
            data = await self._request("GET", f"/contents/{path}", params={"ref": branch})
        except GitHubError as e:
            if e.code == 404:
                return None
            raise
        # A directory listing is not a file
        return None if "items" in data else data

    async def get_file_content(self, path: str, branch: str | None = None) -> str | None:
        """
        Decoded content of a file, or None if it does not exist.

        Args:
            path: Repository-relative file path
            branch: Branch to read from (default: base branch)
        """
        data = await self._get_contents(path, branch or self._base_branch)
        if not data or "content" not in data:
            return None
        return base64.b64decode(data["content"]).decode("utf-8")

    async def create_or_update_file(
        self,
        path: str,
        content: str,
        branch: str,
        message: str,
    ) -> str:
        """
        Commit ``content`` to ``path`` on ``branch``.

        Existing files are updated in place (their blob sha is looked up
        first); missing files are created.

        Returns:
            The SHA of the new commit
        """
        existing = await self._get_contents(path, branch)
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if existing and existing.get("sha"):
            body["sha"] = existing["sha"]

        data = await self._request("PUT", f"/contents/{path}", json_data=body)
        return str(data["commit"]["sha"])

    # =========================================================================
    # PULL REQUESTS
    # =========================================================================

    async def create_pull_request(self, title: str, body: str, head_branch: str) -> str:
        """Open a pull request from ``head_branch`` and return its URL."""
        data = await self._request(
            "POST",
            "/pulls",
            json_data={
                "title": title,
                "body": body,
                "head": head_branch,
                "base": self._base_branch,
            },
        )
        return str(data["html_url"])

    async def create_pr_with_files(
        self,
        title: str,
        body: str,
        files: dict[str, str],
        branch: str,
    ) -> str:
        """
        Branch from base, commit every file, open a pull request.

        A pre-existing branch with the same name is deleted first, so
        re-running on the same day replaces the previous attempt.

        Args:
            title: PR title
            body: PR body (markdown)
            files: Repository-relative path -> file content
            branch: Head branch name

        Returns:
            The pull request's html_url
        """
        if await self.branch_exists(branch):
            logger.info("Deleting existing branch", branch=branch)
            await self.delete_branch(branch)

        base_sha = await self.get_base_commit_sha()
        await self.create_branch(branch, base_sha)

        for path, content in files.items():
            await self.create_or_update_file(
                path,
                content,
                branch,
                f"chore: add/update schema {path}",
            )

        return await self.create_pull_request(title, body, branch)
