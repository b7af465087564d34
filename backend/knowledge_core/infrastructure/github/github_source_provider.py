"""GitHub-backed source tree provider: a repository directory at a branch.

Uses the REST API for revisions, diffs and directory listings, and
raw.githubusercontent.com for file contents. Once the current revision has
been resolved, listings and contents are read at that exact commit.
"""

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import httpx

from knowledge_core.application.interfaces.source_provider import SourceTreeProvider
from knowledge_core.domain.entities.sync import ChangedFiles, has_extension
from knowledge_core.domain.exceptions import ProviderError, RevisionNotFoundError, ValidationError

logger = logging.getLogger(__name__)

_PROVIDER = "github"
_COMPARE_PAGE_SIZE = 100


@dataclass(frozen=True)
class GitHubLocation:
    owner: str
    repo: str
    branch: str = "main"
    path: str = ""


def parse_github_url(url: str) -> GitHubLocation:
    """Parse `https://github.com/{owner}/{repo}[/tree|blob/{branch}/{path}]`.

    >>> parse_github_url("https://github.com/gettakaro/takaro/tree/development/packages/web-docs/docs")
    GitHubLocation(owner='gettakaro', repo='takaro', branch='development', path='packages/web-docs/docs')
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or parsed.hostname not in (
        "github.com",
        "raw.githubusercontent.com",
    ):
        raise ValidationError(f"Not a GitHub URL: {url}")

    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) < 2:
        raise ValidationError(f"GitHub URL has no owner/repo: {url}")

    owner, repo = parts[0], parts[1].removesuffix(".git")

    if parsed.hostname == "raw.githubusercontent.com" and len(parts) >= 3:
        return GitHubLocation(owner, repo, parts[2], "/".join(parts[3:]))
    if len(parts) >= 4 and parts[2] in ("tree", "blob"):
        return GitHubLocation(owner, repo, parts[3], "/".join(parts[4:]))
    return GitHubLocation(owner, repo)


class GitHubSourceProvider(SourceTreeProvider):
    """Infrastructure adapter exposing one GitHub directory as a versioned source tree."""

    def __init__(
        self,
        source_url: str,
        *,
        token: str = "",
        api_url: str = "https://api.github.com",
        raw_url: str = "https://raw.githubusercontent.com",
        http_client: httpx.AsyncClient | None = None,
    ):
        self._location = parse_github_url(source_url)
        self._token = token
        self._api_url = api_url.rstrip("/")
        self._raw_url = raw_url.rstrip("/")
        self._http_client = http_client
        self._revision: str | None = None

    @property
    def name(self) -> str:
        return _PROVIDER

    @property
    def location(self) -> GitHubLocation:
        return self._location

    @property
    def _repo_api(self) -> str:
        return f"{self._api_url}/repos/{self._location.owner}/{self._location.repo}"

    @property
    def _ref(self) -> str:
        return self._revision or self._location.branch

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "knowledge-core",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> httpx.Response:
        client = self._http_client or httpx.AsyncClient(timeout=30.0)
        should_close = self._http_client is None
        try:
            return await client.get(url, params=params, headers=self._get_headers())
        except httpx.HTTPError as e:
            logger.error("GitHub request to %s failed: %s", url, e)
            raise ProviderError(_PROVIDER, f"request to {url} failed: {e}") from e
        finally:
            if should_close:
                await client.aclose()

    @staticmethod
    def _check(response: httpx.Response, action: str) -> None:
        if response.status_code != 200:
            raise ProviderError(
                _PROVIDER,
                f"{action}: {response.text[:300]}",
                response.status_code,
            )

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(_PROVIDER, f"{action}: invalid JSON response") from e

    # ── SourceTreeProvider ───────────────────────────────────────────

    async def current_revision(self) -> str:
        """SHA of the latest commit touching the configured directory."""
        params: dict[str, Any] = {"sha": self._location.branch, "per_page": 1}
        if self._location.path:
            params["path"] = self._location.path

        response = await self._get(f"{self._repo_api}/commits", params)
        self._check(response, "list commits")
        commits = self._json(response, "list commits")

        if not isinstance(commits, list) or not commits:
            raise ProviderError(
                _PROVIDER,
                f"no commits found for {self._location.owner}/{self._location.repo}"
                f"@{self._location.branch}/{self._location.path}",
            )

        self._revision = commits[0]["sha"]
        logger.debug("Latest revision of %s is %s", self._location, self._revision)
        return self._revision

    async def diff(self, old_revision: str, new_revision: str) -> ChangedFiles:
        """Files changed between two commits, restricted to the configured directory.

        Renames become a removal of the old path plus an addition of the new one.

        Raises:
            RevisionNotFoundError: GitHub no longer knows one of the commits.
        """
        changes = ChangedFiles()
        url = f"{self._repo_api}/compare/{old_revision}...{new_revision}"
        page = 1

        while True:
            response = await self._get(url, {"per_page": _COMPARE_PAGE_SIZE, "page": page})
            if response.status_code == 404:
                raise RevisionNotFoundError(_PROVIDER, old_revision)
            self._check(response, "compare revisions")
            files = self._json(response, "compare revisions").get("files") or []

            for entry in files:
                self._classify(entry, changes)

            if len(files) < _COMPARE_PAGE_SIZE:
                break
            page += 1

        logger.info(
            "Diff %s...%s: +%d ~%d -%d",
            old_revision[:12],
            new_revision[:12],
            len(changes.added),
            len(changes.modified),
            len(changes.removed),
        )
        return changes

    async def list_files(self, extensions: list[str]) -> list[str]:
        """Recursively list files under the directory with a matching extension."""
        files: list[str] = []
        pending = [self._location.path]

        while pending:
            directory = pending.pop()
            response = await self._get(
                f"{self._repo_api}/contents/{directory}".rstrip("/"), {"ref": self._ref}
            )
            self._check(response, f"list {directory or '/'}")
            entries = self._json(response, f"list {directory or '/'}")
            if isinstance(entries, dict):
                entries = [entries]

            for entry in entries:
                if entry.get("type") == "dir":
                    pending.append(entry["path"])
                elif entry.get("type") == "file" and has_extension(entry["path"], extensions):
                    files.append(entry["path"])

        return sorted(files)

    async def fetch_content(self, path: str) -> str:
        loc = self._location
        response = await self._get(f"{self._raw_url}/{loc.owner}/{loc.repo}/{self._ref}/{path}")
        self._check(response, f"fetch {path}")
        return response.text

    # ── Helpers ──────────────────────────────────────────────────────

    def _in_scope(self, path: str | None) -> bool:
        if not path:
            return False
        prefix = self._location.path.strip("/")
        return not prefix or path == prefix or path.startswith(prefix + "/")

    def _classify(self, entry: dict[str, Any], changes: ChangedFiles) -> None:
        filename = entry.get("filename")
        status = entry.get("status")

        if status == "renamed":
            previous = entry.get("previous_filename")
            if self._in_scope(previous):
                changes.removed.append(previous)
            if self._in_scope(filename):
                changes.added.append(filename)
            return

        if not self._in_scope(filename):
            return
        if status in ("added", "copied"):
            changes.added.append(filename)
        elif status in ("modified", "changed"):
            changes.modified.append(filename)
        elif status == "removed":
            changes.removed.append(filename)


def github_provider_factory(
    *,
    token: str = "",
    api_url: str = "https://api.github.com",
    raw_url: str = "https://raw.githubusercontent.com",
    http_client: httpx.AsyncClient | None = None,
):
    """Source provider factory for the ingestion pipeline: one provider per run."""

    def factory(source: str) -> GitHubSourceProvider:
        return GitHubSourceProvider(
            source, token=token, api_url=api_url, raw_url=raw_url, http_client=http_client
        )

    return factory
