"""Read-only GitHub browsing for project documentation.

Nothing here writes back to GitHub.  Tree entries can be turned into
``DocFile`` records tagged ``source="github"`` for display next to the
project's own documentation.
"""

from __future__ import annotations

import base64
import binascii
import logging
import posixpath
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests

from . import config
from .errors import ConfigurationError, RequestFailed
from .models import DocFile, file_type_for, normalize_folder


def parse_repo_slug(value: str) -> Tuple[str, str]:
    """Split ``owner/repo`` (or a github.com URL) into its parts."""

    text = (value or "").strip()
    for prefix in ("https://github.com/", "http://github.com/", "github.com/"):
        if text.startswith(prefix):
            text = text[len(prefix):]
    if text.endswith(".git"):
        text = text[:-4]
    parts = [part for part in text.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Expected 'owner/repo', got {value!r}")
    return parts[0], parts[1]


class GitHubClient:
    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.token = token or None
        self.base_url = (base_url or config.GITHUB_API_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self._logger = logger or logging.getLogger(__name__)
        if session is None:
            self._session = requests.Session()
            self._close_session = self._session.close
        else:
            self._session = session
            self._close_session = getattr(session, "close", lambda: None)

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._close_session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _get(self, path: str, *, params: Optional[Dict[str, Any]] = None, failure: str) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            response = self._session.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            self._logger.error("GitHub request to %s failed: %s", url, exc)
            raise RequestFailed(f"{failure}: {exc}") from exc
        if response.status_code >= 400:
            self._logger.warning("GitHub returned HTTP %s for %s", response.status_code, url)
            raise RequestFailed(failure, status=response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise RequestFailed(f"{failure}: invalid JSON") from exc

    def fetch_tree(self, owner: str, repo: str, branch: str = "main") -> List[Dict[str, Any]]:
        """Return the recursive tree listing of ``branch``."""

        branch_data = self._get(f"repos/{owner}/{repo}/branches/{branch}", failure="Branch not found")
        try:
            tree_sha = branch_data["commit"]["commit"]["tree"]["sha"]
        except (KeyError, TypeError) as exc:
            raise RequestFailed("Branch payload missing tree sha") from exc
        tree_data = self._get(
            f"repos/{owner}/{repo}/git/trees/{tree_sha}",
            params={"recursive": "1"},
            failure="Failed to fetch tree",
        )
        if not isinstance(tree_data, dict):
            raise RequestFailed("Tree payload is not an object")
        tree = tree_data.get("tree")
        if tree_data.get("truncated"):
            self._logger.warning("GitHub tree for %s/%s was truncated", owner, repo)
        return [entry for entry in tree or [] if isinstance(entry, dict)]

    def fetch_file_content(self, owner: str, repo: str, path: str, branch: str = "main") -> str:
        data = self._get(
            f"repos/{owner}/{repo}/contents/{path.lstrip('/')}",
            params={"ref": branch},
            failure="Failed to fetch file content",
        )
        encoded = data.get("content") if isinstance(data, dict) else None
        if not isinstance(encoded, str):
            raise RequestFailed("File payload has no content")
        try:
            raw = base64.b64decode(encoded.replace("\n", ""))
        except (binascii.Error, ValueError) as exc:
            raise RequestFailed("File content is not valid base64") from exc
        return raw.decode("utf-8", errors="replace")

    def fetch_commits(self, owner: str, repo: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Recent commits as ``sha``/``message``/``author``/``date``/``url``; empty on failure."""

        try:
            data = self._get(
                f"repos/{owner}/{repo}/commits",
                params={"per_page": limit},
                failure="Failed to fetch commits",
            )
        except RequestFailed as exc:
            self._logger.error("GitHub commits error: %s", exc)
            return []
        commits: List[Dict[str, Any]] = []
        for item in data if isinstance(data, list) else []:
            commit = item.get("commit") or {}
            author = commit.get("author") or {}
            commits.append(
                {
                    "sha": item.get("sha", ""),
                    "message": (commit.get("message") or "").splitlines()[0] if commit.get("message") else "",
                    "author": author.get("name", ""),
                    "date": author.get("date", ""),
                    "url": item.get("html_url", ""),
                }
            )
        return commits

    def list_user_repos(self) -> List[Dict[str, Any]]:
        if not self.token:
            raise ConfigurationError("A GitHub token is required to list repositories")
        data = self._get(
            "user/repos",
            params={"sort": "updated", "per_page": 100, "type": "all"},
            failure="Failed to fetch repositories",
        )
        if not isinstance(data, list):
            return []
        return [
            {"full_name": item.get("full_name", ""), "private": bool(item.get("private"))}
            for item in data
            if isinstance(item, dict)
        ]


def tree_to_doc_files(entries: Iterable[Dict[str, Any]]) -> List[DocFile]:
    """Map GitHub tree entries onto read-only documentation records."""

    files: List[DocFile] = []
    for entry in entries:
        full_path = str(entry.get("path") or "")
        if not full_path:
            continue
        folder, name = posixpath.split(full_path)
        is_folder = entry.get("type") == "tree"
        files.append(
            DocFile(
                id=f"gh-{entry.get('sha') or full_path}",
                name=name,
                type="" if is_folder else file_type_for(name),
                kind="folder" if is_folder else "file",
                path=normalize_folder(folder),
                source="github",
                sha=entry.get("sha"),
            )
        )
    return files


__all__ = ["GitHubClient", "parse_repo_slug", "tree_to_doc_files"]
