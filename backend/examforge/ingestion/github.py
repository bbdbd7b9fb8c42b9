"""
ExamForge - GitHub Fetcher
Pulls file trees and contents from public repositories via the
unauthenticated REST API and raw.githubusercontent.com.
"""
import logging
import posixpath
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx

from examforge.core.errors import InputError, ProviderError

logger = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
RAW_BASE = "https://raw.githubusercontent.com"
USER_AGENT = "examforge-worker"

DOC_EXTENSIONS = frozenset({".md", ".mdx", ".txt", ".rst", ".adoc"})

CODE_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs",
    ".java", ".c", ".cpp", ".h", ".cs", ".rb", ".swift",
    ".kt", ".vue", ".svelte",
})

EXCLUDED_DIRS = (
    "node_modules/", "vendor/", "dist/", "build/",
    ".git/", "__pycache__/", ".next/",
)

MAX_FILE_SIZE = 100 * 1024
MAX_FILES = 80

EXTENSION_LANGUAGE = {
    ".ts": "typescript", ".tsx": "typescript", ".js": "javascript",
    ".jsx": "javascript", ".py": "python", ".go": "go", ".rs": "rust",
    ".java": "java", ".c": "c", ".cpp": "cpp", ".h": "c", ".cs": "csharp",
    ".rb": "ruby", ".swift": "swift", ".kt": "kotlin", ".vue": "vue",
    ".svelte": "svelte", ".md": "markdown", ".mdx": "markdown",
    ".txt": "text", ".rst": "restructuredtext", ".adoc": "asciidoc",
}


@dataclass
class GitHubLocation:
    """Owner/repo plus optional ref and subdirectory."""
    owner: str
    repo: str
    ref: Optional[str] = None
    subpath: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class TreeEntry:
    path: str
    size: Optional[int] = None


def parse_github_url(url: str) -> GitHubLocation:
    """
    Parse a GitHub URL into owner, repo, optional ref and subpath.

    Supported formats:
        https://github.com/owner/repo
        https://github.com/owner/repo/tree/branch
        https://github.com/owner/repo/tree/branch/path/to/dir
    """
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InputError(f"Invalid URL: {url}")
    if parsed.hostname != "github.com":
        raise InputError(f"Not a github.com URL: {url}")

    parts = parsed.path.strip("/").split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise InputError(f"Cannot extract owner/repo from URL: {url}")

    location = GitHubLocation(owner=parts[0], repo=parts[1])
    if len(parts) >= 4 and parts[2] == "tree":
        location.ref = parts[3]
        if len(parts) > 4:
            location.subpath = "/".join(parts[4:])
    return location


def get_extension(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


def is_doc_extension(path: str) -> bool:
    return get_extension(path) in DOC_EXTENSIONS


def detect_language(path: str) -> Optional[str]:
    return EXTENSION_LANGUAGE.get(get_extension(path))


def build_file_url(owner: str, repo: str, ref: str, path: str) -> str:
    """GitHub web URL for a file at a given ref."""
    return f"https://github.com/{owner}/{repo}/blob/{ref}/{path}"


def _is_excluded(path: str) -> bool:
    return any(path.startswith(d) or f"/{d}" in path for d in EXCLUDED_DIRS)


def filter_files(
    entries: list[TreeEntry],
    subpath: Optional[str] = None,
    max_files: int = MAX_FILES,
    max_file_size: int = MAX_FILE_SIZE,
) -> list[TreeEntry]:
    """
    Keep supported doc/code files outside excluded directories, under the
    size limit and inside ``subpath``. Over the cap, docs win over code,
    each group in path order.
    """
    allowed = DOC_EXTENSIONS | CODE_EXTENSIONS
    kept = [
        e for e in entries
        if not _is_excluded(e.path)
        and (e.size is None or e.size <= max_file_size)
        and get_extension(e.path) in allowed
    ]

    if subpath:
        prefix = subpath if subpath.endswith("/") else f"{subpath}/"
        kept = [e for e in kept if e.path.startswith(prefix) or e.path == subpath]

    if len(kept) > max_files:
        docs = sorted((e for e in kept if is_doc_extension(e.path)), key=lambda e: e.path)
        code = sorted((e for e in kept if not is_doc_extension(e.path)), key=lambda e: e.path)
        kept = (docs + code)[:max_files]

    return kept


class GitHubClient:
    """Thin async client over a shared ``httpx.AsyncClient``."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def _api_get(self, path: str) -> dict:
        try:
            response = await self.http.get(
                f"{API_BASE}{path}",
                headers={
                    "Accept": "application/vnd.github+json",
                    "User-Agent": USER_AGENT,
                },
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"GitHub API request failed for {path}: {e}") from e
        if response.status_code >= 400:
            raise ProviderError(
                f"GitHub API {response.status_code} for {path}: {response.text[:300]}"
            )
        return response.json()

    async def fetch_repo_tree(
        self,
        owner: str,
        repo: str,
        ref: Optional[str] = None,
    ) -> tuple[str, list[TreeEntry]]:
        """
        Fetch the recursive file tree, resolving the default branch when
        ``ref`` is not given. Returns ``(resolved_ref, blobs)``.
        """
        if not ref:
            info = await self._api_get(f"/repos/{owner}/{repo}")
            ref = info["default_branch"]

        tree = await self._api_get(f"/repos/{owner}/{repo}/git/trees/{ref}?recursive=true")
        if tree.get("truncated"):
            logger.warning("Tree for %s/%s@%s is truncated by GitHub", owner, repo, ref)

        files = [
            TreeEntry(path=e["path"], size=e.get("size"))
            for e in tree.get("tree", [])
            if e.get("type") == "blob"
        ]
        return ref, files

    async def fetch_file_content(self, owner: str, repo: str, ref: str, path: str) -> str:
        """Raw file content (raw.githubusercontent.com has no API quota)."""
        response = await self.http.get(
            f"{RAW_BASE}/{owner}/{repo}/{ref}/{path}",
            headers={"User-Agent": USER_AGENT},
        )
        if response.status_code >= 400:
            raise ProviderError(f"Failed to fetch {path}: HTTP {response.status_code}")
        return response.text
