"""
Git repository connector backed by the GitHub REST API.

A repository is a single page: the recursive tree of the requested
branch, filtered by include/exclude globs. File contents, when asked
for, are downloaded in batches through the same rate limiter.
"""
import re
from fnmatch import fnmatch
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ..batching import run_in_batches
from ..cache import CacheCategory
from ..clock import Deadline
from ..errors import InvalidParameter, LlmTxtError, NotFound, Timeout
from ..models import FeedItem, Page, Provider, RequestParams
from .base import Connector

REPO = "/repos/{owner}/{repo}"
TREE = "/repos/{owner}/{repo}/git/trees/{ref}"
COMMIT = "/repos/{owner}/{repo}/commits/{ref}"
README = "/repos/{owner}/{repo}/readme"
RAW = "/raw/{owner}/{repo}/{ref}/{path}"

DEFAULT_MAX_FILE_SIZE = 100_000  # bytes
CONTENT_BATCH_SIZE = 25

_REPO_URL_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+?)(?:\.git)?/?$"
)
_SHORT_RE = re.compile(r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)$")


# ===== GITHUB SCHEMAS =====

class GitHubOwner(BaseModel):
    login: str
    html_url: str = ""
    avatar_url: Optional[str] = None


class GitHubLicense(BaseModel):
    spdx_id: Optional[str] = None
    name: Optional[str] = None


class GitHubRepo(BaseModel):
    name: str
    full_name: str
    description: Optional[str] = None
    html_url: str
    default_branch: str
    language: Optional[str] = None
    stargazers_count: int = 0
    forks_count: int = 0
    size: int = 0  # KB
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    owner: GitHubOwner
    topics: List[str] = []
    license: Optional[GitHubLicense] = None


class GitHubTreeEntry(BaseModel):
    path: str
    type: str  # blob | tree | commit
    size: Optional[int] = None
    sha: str = ""


class GitHubTree(BaseModel):
    sha: str
    tree: List[GitHubTreeEntry] = []
    truncated: bool = False


class GitHubCommit(BaseModel):
    sha: str


class GitHubReadme(BaseModel):
    download_url: Optional[str] = None
    path: str = Field("README.md")


def parse_repo_url(url: str) -> str:
    """
    Extract ``owner/repo`` from a GitHub URL.

    Raises:
        InvalidParameter: If the URL does not name a GitHub repository
    """
    match = _REPO_URL_RE.match(url.strip()) or _SHORT_RE.match(url.strip())
    if not match:
        raise InvalidParameter(f"Invalid repository URL: {url}")
    return f"{match.group('owner')}/{match.group('repo')}"


def matches_patterns(path: str, include: Sequence[str], exclude: Sequence[str]) -> bool:
    """Keep a path if it matches any include glob (or none given) and no exclude glob."""
    name = path.rsplit("/", 1)[-1]
    if include and not any(fnmatch(path, p) or fnmatch(name, p) for p in include):
        return False
    return not any(fnmatch(path, p) or fnmatch(name, p) for p in exclude)


class GitConnector(Connector):
    """Fetches a GitHub repository's file tree and optionally file contents."""

    provider = Provider.GIT
    page_size = 0  # whole tree

    def __init__(self, *args: Any, token: Optional[str] = None,
                 base_url: str = "https://api.github.com",
                 raw_url: str = "https://raw.githubusercontent.com", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")
        self.raw_url = raw_url.rstrip("/")
        self.headers.setdefault("accept", "application/vnd.github+json")
        if token:
            self.headers["authorization"] = f"Bearer {token}"

    def _split(self, canonical_id: str) -> Dict[str, str]:
        owner, repo = canonical_id.split("/", 1)
        return {"owner": owner, "repo": repo}

    def _resolve(self, handle: str, deadline: Optional[Deadline]) -> str:
        return parse_repo_url(handle)

    def _repo(self, canonical_id: str, deadline: Optional[Deadline]) -> GitHubRepo:
        """Repository metadata, cached briefly since page and profile both need it."""
        def download() -> GitHubRepo:
            path = REPO.format(**self._split(canonical_id))
            try:
                data = self._get_json(REPO, f"{self.base_url}{path}", deadline=deadline)
            except NotFound:
                raise NotFound(f"Repository not found: {canonical_id}") from None
            return self._validate(GitHubRepo, data, "repository")

        return self.cache.get_or_set(f"repo:{canonical_id}", download, category=CacheCategory.PROFILE)

    def _readme(self, canonical_id: str, ref: str, deadline: Optional[Deadline]) -> Optional[str]:
        path = README.format(**self._split(canonical_id))
        try:
            data = self._get_json(README, f"{self.base_url}{path}", {"ref": ref}, deadline)
            readme = self._validate(GitHubReadme, data, "readme")
            if not readme.download_url:
                return None
            return self._request(RAW, readme.download_url, deadline=deadline).text
        except Timeout:
            raise
        except LlmTxtError as e:
            self.log.info(f"No README for {canonical_id}: {e}")
            return None

    def fetch_primary(self, canonical_id: str, params: RequestParams,
                      deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        repo = self._repo(canonical_id, deadline)
        branch = params.branch or repo.default_branch
        return {
            "name": repo.name,
            "full_name": repo.full_name,
            "description": repo.description,
            "url": repo.html_url,
            "default_branch": repo.default_branch,
            "branch": branch,
            "language": repo.language,
            "stars": repo.stargazers_count,
            "forks": repo.forks_count,
            "size_kb": repo.size,
            "created_at": repo.created_at,
            "updated_at": repo.updated_at,
            "owner": {
                "name": repo.owner.login,
                "url": repo.owner.html_url,
                "avatar": repo.owner.avatar_url,
            },
            "topics": repo.topics,
            "license": repo.license.spdx_id if repo.license else None,
            "readme": self._readme(canonical_id, branch, deadline),
        }

    def _tree(self, canonical_id: str, ref: str, deadline: Optional[Deadline]) -> GitHubTree:
        path = TREE.format(ref=ref, **self._split(canonical_id))
        try:
            data = self._get_json(TREE, f"{self.base_url}{path}", {"recursive": "1"}, deadline)
        except NotFound:
            raise NotFound(f"Branch not found: {ref}") from None
        tree = self._validate(GitHubTree, data, "tree")
        if tree.truncated:
            self.log.warning(f"Tree for {canonical_id}@{ref} was truncated by GitHub")
        return tree

    def _ref(self, canonical_id: str, params: RequestParams, deadline: Optional[Deadline]) -> str:
        return params.branch or self._repo(canonical_id, deadline).default_branch

    def _commit_sha(self, canonical_id: str, ref: str, deadline: Optional[Deadline]) -> str:
        """Commit the ref points at. Raw file URLs need a commit, not a tree sha."""
        path = COMMIT.format(ref=ref, **self._split(canonical_id))
        try:
            data = self._get_json(COMMIT, f"{self.base_url}{path}", deadline=deadline)
        except NotFound:
            raise NotFound(f"Branch not found: {ref}") from None
        return self._validate(GitHubCommit, data, "commit").sha

    def fetch_page(self, canonical_id: str, cursor: Optional[str], params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Page:
        ref = self._ref(canonical_id, params, deadline)
        commit_sha = self._commit_sha(canonical_id, ref, deadline)
        tree = self._tree(canonical_id, commit_sha, deadline)
        blobs = [entry for entry in tree.tree if entry.type == "blob"]
        kept = [
            entry for entry in blobs
            if matches_patterns(entry.path, params.include_patterns, params.exclude_patterns)
        ]

        items = [
            FeedItem(
                id=entry.path,
                author=canonical_id.split("/", 1)[0],
                body="",
                timestamp="",
                title=entry.path.rsplit("/", 1)[-1],
                extra={"size": entry.size, "sha": entry.sha, "type": "file"},
            )
            for entry in kept
        ]

        if params.include_content:
            self._attach_contents(canonical_id, commit_sha, items, params, deadline)

        content_bytes = sum(len(item.body.encode("utf-8")) for item in items)
        meta = {
            "commit_sha": commit_sha,
            "branch": ref,
            "total_file_count": len(blobs),
            "filtered_file_count": len(kept),
            "content_bytes": content_bytes,
            "estimated_tokens": content_bytes // 4,
        }
        if params.include_tree:
            meta["tree"] = [
                {"path": e.path, "type": "dir" if e.type == "tree" else "file", "size": e.size}
                for e in tree.tree
                if e.type == "tree" or matches_patterns(
                    e.path, params.include_patterns, params.exclude_patterns
                )
            ]
        return Page(items=items, next_cursor=None, meta=meta)

    def _attach_contents(self, canonical_id: str, commit_sha: str, items: List[FeedItem],
                         params: RequestParams, deadline: Optional[Deadline]) -> None:
        max_size = params.max_file_size or DEFAULT_MAX_FILE_SIZE
        wanted = [item.id for item in items if (item.extra.get("size") or 0) <= max_size]
        parts = self._split(canonical_id)

        def download(path: str) -> Optional[str]:
            url = f"{self.raw_url}/{parts['owner']}/{parts['repo']}/{commit_sha}/{path}"
            try:
                return self._request(RAW, url, deadline=deadline).text
            except Timeout:
                raise
            except LlmTxtError as e:
                self.log.warning(f"Failed to fetch {path}: {e}")
                return None

        contents = run_in_batches(wanted, download, CONTENT_BATCH_SIZE)
        for item in items:
            if item.id in contents:
                item.body = contents[item.id]
            else:
                item.extra["skipped"] = True

    def count_hint(self, canonical_id: str, params: RequestParams,
                   deadline: Optional[Deadline] = None) -> Optional[int]:
        tree = self._tree(canonical_id, self._ref(canonical_id, params, deadline), deadline)
        return sum(
            1 for entry in tree.tree
            if entry.type == "blob"
            and matches_patterns(entry.path, params.include_patterns, params.exclude_patterns)
        )
