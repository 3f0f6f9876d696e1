"""Resolve `spec.repo` URLs into (owner, repository) pairs"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import urlparse

from app.services.errors import InvalidRepoURL

# GitHub owner and repository names: letters, digits, '-', '_' and '.'.
_SEGMENT_RE = re.compile(r"^[\w.-]+$")


@dataclass(frozen=True)
class RepoRef:
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_repo_url(url: str, host: str = "github.com") -> RepoRef:
    """Parse ``https://<host>/<owner>/<repo>[.git][/...]``.

    Extra path segments (``/issues``, ``/tree/main``) are ignored. Anything
    else raises `InvalidRepoURL`; the error is permanent for the given value.
    """
    if not url or not isinstance(url, str):
        raise InvalidRepoURL(str(url), "empty repository URL")

    parsed = urlparse(url.strip())
    if parsed.scheme != "https":
        raise InvalidRepoURL(url, "scheme must be https")
    if (parsed.hostname or "").lower() != host.lower():
        raise InvalidRepoURL(url, f"host must be {host}")

    segments = [s for s in parsed.path.split("/") if s]
    if len(segments) < 2:
        raise InvalidRepoURL(url, "missing owner or repository")

    owner, repo = segments[0], segments[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    for segment in (owner, repo):
        if not segment or segment in {".", ".."} or not _SEGMENT_RE.match(segment):
            raise InvalidRepoURL(url, f"invalid path segment {segment!r}")

    return RepoRef(owner=owner, repo=repo)
