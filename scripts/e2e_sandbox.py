#!/usr/bin/env python3
"""
GitHub Issue Operator E2E sandbox runner (opt-in, safe-by-default).

What it does (high level):
- Creates a temporary operator DB and declares one GithubIssue with a unique title
- Reconciles: the issue must be created on GitHub and IsOpen=True
- Changes the description and reconciles: the GitHub body must follow
- Requests deletion and reconciles: the GitHub issue must be closed and the
  resource must disappear
- Cleans up the local DB unless KEEP is enabled (the closed issue stays on GitHub)

Required env vars (minimum):
- ISSUEOPERATOR_E2E=1                       # explicit opt-in guard
- E2E_GITHUB_TOKEN=...                      # PAT with `repo` (or issues:write) scope
- E2E_GITHUB_REPO=https://github.com/you/sandbox

Optional env vars:
- E2E_GITHUB_API_URL=https://api.github.com
- E2E_PREFIX=issueoperator-e2e              # issue title prefix
- E2E_KEEP=1                                # keep the local DB for inspection
- E2E_DB_URL=sqlite:////tmp/issueoperator_e2e_<runid>.db

Run:
  ISSUEOPERATOR_E2E=1 E2E_GITHUB_TOKEN=... E2E_GITHUB_REPO=https://github.com/you/sandbox \
    python3 scripts/e2e_sandbox.py
"""

from __future__ import annotations

import os
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, Optional

# Ensure the repository root is on sys.path so `import app.*` works when this file is
# executed as `python3 scripts/e2e_sandbox.py`.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


def _die(msg: str) -> NoReturn:
    print(f"[e2e] ERROR: {msg}", file=sys.stderr)
    raise SystemExit(2)


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = str(v).strip()
    return v if v != "" else default


def _truthy(name: str, default: bool = False) -> bool:
    v = _env(name)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class _Config:
    token: str
    repo_url: str
    api_url: str
    prefix: str
    run_id: str
    keep: bool
    db_url: str


def _load_config() -> _Config:
    if not _truthy("ISSUEOPERATOR_E2E"):
        _die("Refusing to run without ISSUEOPERATOR_E2E=1")

    token = _env("E2E_GITHUB_TOKEN")
    if not token:
        _die("Missing E2E_GITHUB_TOKEN")
    repo_url = _env("E2E_GITHUB_REPO")
    if not repo_url:
        _die("Missing E2E_GITHUB_REPO")

    run_id = uuid.uuid4().hex[:8]
    return _Config(
        token=token,
        repo_url=repo_url,
        api_url=_env("E2E_GITHUB_API_URL", "https://api.github.com") or "https://api.github.com",
        prefix=_env("E2E_PREFIX", "issueoperator-e2e") or "issueoperator-e2e",
        run_id=run_id,
        keep=_truthy("E2E_KEEP"),
        db_url=_env("E2E_DB_URL") or f"sqlite:////tmp/issueoperator_e2e_{run_id}.db",
    )


def _condition_status(resource, type_: str) -> Optional[str]:
    for c in resource.conditions or []:
        if c.get("type") == type_:
            return c.get("status")
    return None


def main() -> int:
    cfg = _load_config()
    print(f"[e2e] run_id={cfg.run_id}")

    # Configure the operator in-process (env must be set BEFORE importing app.*)
    os.environ["DATABASE_URL"] = cfg.db_url
    os.environ["GITHUB_TOKEN"] = cfg.token
    os.environ["GITHUB_API_URL"] = cfg.api_url
    db_path_to_cleanup = None
    if cfg.db_url.startswith("sqlite:////"):
        db_path_to_cleanup = cfg.db_url.replace("sqlite:////", "/")

    from app.models import GithubIssue  # noqa: WPS433 (runtime import)
    from app.models.base import SessionLocal, init_db  # noqa: WPS433 (runtime import)
    from app.services.github_client import GitHubClient  # noqa: WPS433 (runtime import)
    from app.services.reconciler import Reconciler  # noqa: WPS433 (runtime import)
    from app.services.repo_url import parse_repo_url  # noqa: WPS433 (runtime import)
    from app.services.resource_store import ResourceStore  # noqa: WPS433 (runtime import)

    ref = parse_repo_url(cfg.repo_url)
    github = GitHubClient(cfg.token, base_url=cfg.api_url)
    title = f"{cfg.prefix}-{cfg.run_id}"
    name = title

    def _reconcile(db):
        return Reconciler(ResourceStore(db), github).reconcile("default", name)

    def _remote():
        return next((i for i in github.list_issues(ref.owner, ref.repo) if i.title == title), None)

    print(f"[e2e] initializing operator DB at {cfg.db_url}…")
    init_db()
    db = SessionLocal()
    try:
        db.add(GithubIssue(
            namespace="default",
            name=name,
            repo=cfg.repo_url,
            title=title,
            description="this is generated from an e2e-test",
        ))
        db.commit()

        print("[e2e] reconciling new resource (should create the issue)…")
        _reconcile(db)
        resource = ResourceStore(db).get("default", name)
        if _condition_status(resource, "IsOpen") != "True":
            _die(f"expected IsOpen=True, got conditions={resource.conditions}")
        remote = _remote()
        if remote is None or remote.state != "open":
            _die(f"expected an open issue titled {title!r}, got {remote}")

        print("[e2e] reconciling again (should be idempotent)…")
        _reconcile(db)
        matches = [i for i in github.list_issues(ref.owner, ref.repo) if i.title == title]
        if len(matches) != 1:
            _die(f"expected exactly one issue titled {title!r}, found {len(matches)}")

        print("[e2e] updating description…")
        resource = ResourceStore(db).get("default", name)
        resource.description = "updated description"
        db.commit()
        _reconcile(db)
        remote = _remote()
        if remote is None or remote.body != "updated description":
            _die(f"expected body to be updated, got {remote}")

        print("[e2e] requesting deletion (should close the issue)…")
        store = ResourceStore(db)
        store.request_deletion(store.get("default", name))
        _reconcile(db)
        if ResourceStore(db).get("default", name) is not None:
            _die("expected resource to be removed after finalization")
        remote = _remote()
        if remote is None or remote.state != "closed":
            _die(f"expected the issue to be closed, got {remote}")
    finally:
        db.close()

        if cfg.keep:
            print("[e2e] keeping local DB (E2E_KEEP=1)")
        elif db_path_to_cleanup:
            try:
                if os.path.exists(db_path_to_cleanup):
                    os.remove(db_path_to_cleanup)
            except Exception as e:
                print(f"[e2e] WARN: failed to delete DB file: {e}", file=sys.stderr)

    print("[e2e] OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
