"""GithubIssue resource endpoints"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models import GithubIssue
from app.models.base import get_db
from app.scheduler import scheduler
from app.services.errors import (
    DanglingDeletion,
    InvalidRepoURL,
    PersistenceConflict,
    RemoteAPIError,
)
from app.services.resource_store import ResourceStore

router = APIRouter(prefix="/api/githubissues", tags=["githubissues"])

# https://<github host>/<owner>/<repo>
REPO_URL_PATTERN = rf"^https://{re.escape(settings.github_host)}/[\w.-]+/[\w.-]+"


class GithubIssueSpec(BaseModel):
    repo: str = Field(pattern=REPO_URL_PATTERN)
    title: str = Field(min_length=1)
    description: str = ""


class GithubIssueCreate(GithubIssueSpec):
    namespace: str = "default"
    name: str = Field(min_length=1)


class GithubIssueResponse(BaseModel):
    id: int
    namespace: str
    name: str
    repo: str
    title: str
    description: str
    finalizers: List[str]
    deletion_timestamp: Optional[datetime]
    resource_version: int
    conditions: List[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


def _get_or_404(db: Session, namespace: str, name: str) -> GithubIssue:
    resource = ResourceStore(db).get(namespace, name)
    if not resource:
        raise HTTPException(status_code=404, detail="GithubIssue not found")
    return resource


@router.get("/", response_model=List[GithubIssueResponse])
def list_github_issues(namespace: Optional[str] = None, db: Session = Depends(get_db)):
    """List GithubIssue resources"""
    query = db.query(GithubIssue).order_by(GithubIssue.namespace, GithubIssue.name)
    if namespace:
        query = query.filter(GithubIssue.namespace == namespace)
    return query.all()


@router.post("/", response_model=GithubIssueResponse)
def create_github_issue(payload: GithubIssueCreate, db: Session = Depends(get_db)):
    """Declare a new GithubIssue"""
    existing = ResourceStore(db).get(payload.namespace, payload.name)
    if existing:
        raise HTTPException(status_code=400, detail="GithubIssue already exists")

    resource = GithubIssue(**payload.model_dump())
    db.add(resource)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="GithubIssue already exists")
    db.refresh(resource)

    scheduler.enqueue(resource.namespace, resource.name)
    return resource


@router.get("/{namespace}/{name}", response_model=GithubIssueResponse)
def get_github_issue(namespace: str, name: str, db: Session = Depends(get_db)):
    """Get a specific GithubIssue"""
    return _get_or_404(db, namespace, name)


@router.put("/{namespace}/{name}", response_model=GithubIssueResponse)
def update_github_issue(
    namespace: str, name: str, spec: GithubIssueSpec, db: Session = Depends(get_db)
):
    """Replace the spec of a GithubIssue"""
    resource = _get_or_404(db, namespace, name)
    if resource.is_being_deleted:
        raise HTTPException(status_code=409, detail="GithubIssue is being deleted")

    for key, value in spec.model_dump().items():
        setattr(resource, key, value)
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        raise HTTPException(status_code=409, detail="GithubIssue was modified concurrently")
    db.refresh(resource)

    scheduler.enqueue(namespace, name)
    return resource


@router.delete("/{namespace}/{name}")
def delete_github_issue(namespace: str, name: str, db: Session = Depends(get_db)):
    """Request deletion; the row goes away once its issue has been closed"""
    resource = _get_or_404(db, namespace, name)
    try:
        removed = ResourceStore(db).request_deletion(resource)
    except PersistenceConflict as e:
        raise HTTPException(status_code=409, detail=str(e))

    if removed:
        scheduler.unschedule(namespace, name)
        return {"message": "GithubIssue deleted"}
    scheduler.enqueue(namespace, name)
    return {"message": "GithubIssue deletion requested"}


@router.post("/{namespace}/{name}/reconcile")
def reconcile_github_issue(namespace: str, name: str, db: Session = Depends(get_db)):
    """Run one reconcile pass synchronously, never alongside the resource's scheduled job"""
    _get_or_404(db, namespace, name)
    try:
        result = scheduler.run_once(namespace, name)
    except InvalidRepoURL as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (DanglingDeletion, PersistenceConflict) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RemoteAPIError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"status": "success", "requeue_after": result.requeue_after}
