"""Declared GithubIssue resource model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, UniqueConstraint
from datetime import datetime, timezone
from app.models.base import Base


def utcnow() -> datetime:
    """UTC 'now' as tz-naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GithubIssue(Base):
    """Desired state of one GitHub issue, plus its observed status"""

    __tablename__ = "github_issues"
    __table_args__ = (
        UniqueConstraint("namespace", "name", name="uq_github_issues_namespace_name"),
    )

    id = Column(Integer, primary_key=True, index=True)

    # Identity
    namespace = Column(String, nullable=False, default="default", index=True)
    name = Column(String, nullable=False, index=True)

    # Spec
    repo = Column(String, nullable=False)  # https://github.com/<owner>/<repo>
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")

    # Metadata
    # Lists are replaced wholesale on write; JSON columns don't track in-place mutation.
    finalizers = Column(JSON, nullable=False, default=list)
    deletion_timestamp = Column(DateTime, nullable=True)  # set => deletion requested
    resource_version = Column(Integer, nullable=False)

    # Status
    conditions = Column(JSON, nullable=False, default=list)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": resource_version}

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_being_deleted(self) -> bool:
        return self.deletion_timestamp is not None

    def has_finalizer(self, finalizer: str) -> bool:
        return finalizer in (self.finalizers or [])

    def __repr__(self):
        return f"<GithubIssue(key='{self.key}', title='{self.title}')>"
