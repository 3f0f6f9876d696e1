"""API routes"""

from app.api import github_issues

__all__ = ["github_issues"]
