"""Application configuration"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database (declared GithubIssue resources live here)
    database_url: str = "sqlite:///./issueoperator.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # GitHub
    # An empty token means unauthenticated calls; writes then fail with 401.
    github_token: str = Field(default="", validation_alias="GITHUB_TOKEN")
    github_api_url: str = "https://api.github.com"
    # Host accepted in `spec.repo` URLs.
    github_host: str = "github.com"

    # Reconciliation
    resync_interval_seconds: int = 60

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False
        populate_by_name = True


settings = Settings()
