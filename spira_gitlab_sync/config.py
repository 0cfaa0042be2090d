"""Application configuration"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database (mapping store, data-sync definitions, sync logs)
    database_url: str = "sqlite:///./spira_gitlab_sync.db"

    # Sync
    default_sync_interval_minutes: int = 10
    # Used when a data-sync has no on-premise GitLab URL configured.
    gitlab_default_url: str = "https://gitlab.com"
    spira_rest_path: str = "/Services/v6_0/RestService.svc"
    # Spira incidents are listed in fixed-size batches.
    incident_page_size: int = 100
    # Spira rejects release version numbers longer than this.
    release_version_max_length: int = 10

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
