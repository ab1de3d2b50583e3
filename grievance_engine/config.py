from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./grievances.db"
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"

    # Attachment storage
    UPLOAD_DIR: str = "./uploads"
    ATTACHMENT_STORAGE: str = "filesystem"  # "filesystem" or "inline"
    MAX_ATTACHMENT_BYTES: int = 5 * 1024 * 1024
    MAX_FILENAME_LENGTH: int = 100
    ALLOWED_MIME_TYPES: List[str] = [
        "application/pdf",
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
    ]

    # Orphan sweep
    ATTACHMENT_RETENTION_HOURS: int = 24
    SWEEP_INTERVAL_SECONDS: int = 3600

    # Grievances
    TICKET_CODE_STYLE: str = "GRV"  # "GRV" or "ISSUE"
    ISSUE_CATALOG_PATH: str = "issues.yaml"

    class Config:
        env_file = ".env"
        extra = "allow"


settings = Settings()
