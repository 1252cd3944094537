"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "LobeChat Exporter"
    app_version: str = "1.0.0"
    debug: bool = True

    # Uploads
    max_upload_bytes: int = 200 * 1024 * 1024  # 200 MB

    # Markdown export
    export_storage_path: str = "./exports"

    # Notion API
    notion_api_base: str = "https://api.notion.com"
    notion_version: str = "2022-06-28"
    notion_timeout: float = 60.0
    notion_request_delay: float = 0.2  # seconds after every write call
    notion_text_chunk_size: int = 1800  # API hard limit is 2000 per text run
    notion_block_batch_size: int = 100  # API limit per children request
    notion_parent_page_id: Optional[str] = None  # default parent for page mode
    notion_max_finished_jobs: int = 100  # finished sync jobs kept for polling

    # Notion date values are written in this timezone
    display_timezone: str = "Asia/Shanghai"

    # Relay path segment, e.g. /notion-proxy/v1/pages
    relay_prefix: str = "notion-proxy"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/chatexport.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_api_requests: bool = True  # Log all API requests/responses

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
