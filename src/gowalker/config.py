"""Configuration settings for gowalker."""

import os
from pathlib import Path

from pydantic import SecretStr
from pydantic_settings import BaseSettings


def _default_data_dir() -> Path:
    """Get default data directory (~/.gowalker/)."""
    return Path.home() / ".gowalker"


class Settings(BaseSettings):
    """gowalker configuration.

    Environment variables:
    - GITHUB_TOKEN: GitHub API token (raises the anonymous rate limit)
    - DATA_DIR: Root for the database, JS shards and snapshots
        (default: ~/.gowalker)
    - DB_PATH: Package database path (default: DATA_DIR/gowalker.db)
    - FETCH_TIMEOUT: Wall-clock deadline for one package fetch in seconds
    - HTTP_TIMEOUT: Per-request HTTP timeout in seconds
    - HTTP_RETRIES: Connection retries of the HTTP transport
    - MAX_CONCURRENT_DOWNLOADS: File download fan-out per fetch
    - RECENT_MAX: Size of the recently viewed projects list
    - MAX_DOC_LENGTH: Package documentation is truncated past this length
    - SNAPSHOT_ENABLED: Keep compressed package snapshots on disk
    """

    # Hosting services
    github_token: SecretStr | None = None
    user_agent: str = "gowalker/0.3 (+https://gowalker.org)"

    # Storage
    data_dir: str = ""  # default: ~/.gowalker
    db_path: str = ""  # default: DATA_DIR/gowalker.db
    snapshot_enabled: bool = True

    # Fetching
    fetch_timeout: float = 60.0
    http_timeout: float = 20.0
    http_retries: int = 3
    max_concurrent_downloads: int = 8

    # Rendering
    recent_max: int = 20
    max_doc_length: int = 32 * 1024

    # Logging
    log_level: str = "INFO"

    model_config = {"env_prefix": "", "case_sensitive": False}

    # --- Path helpers ---

    def get_data_dir(self) -> Path:
        """Get data directory.

        Uses DATA_DIR if set, otherwise ~/.gowalker/.
        """
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return _default_data_dir()

    def get_db_path(self) -> Path:
        """Get resolved package database path."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return self.get_data_dir() / "gowalker.db"

    def get_docs_js_dir(self) -> Path:
        """Directory holding the rendered ``document.write`` shards."""
        return self.get_data_dir() / "docs_js"

    def get_snapshot_dir(self) -> Path:
        """Directory holding compressed package snapshots."""
        return self.get_data_dir() / "snapshots"

    def resolve_github_token(self) -> str:
        """Token from settings, falling back to GITHUB_TOKEN / GH_TOKEN."""
        if self.github_token and self.github_token.get_secret_value():
            return self.github_token.get_secret_value()
        return os.environ.get("GITHUB_TOKEN") or os.environ.get("GH_TOKEN") or ""


settings = Settings()
