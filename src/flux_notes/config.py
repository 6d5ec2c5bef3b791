"""Configuration module for Flux Notes."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from flux_notes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the default log directory
_USER_ENV = Path.home() / ".flux-notes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


class FluxNotesConfig(BaseModel):
    """Configuration for the Flux Notes store and server."""

    # Base directory that relative paths are resolved against
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("FLUX_NOTES_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("FLUX_NOTES_DATABASE_PATH", "data/flux-notes.db")
        )
    )
    # Logging configuration
    log_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv(
                "FLUX_NOTES_LOG_DIR", str(Path.home() / ".flux-notes" / "logs")
            )
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("FLUX_NOTES_LOG_LEVEL", "INFO").upper()
    )
    # SQLite tuning (negative cache_size in PRAGMA means KB)
    sqlite_cache_size_kb: int = Field(
        default_factory=lambda: int(os.getenv("FLUX_NOTES_SQLITE_CACHE_KB", "64000"))
    )
    sqlite_busy_timeout_ms: int = Field(
        default_factory=lambda: int(
            os.getenv("FLUX_NOTES_SQLITE_BUSY_TIMEOUT_MS", "5000")
        )
    )
    # Server configuration
    server_name: str = Field(
        default_factory=lambda: os.getenv("FLUX_NOTES_SERVER_NAME", "flux-notes")
    )
    server_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_sqlite_config(self) -> "FluxNotesConfig":
        """Validate SQLite tuning values."""
        if self.sqlite_cache_size_kb < 1:
            raise ValueError("sqlite_cache_size_kb must be >= 1")
        if self.sqlite_busy_timeout_ms < 0:
            raise ValueError("sqlite_busy_timeout_ms must be >= 0")
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            logger.warning(
                "Unknown log level %r, falling back to INFO", self.log_level
            )
            self.log_level = "INFO"
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_database_path(self, database_path: Optional[Path] = None) -> Path:
        """Get the absolute database file path."""
        return self.get_absolute_path(
            Path(database_path) if database_path else self.database_path
        )

    def get_db_url(self, database_path: Optional[Path] = None) -> str:
        """Get the database URL for SQLite.

        Creates the parent directory; an unwritable location raises OSError.
        """
        db_path = self.get_database_path(database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = FluxNotesConfig()
