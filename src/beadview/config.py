"""Configuration management — loads .env and validates with Pydantic."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


def _find_project_root() -> Path:
    """Walk up from CWD to find the directory holding .beads/, pyproject.toml or .env."""
    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents]:
        if (parent / ".beads").is_dir():
            return parent
    for parent in [cwd, *cwd.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".env").exists():
            return parent
    return cwd


PROJECT_ROOT = _find_project_root()

# Load .env from project root (if it exists)
_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class Settings(BaseSettings):
    """All beadview configuration, loaded from BEADVIEW_* env vars / .env file."""

    # ── Store ─────────────────────────────────────────────────────────
    bd_binary: str = Field(default="bd", description="Path or name of the bd CLI")
    database_path: str = Field(
        default=".beads/beads.db",
        description="Beads SQLite database (relative paths resolve from the project root)",
    )
    store_max_retries: int = Field(
        default=2, description="Retries for read commands on transient failures"
    )
    command_timeout: int = Field(default=30, description="bd command timeout seconds")

    # ── Refresh ───────────────────────────────────────────────────────
    auto_refresh_seconds: int = Field(
        default=10, description="Auto-refresh interval in seconds (0 disables)"
    )
    refresh_timeout: int = Field(
        default=10, description="Seconds before an in-flight refresh is reported stale"
    )
    toast_seconds: float = Field(
        default=4.0, description="Lifetime of transient notifications"
    )

    # ── Logging ─────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[str] = Field(
        default="logs/beadview.log", description="Log file path"
    )
    log_json: bool = Field(default=False, description="Output logs in JSON")

    model_config = {
        "env_prefix": "BEADVIEW_",
        "env_file": str(_env_path),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ── Derived helpers ───────────────────────────────────────────────

    @property
    def database_file(self) -> Path:
        p = Path(self.database_path).expanduser()
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        return p

    @property
    def refresh_enabled(self) -> bool:
        return self.auto_refresh_seconds > 0

    def validate_store_config(self) -> list[str]:
        """Validate that the issue store is reachable.

        Returns a list of error messages (empty = valid). A missing database
        is fine as long as the bd CLI can be found, since reads fall back to it.
        """
        errors: list[str] = []
        if self.auto_refresh_seconds < 0:
            errors.append(
                f"BEADVIEW_AUTO_REFRESH_SECONDS must be >= 0, got: {self.auto_refresh_seconds}"
            )
        if self.store_max_retries < 0:
            errors.append(
                f"BEADVIEW_STORE_MAX_RETRIES must be >= 0, got: {self.store_max_retries}"
            )
        has_db = self.database_file.exists()
        has_cli = shutil.which(self.bd_binary) is not None
        if not has_db and not has_cli:
            errors.append(
                f"No beads database at {self.database_file} and {self.bd_binary!r} "
                "was not found in PATH."
            )
        return errors

    def as_display_dict(self) -> dict[str, str]:
        """Return a dict of all config values for display."""
        return {
            "BEADVIEW_BD_BINARY": self.bd_binary,
            "BEADVIEW_DATABASE_PATH": str(self.database_file),
            "BEADVIEW_STORE_MAX_RETRIES": str(self.store_max_retries),
            "BEADVIEW_COMMAND_TIMEOUT": str(self.command_timeout),
            "BEADVIEW_AUTO_REFRESH_SECONDS": (
                str(self.auto_refresh_seconds) if self.refresh_enabled else "0 (disabled)"
            ),
            "BEADVIEW_REFRESH_TIMEOUT": str(self.refresh_timeout),
            "BEADVIEW_TOAST_SECONDS": str(self.toast_seconds),
            "BEADVIEW_LOG_LEVEL": self.log_level,
            "BEADVIEW_LOG_FILE": self.log_file or "(not set)",
            "BEADVIEW_LOG_JSON": str(self.log_json),
        }


# ── Singleton accessor ────────────────────────────────────────────────

_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Return a cached Settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance


def reset_settings() -> None:
    """Invalidate the cached Settings so the next call to get_settings() reloads."""
    global _settings_instance
    _settings_instance = None
