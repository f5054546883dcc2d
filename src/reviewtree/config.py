"""Configuration management — loads .env and validates with Pydantic."""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings


def _find_project_root() -> Path:
    """Walk up from CWD to find directory containing pyproject.toml or .env."""
    cwd = Path.cwd()
    for parent in [cwd, *cwd.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".env").exists():
            return parent
    return cwd


PROJECT_ROOT = _find_project_root()

_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(_env_path)


class Settings(BaseSettings):
    """All reviewtree configuration, loaded from env vars / .env file."""

    # ── Azure DevOps ──────────────────────────────────────────────────
    devops_organization: str = Field(
        default="", description="Organization name or full organization URL"
    )
    devops_project: str = Field(default="", description="Project name")
    devops_repository: str = Field(default="", description="Repository name or id")
    devops_token: str = Field(default="", description="Personal access token")
    devops_timeout: int = Field(default=30, description="Request timeout seconds")
    devops_max_retries: int = Field(default=3, description="Max retries on 429/5xx")
    devops_api_version: str = Field(default="7.1", description="REST api-version")
    devops_page_size: int = Field(default=100, description="Pull requests per page")
    devops_pr_status: str = Field(
        default="active", description="searchCriteria.status for pull requests"
    )

    # ── Grouping ──────────────────────────────────────────────────────
    grouping_level: int = Field(
        default=1, description="Initial work item hierarchy depth to group by"
    )
    grouping_max_level: int = Field(
        default=4, description="Highest hierarchy depth a caller may request"
    )
    resolver_concurrency: int = Field(
        default=4, description="Concurrent leaf resolutions per hierarchy pass"
    )
    debug_hierarchy: bool = Field(
        default=False, description="Verbose logging for hierarchy resolution"
    )

    # ── State ─────────────────────────────────────────────────────────
    state_backend: str = Field(default="json", description="'json' or 'sqlite'")
    data_dir: str = Field(default="data", description="Data directory")

    # ── Logging ─────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: str = Field(default="logs/reviewtree.log", description="Log file path")
    log_json: bool = Field(default=False, description="Output logs in JSON")

    model_config = {
        "env_file": str(_env_path),
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    # ── Derived helpers ───────────────────────────────────────────────

    @property
    def organization_url(self) -> str:
        """Full organization URL; bare names map to dev.azure.com."""
        org = self.devops_organization.strip()
        if not org:
            return ""
        if not org.startswith(("http://", "https://")):
            org = f"https://dev.azure.com/{org}"
        return org.rstrip("/")

    @property
    def data_path(self) -> Path:
        p = Path(self.data_dir)
        if not p.is_absolute():
            p = PROJECT_ROOT / p
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def state_path(self) -> Path:
        p = self.data_path / "state"
        p.mkdir(parents=True, exist_ok=True)
        return p

    @property
    def sqlite_path(self) -> Path:
        return self.data_path / "reviewtree.sqlite"

    def validate_devops_config(self) -> list[str]:
        """Validate that required Azure DevOps settings are present.

        Returns a list of error messages (empty = valid).
        """
        errors: list[str] = []
        if not self.devops_organization:
            errors.append("DEVOPS_ORGANIZATION is not set. Add it to your .env file.")
        if not self.devops_project:
            errors.append("DEVOPS_PROJECT is not set. Add it to your .env file.")
        if not self.devops_repository:
            errors.append("DEVOPS_REPOSITORY is not set. Add it to your .env file.")
        if not self.devops_token:
            errors.append("DEVOPS_TOKEN is not set. Add it to your .env file.")
        if self.state_backend not in ("json", "sqlite"):
            errors.append(
                f"STATE_BACKEND must be 'json' or 'sqlite', got: {self.state_backend!r}"
            )
        if not 0 <= self.grouping_level <= self.grouping_max_level:
            errors.append(
                f"GROUPING_LEVEL must be between 0 and {self.grouping_max_level}, "
                f"got: {self.grouping_level}"
            )
        return errors

    def as_display_dict(self) -> dict[str, str]:
        """Return a sanitized dict of all config values for display."""
        token = self.devops_token
        masked_token = f"{'*' * 8}...{token[-4:]}" if len(token) > 4 else ("***" if token else "(not set)")
        return {
            "DEVOPS_ORGANIZATION": self.organization_url or "(not set)",
            "DEVOPS_PROJECT": self.devops_project or "(not set)",
            "DEVOPS_REPOSITORY": self.devops_repository or "(not set)",
            "DEVOPS_TOKEN": masked_token,
            "DEVOPS_TIMEOUT": str(self.devops_timeout),
            "DEVOPS_MAX_RETRIES": str(self.devops_max_retries),
            "DEVOPS_API_VERSION": self.devops_api_version,
            "DEVOPS_PAGE_SIZE": str(self.devops_page_size),
            "DEVOPS_PR_STATUS": self.devops_pr_status,
            "GROUPING_LEVEL": str(self.grouping_level),
            "GROUPING_MAX_LEVEL": str(self.grouping_max_level),
            "RESOLVER_CONCURRENCY": str(self.resolver_concurrency),
            "DEBUG_HIERARCHY": str(self.debug_hierarchy),
            "STATE_BACKEND": self.state_backend,
            "DATA_DIR": str(self.data_path),
            "LOG_LEVEL": self.log_level,
            "LOG_FILE": self.log_file,
            "LOG_JSON": str(self.log_json),
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
