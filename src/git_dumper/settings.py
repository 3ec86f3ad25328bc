from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator

from git_dumper.cache_store import DEFAULT_CACHE_DIR
from git_dumper.config import DEFAULT_API_URL, DEFAULT_MAX_BYTES, DEFAULT_RAW_URL, DumpRequest
from git_dumper.exceptions import ConfigurationError
from git_dumper.github_client import parse_repo_url

ENV_FILE = find_dotenv(usecwd=True)


def env_value(name: str) -> str | None:
    """Read a variable from the environment, falling back to the nearest ``.env`` file."""
    value = os.environ.get(name)
    if value:
        return value
    if ENV_FILE:
        return dotenv_values(ENV_FILE).get(name) or None
    return None


def default_cache_dir() -> Path:
    value = env_value("GIT_DUMPER_CACHE_DIR")
    return Path(value).expanduser() if value else DEFAULT_CACHE_DIR


class Settings(BaseModel):
    """Configuration settings for one dump."""

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")

    repo_url: str = Field(default="", description="GitHub URL or OWNER/REPO.")
    owner: str = Field(default="", description="Repository owner.")
    repo: str = Field(default="", description="Repository name.")
    branch: str | None = Field(default=None, description="Branch, tag or commit; default branch if unset.")
    regex: str | None = Field(default=None, description="Path pattern, searched anywhere in the path.")
    ignore_common: bool = Field(default=True, description="Skip common build and dependency directories.")
    extra_ignores: list[str] = Field(default_factory=list, description="Extra ignored path prefixes.")
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, ge=0, description="Files above are skipped.")
    token: str | None = Field(
        default_factory=lambda: env_value("GITHUB_TOKEN"),
        description="GitHub token.",
        repr=False,
    )
    api_url: str = Field(default=DEFAULT_API_URL, description="GitHub REST API base URL.")
    raw_url: str = Field(default=DEFAULT_RAW_URL, description="Raw content base URL.")
    timeout: float = Field(default=30.0, gt=0, description="Per request timeout (seconds).")
    concurrency: int = Field(default=1, ge=1, description="Files fetched at once.")
    cache_dir: Path = Field(default_factory=default_cache_dir, description="Snapshot cache directory.")
    use_cache: bool = Field(default=True, description="Load and save the snapshot cache.")
    output: Path | None = Field(default=None, description="Output file or directory; stdout if unset.")
    log_file: str = Field(default="", description="Log file path.")
    verbose: bool = Field(default=False, description="Debug logging.")

    @model_validator(mode="after")
    def _split_repo_url(self) -> Settings:
        if self.repo_url and not (self.owner and self.repo):
            self.owner, self.repo = parse_repo_url(self.repo_url)
        return self

    @classmethod
    def from_yaml(cls, path: Path | str, **overrides: Any) -> Settings:  # noqa: ANN401
        """Load settings from a YAML mapping; ``overrides`` win over file values.

        Raises:
            ConfigurationError: if the file is missing or is not a mapping.
        """
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(message=f"Cannot read config file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(message=f"Config file {path} must contain a mapping")
        data = {str(k).replace("-", "_"): v for k, v in data.items()}
        data.update(overrides)
        return cls(**data)

    def dump_request(self) -> DumpRequest:
        return DumpRequest(
            owner=self.owner,
            repo=self.repo,
            branch=self.branch or None,
            pattern=self.regex or None,
            ignore_common=self.ignore_common,
            extra_ignores=tuple(self.extra_ignores),
            max_bytes=self.max_bytes,
        )
