"""storybook-branches configuration.

Centralised, typed configuration for the build loop and the artifact server.
All settings use Pydantic v2 models so they are validated at construction time
and can be resolved from environment variables (the container entrypoint) or
from command-line flags without boiler-plate.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from storybook_branches.utils import ensure_dir

LOG_LEVELS = ("critical", "error", "warning", "warn", "info", "debug")


class ConfigError(Exception):
    """Raised when the configuration cannot be resolved."""


class GitConfig(BaseModel):
    """Settings for the shared working tree and its remote."""

    remote: str = Field(default="origin")
    clone_depth: int = Field(default=1, ge=0, description="0 disables shallow cloning")
    fallback_default_branch: str = Field(
        default="master",
        description="Default branch used when the remote does not report one",
    )


class BuildToolConfig(BaseModel):
    """Where the external Storybook build tool and its inputs live.

    Paths are relative to the project directory inside the checkout.
    """

    config_dir: str = Field(default=".storybook")
    install_command: list[str] = Field(
        default_factory=lambda: ["yarn", "install", "--pure-lockfile"]
    )
    pre_build_script: str = Field(default="pre-build-storybook")
    script_runner: str = Field(default="yarn")
    build_binary: str = Field(default="node_modules/.bin/build-storybook")
    marker_file: str = Field(default=".head")


class Config(BaseModel):
    """Global storybook-branches configuration.

    Instances are created once by the CLI entry point and then passed to the
    reconciler, the builders and the server.
    """

    repository: str = Field(default="")
    output: Path = Field(default=Path("dist"))
    port: int = Field(default=9001, ge=1, le=65535)
    branches: str = Field(default=".+", description="Regex filter on branch names")
    default_branch: str = Field(default="", description="Empty means auto-detect")
    dir: str = Field(default=".", description="Project directory inside the checkout")
    sleep: int = Field(default=60, ge=0, description="Seconds between fetch cycles")
    log_level: str = Field(default="info")
    git: GitConfig = Field(default_factory=GitConfig)
    build: BuildToolConfig = Field(default_factory=BuildToolConfig)

    @field_validator("branches")
    @classmethod
    def _validate_branches(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid branch filter {value!r}: {exc}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        level = value.strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(
                f"Unknown log level {value!r} (expected one of {', '.join(LOG_LEVELS)})"
            )
        return level

    # ------------------------------------------------------------------
    # Derived values (read-only properties)
    # ------------------------------------------------------------------

    @property
    def output_root(self) -> Path:
        """Absolute output root directory."""
        return self.output.resolve()

    @property
    def workdir(self) -> Path:
        """The shared git working tree."""
        return self.output_root / "repository"

    @property
    def storybooks_path(self) -> Path:
        """Root of the served tree, one subdirectory per branch."""
        return self.output_root / "storybooks"

    @property
    def redirect_page(self) -> Path:
        """Root entry page that redirects to the default branch."""
        return self.storybooks_path / "index.html"

    @property
    def project_path(self) -> Path:
        """Directory inside the checkout that holds the Storybook project."""
        return (self.workdir / self.dir).resolve()

    @property
    def branch_filter(self) -> re.Pattern[str]:
        return re.compile(self.branches)

    @property
    def logging_level(self) -> int:
        """The numeric :mod:`logging` level for ``log_level``."""
        if self.log_level == "warn":
            return logging.WARNING
        return logging.getLevelName(self.log_level.upper())

    def branch_output(self, branch: str) -> Path:
        """Output directory of a single branch."""
        return self.storybooks_path / branch

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Config":
        """Build a ``Config`` from environment variables.

        Recognised variables (all optional, empty values are ignored):
            REPOSITORY, OUTPUT, PORT, BRANCHES, DEFAULT, DIR, SLEEP, LOG_LEVEL.
        """
        env = os.environ if environ is None else environ

        kwargs: dict[str, Any] = {}
        if env.get("REPOSITORY"):
            kwargs["repository"] = env["REPOSITORY"]
        if env.get("OUTPUT"):
            kwargs["output"] = Path(env["OUTPUT"])
        if env.get("BRANCHES"):
            kwargs["branches"] = env["BRANCHES"]
        if env.get("DEFAULT"):
            kwargs["default_branch"] = env["DEFAULT"]
        if env.get("DIR"):
            kwargs["dir"] = env["DIR"]
        if env.get("LOG_LEVEL"):
            kwargs["log_level"] = env["LOG_LEVEL"]

        for name, key in (("port", "PORT"), ("sleep", "SLEEP")):
            if env.get(key):
                try:
                    kwargs[name] = int(env[key])
                except ValueError as exc:
                    raise ConfigError(f"{key} must be an integer, got {env[key]!r}") from exc

        return cls(**kwargs)

    def ensure_directories(self) -> None:
        """Create the directories that must exist before the server starts."""
        ensure_dir(self.storybooks_path)
