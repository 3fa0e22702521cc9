"""Storybook builds from the shared checkout.

Runs the project's dependency install, its optional pre-build script and the
external ``build-storybook`` binary, moves the output where it belongs,
injects navigation and stamps the build marker.  Failures are contained per
branch: :meth:`SiteBuilder.build` logs and reports them, it never raises.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from storybook_branches.builder.gate import BuildGate
from storybook_branches.config import BuildToolConfig
from storybook_branches.navigation.injector import ENTRY_PAGE, NavigationInjector
from storybook_branches.utils import (
    CommandResult,
    format_duration,
    get_logger,
    remove_tree,
    run_command,
)


class BuildStatus(str, Enum):
    """Outcome of one branch build attempt."""

    BUILT = "built"
    UP_TO_DATE = "up-to-date"
    NO_CONFIG = "no-config"
    NO_TOOL = "no-tool"
    FAILED = "failed"


@dataclass
class BuildResult:
    """Structured result of :meth:`SiteBuilder.build`."""

    branch: str
    status: BuildStatus
    head: str = ""
    error: str = ""
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status in (BuildStatus.BUILT, BuildStatus.UP_TO_DATE)


class BuildError(Exception):
    """Raised when a step of a branch build fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)

    @classmethod
    def from_result(cls, result: CommandResult) -> "BuildError":
        return cls(result.describe(), command=result.command_line, stderr=result.stderr)


def misplaced_output(project_dir: Path, output_dir: Path) -> Path:
    """Where a build tool that treats ``output_dir`` as relative writes to."""
    parts = output_dir.parts
    if output_dir.is_absolute():
        parts = parts[1:]
    return project_dir.joinpath(*parts)


class SiteBuilder:
    """Builds one branch's Storybook into its output directory.

    Attributes:
        project_dir: Project directory inside the shared checkout.
        tool: Locations and commands of the build tool.
        gate: Build marker access.
        injector: Navigation injection into the built entry page.
    """

    def __init__(
        self,
        project_dir: str | Path,
        tool: BuildToolConfig | None = None,
        gate: BuildGate | None = None,
        injector: NavigationInjector | None = None,
        logger: logging.Logger | None = None,
    ):
        self.project_dir = Path(project_dir)
        self.tool = tool or BuildToolConfig()
        self.gate = gate or BuildGate(self.tool.marker_file)
        self.logger = logger or get_logger(__name__)
        self.injector = injector or NavigationInjector(logger=self.logger)

    @property
    def config_dir(self) -> Path:
        return self.project_dir / self.tool.config_dir

    @property
    def build_binary(self) -> Path:
        return self.project_dir / self.tool.build_binary

    async def build(
        self,
        branch: str,
        head: str,
        branches: Iterable[str],
        output_dir: str | Path,
    ) -> BuildResult:
        """Build ``branch`` from the current checkout into ``output_dir``.

        Args:
            branch: Name of the checked-out branch.
            head: Commit id of the checkout, stamped on success.
            branches: Every current branch, for the navigation menu.
            output_dir: The branch's output directory.

        Returns:
            A :class:`BuildResult`.  ``FAILED`` results carry the error text.
        """
        start = time.monotonic()
        output = Path(output_dir).resolve()
        try:
            status = await self._build(branch, head, list(branches), output)
        except Exception as exc:
            self.logger.warning("Failed to build %s: %s", branch, str(exc) or "unknown error")
            return BuildResult(
                branch=branch,
                status=BuildStatus.FAILED,
                head=head,
                error=str(exc),
                duration_seconds=time.monotonic() - start,
            )

        duration = time.monotonic() - start
        if status is BuildStatus.BUILT:
            self.logger.info("Built: %s (%s)", branch, format_duration(duration))
        return BuildResult(branch=branch, status=status, head=head, duration_seconds=duration)

    async def _build(
        self, branch: str, head: str, branches: list[str], output: Path
    ) -> BuildStatus:
        if not self.config_dir.exists():
            self.logger.debug("No configuration found: %s", self.config_dir)
            return BuildStatus.NO_CONFIG

        output.mkdir(parents=True, exist_ok=True)
        self.logger.info("Building: %s ...", branch)

        await self._run(self.tool.install_command)

        if self.tool.pre_build_script in self._package_scripts():
            await self._run([self.tool.script_runner, self.tool.pre_build_script])

        if not self.build_binary.exists():
            self.logger.warning("No build-storybook found: %s", self.build_binary)
            return BuildStatus.NO_TOOL

        await self._run(
            [
                str(self.build_binary),
                "--config-dir", str(self.config_dir),
                "--output-dir", str(output),
            ]
        )
        self._relocate_output(output)

        self.injector.inject(output / ENTRY_PAGE, branch, branches)
        self.gate.stamp(output, head)
        return BuildStatus.BUILT

    async def _run(self, cmd: list[str]) -> CommandResult:
        result = await run_command(cmd, cwd=self.project_dir, logger=self.logger)
        if not result.success:
            raise BuildError.from_result(result)
        return result

    def _package_scripts(self) -> dict[str, str]:
        """Return ``scripts`` from the project's ``package.json``.

        Raises:
            BuildError: If ``package.json`` is missing or malformed.
        """
        package_json = self.project_dir / "package.json"
        try:
            package = json.loads(package_json.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise BuildError(f"Could not read {package_json}: {exc}") from exc
        scripts = package.get("scripts") if isinstance(package, dict) else None
        return scripts if isinstance(scripts, dict) else {}

    def _relocate_output(self, output: Path) -> None:
        # Some build-storybook versions resolve --output-dir against the project.
        wrong_output = misplaced_output(self.project_dir, output)
        if wrong_output == output or not wrong_output.exists():
            return
        self.logger.debug("Moving %s to %s...", wrong_output, output)
        shutil.copytree(wrong_output, output, dirs_exist_ok=True)
        remove_tree(wrong_output)
