"""storybook-branches build loop.

Drives the polling cycle that keeps one built Storybook per branch:

INITIALIZING -- Resolve the default branch, write the root redirect page.
POLLING      -- Check out every matching branch, rebuild the changed ones.
RECONCILING  -- Delete outputs of vanished branches, refresh navigation.
SLEEPING     -- Wait for the configured interval.
FETCHING     -- ``git fetch --prune``, then poll again.

Usage::

    python -m storybook_branches git@github.com:org/app.git ./dist
    storybook-branches --branches 'storybook.+' --sleep 30 <repository>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from pathlib import Path

from pydantic import ValidationError
from rich.panel import Panel

from storybook_branches import __version__
from storybook_branches.builder import BuildGate, BuildResult, BuildStatus, SiteBuilder
from storybook_branches.config import Config, ConfigError
from storybook_branches.credentials import install_ssh_credentials
from storybook_branches.git import BranchEnumerator, GitError, Workspace
from storybook_branches.navigation import NavigationInjector
from storybook_branches.server import ArtifactServer
from storybook_branches.utils import (
    configure_logging,
    console,
    error_console,
    get_logger,
    remove_tree,
)

SleepFunc = Callable[[float], Awaitable[None]]


class ReconcilerState(str, Enum):
    """Where the build loop currently is."""

    INITIALIZING = "initializing"
    POLLING = "polling"
    RECONCILING = "reconciling"
    SLEEPING = "sleeping"
    FETCHING = "fetching"


class Reconciler:
    """Keeps the served output tree aligned with the live branch set.

    Branches are processed strictly one after another in the shared working
    tree.  Navigation is refreshed for every live branch only once all build
    attempts of a cycle have finished, so every page sees the final set.

    Attributes:
        config: Global configuration.
        workspace: The shared git working tree.
        state: Current :class:`ReconcilerState`.
        default_branch: Branch the root redirect page points to.
        previous_branches: Branch set observed by the last completed cycle.
        results: Build results of the current cycle, keyed by branch.
    """

    def __init__(
        self,
        config: Config,
        workspace: Workspace,
        enumerator: BranchEnumerator | None = None,
        builder: SiteBuilder | None = None,
        gate: BuildGate | None = None,
        injector: NavigationInjector | None = None,
        sleep: SleepFunc = asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.workspace = workspace
        self.logger = logger or get_logger(__name__)
        self.gate = gate or BuildGate(config.build.marker_file)
        self.injector = injector or NavigationInjector(logger=self.logger)
        self.builder = builder or SiteBuilder(
            config.project_path,
            tool=config.build,
            gate=self.gate,
            injector=self.injector,
            logger=self.logger,
        )
        self.enumerator = enumerator or BranchEnumerator(
            workspace, config.branch_filter, logger=self.logger
        )
        self._sleep = sleep

        self.state = ReconcilerState.INITIALIZING
        self.default_branch = config.default_branch
        self.previous_branches: tuple[str, ...] = ()
        self.results: dict[str, BuildResult] = {}
        self.cycles = 0

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def initialize(self) -> str:
        """Resolve the default branch and write the redirect page.

        An explicit default that does not exist upstream falls back to the
        remote's reported default.

        Raises:
            OSError: If the redirect page cannot be written.
        """
        self.state = ReconcilerState.INITIALIZING
        if self.default_branch and not await self.workspace.has_remote_branch(
            self.default_branch
        ):
            self.logger.warning(
                "Default branch %s does not exist upstream, detecting it instead",
                self.default_branch,
            )
            self.default_branch = ""

        if not self.default_branch:
            self.default_branch = await self.workspace.default_branch(
                self.config.git.fallback_default_branch
            )

        self.injector.write_redirect(self.config.redirect_page, self.default_branch)
        self.logger.debug("Default branch: %s", self.default_branch)
        return self.default_branch

    async def poll(self) -> list[str] | None:
        """Build every matching branch that changed since its last build.

        Returns:
            The branches reported this cycle, in enumeration order, or
            ``None`` if the branch list could not be read at all.
        """
        self.state = ReconcilerState.POLLING
        self.results = {}
        try:
            refs = await self.enumerator.for_each_branch(self._process_branch)
        except GitError as exc:
            self.logger.warning("Could not list branches: %s", exc)
            return None
        return [ref.branch for ref in refs]

    def reconcile(self, current: Sequence[str]) -> list[str]:
        """Align outputs and navigation with ``current``.

        Returns:
            The branches whose output was removed.
        """
        self.state = ReconcilerState.RECONCILING
        current_branches = tuple(current)

        removed = self.remove_deleted_branches(current_branches)

        if current_branches and self.default_branch not in current_branches:
            self.default_branch = current_branches[0]
            try:
                self.injector.write_redirect(self.config.redirect_page, self.default_branch)
            except OSError as exc:
                self.logger.warning(
                    "Could not write %s: %s", self.config.redirect_page, exc
                )
            self.logger.debug("New default branch: %s", self.default_branch)

        self.injector.refix_all(self.config.storybooks_path, current_branches)
        self.previous_branches = current_branches
        return removed

    async def sleep(self) -> None:
        self.state = ReconcilerState.SLEEPING
        self.logger.info("Sleeping for %d seconds ...", self.config.sleep)
        await self._sleep(self.config.sleep)

    async def fetch(self) -> None:
        """Refresh remote-tracking refs; failures are retried next cycle."""
        self.state = ReconcilerState.FETCHING
        self.logger.debug("Executing git fetch ...")
        async with self.workspace.acquire():
            try:
                await self.workspace.fetch(prune=True)
            except GitError as exc:
                self.logger.warning("Fetch failed: %s", exc)
                return
        self.logger.debug("Fetch finished!")

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run_cycle(self) -> None:
        current = await self.poll()
        if current is not None:
            self.reconcile(current)
        await self.sleep()
        await self.fetch()
        self.cycles += 1

    async def run_forever(self) -> None:
        """Initialise, then cycle until the process is terminated."""
        await self.initialize()
        while True:
            await self.run_cycle()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _process_branch(self, branch: str, head: str, branches: list[str]) -> None:
        output = self.config.branch_output(branch)
        try:
            needs_build = self.gate.needs_build(output, head)
        except OSError as exc:
            self.logger.warning("Could not read build marker of %s: %s", branch, exc)
            needs_build = True

        if not needs_build:
            self.logger.debug("%s is already up-to-date!", branch)
            self.results[branch] = BuildResult(
                branch=branch, status=BuildStatus.UP_TO_DATE, head=head
            )
            return

        self.results[branch] = await self.builder.build(branch, head, branches, output)

    def remove_deleted_branches(self, current: Sequence[str]) -> list[str]:
        """Delete the outputs of branches seen last cycle but not in ``current``.

        A deleted branch's directory may also hold the outputs of live
        branches nested below it (``feature`` renamed to ``feature/x``);
        those subdirectories are kept.
        """
        removed: list[str] = []
        for previous in self.previous_branches:
            if previous in current:
                continue
            output = self.config.branch_output(previous)
            try:
                self._remove_output(output, self._live_children(output, current))
            except OSError as exc:
                self.logger.warning("Could not delete %s: %s", output, exc)
                continue
            self.logger.info("Removed deleted branch: %s", previous)
            removed.append(previous)
        return removed

    def _live_children(self, output: Path, current: Sequence[str]) -> set[str]:
        """Names of the entries in ``output`` that lead to a live branch's output."""
        children = set()
        for branch in current:
            try:
                relative = self.config.branch_output(branch).relative_to(output)
            except ValueError:
                continue
            if relative.parts:
                children.add(relative.parts[0])
        return children

    @staticmethod
    def _remove_output(output: Path, keep: set[str]) -> None:
        if not keep:
            remove_tree(output)
            return
        if not output.is_dir():
            return
        for entry in list(output.iterdir()):
            if entry.name not in keep:
                remove_tree(entry)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser(defaults: Config | None = None) -> argparse.ArgumentParser:
    """Create the argument parser; ``defaults`` usually come from the environment."""
    defaults = defaults or Config()
    parser = argparse.ArgumentParser(
        prog="storybook-branches",
        description="Build and serve one Storybook per branch of a git repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Every option also reads its environment variable: PORT, BRANCHES,\n"
            "DEFAULT, DIR, SLEEP, LOG_LEVEL, REPOSITORY, OUTPUT.\n"
        ),
    )
    parser.add_argument(
        "-v", "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show version number and exit",
    )
    parser.add_argument(
        "-p", "--port",
        type=int,
        default=defaults.port,
        metavar="<port>",
        help=f"Port on which to start the HTTP server (default: {defaults.port})",
    )
    parser.add_argument(
        "-b", "--branches",
        default=defaults.branches,
        metavar="<branch>",
        help=f"Filter branches to build (default: {defaults.branches})",
    )
    parser.add_argument(
        "--default",
        dest="default_branch",
        default=defaults.default_branch,
        metavar="<default>",
        help="Default branch to show (default: auto-detect)",
    )
    parser.add_argument(
        "--dir",
        default=defaults.dir,
        metavar="<dir>",
        help=f"Directory inside the repository (default: {defaults.dir})",
    )
    parser.add_argument(
        "-s", "--sleep",
        type=int,
        default=defaults.sleep,
        metavar="<sleep>",
        help=f"Amount to sleep between git fetch calls (default: {defaults.sleep})",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        metavar="<level>",
        help=f"Logging level (default: {defaults.log_level})",
    )
    parser.add_argument(
        "repository",
        nargs="?",
        default=defaults.repository,
        metavar="<repository>",
        help="Source repository URL",
    )
    parser.add_argument(
        "output",
        nargs="?",
        default=str(defaults.output),
        metavar="<output>",
        help=f"Target directory (default: {defaults.output})",
    )
    return parser


def parse_args(
    argv: Sequence[str] | None = None,
    environ: dict[str, str] | None = None,
) -> Config:
    """Resolve the configuration: flags, then environment, then defaults.

    Raises:
        SystemExit: On invalid flags or a missing repository.
        ConfigError: If the resolved values are invalid.
    """
    try:
        defaults = Config.from_env(environ)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    parser = build_parser(defaults)
    args = parser.parse_args(argv)
    if not args.repository:
        parser.error("the following arguments are required: <repository>")

    try:
        return Config(
            repository=args.repository,
            output=Path(args.output),
            port=args.port,
            branches=args.branches,
            default_branch=args.default_branch,
            dir=args.dir,
            sleep=args.sleep,
            log_level=args.log_level,
        )
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


async def run(config: Config, logger: logging.Logger) -> None:
    """Start the server, clone if needed, then run the build loop forever."""
    install_ssh_credentials(logger=logger)
    config.ensure_directories()

    server = ArtifactServer(config.storybooks_path, port=config.port, logger=logger)
    server.start()

    console.print(
        Panel(
            f"[bold bright_cyan]storybook-branches {__version__}[/bold bright_cyan]\n"
            f"Repository : {config.repository}\n"
            f"Output     : {config.output_root}\n"
            f"Branches   : {config.branches}\n"
            f"Port       : {config.port}",
            border_style="bright_cyan",
        )
    )

    try:
        if config.workdir.exists():
            workspace = Workspace(config.workdir, remote=config.git.remote, logger=logger)
        else:
            logger.info("Executing git clone ...")
            workspace = await Workspace.clone(
                config.repository,
                config.workdir,
                remote=config.git.remote,
                depth=config.git.clone_depth,
                logger=logger,
            )
            logger.info("Clone finished!")

        reconciler = Reconciler(config, workspace, logger=logger)
        await reconciler.run_forever()
    finally:
        server.stop()


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point for ``storybook-branches``."""
    try:
        config = parse_args(argv)
    except ConfigError as exc:
        error_console.print(str(exc), markup=False, highlight=False)
        sys.exit(1)

    logger = configure_logging(config.logging_level)

    try:
        asyncio.run(run(config, logger))
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as exc:
        error_console.print(str(exc) or "unknown error", markup=False, highlight=False)
        sys.exit(1)


if __name__ == "__main__":
    main()
