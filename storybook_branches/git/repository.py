"""Shared git working tree management.

One working tree under ``<output>/repository`` is reused for every branch.
It is checked out sequentially and guarded by a lock, so at most one branch
occupies it at any time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from storybook_branches.utils import get_logger, run_command

GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class GitError(Exception):
    """Raised when a git operation fails."""

    def __init__(self, message: str, command: str = "", stderr: str = ""):
        self.command = command
        self.stderr = stderr
        super().__init__(message)


async def _run_git(
    *args: str,
    cwd: str | Path | None = None,
    timeout: float | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """Run a git command asynchronously and return its stdout.

    Raises GitError if the command exits with a non-zero code or git is missing.
    """
    result = await run_command(
        ["git", *args], cwd=cwd, timeout=timeout, env=GIT_ENV, logger=logger
    )
    if not result.success:
        raise GitError(
            f"Git command failed (exit {result.returncode}): {result.command_line}\n"
            f"{result.stderr}".rstrip(),
            command=result.command_line,
            stderr=result.stderr,
        )
    return result.stdout


class Workspace:
    """The single git working tree shared by all branch builds.

    Branch checkouts mutate the tree in place, so callers must hold the
    workspace for the whole checkout-and-build sequence::

        async with workspace.acquire():
            head = await workspace.checkout("main")
            ...  # build from workspace.path
    """

    def __init__(
        self,
        path: str | Path,
        remote: str = "origin",
        logger: logging.Logger | None = None,
    ):
        self.path = Path(path).resolve()
        self.remote = remote
        self.logger = logger or get_logger(__name__)
        self._lock = asyncio.Lock()

        if not (self.path / ".git").exists():
            raise GitError(
                f"Not a git repository: {self.path}. "
                "Workspace requires a cloned working tree."
            )

    @classmethod
    async def clone(
        cls,
        url: str,
        path: str | Path,
        remote: str = "origin",
        depth: int = 1,
        logger: logging.Logger | None = None,
    ) -> "Workspace":
        """Clone ``url`` into ``path`` with every remote branch tracked.

        Raises:
            GitError: If the clone fails.
        """
        target = Path(path).resolve()
        target.parent.mkdir(parents=True, exist_ok=True)

        args = ["clone", "--quiet", "--origin", remote]
        if depth > 0:
            args += ["--depth", str(depth), "--no-single-branch"]
        args += [url, str(target)]

        await _run_git(*args, cwd=target.parent, logger=logger)
        return cls(target, remote=remote, logger=logger)

    # ------------------------------------------------------------------
    # Remote state
    # ------------------------------------------------------------------

    async def fetch(self, prune: bool = True) -> None:
        """Refresh remote-tracking refs, dropping branches deleted upstream."""
        args = ["fetch", "--quiet"]
        if prune:
            args.append("--prune")
        await _run_git(*args, cwd=self.path, logger=self.logger)

    async def list_remote_branches(self) -> list[str]:
        """Return the short names of all remote-tracking branches, sorted."""
        prefix = f"refs/remotes/{self.remote}/"
        stdout = await _run_git(
            "for-each-ref", "--format=%(refname)", prefix,
            cwd=self.path, logger=self.logger,
        )
        branches = []
        for line in stdout.splitlines():
            line = line.strip()
            if not line.startswith(prefix):
                continue
            name = line[len(prefix):]
            if name and name != "HEAD":
                branches.append(name)
        return branches

    async def has_remote_branch(self, branch: str) -> bool:
        try:
            await _run_git(
                "rev-parse", "--verify", "--quiet",
                f"refs/remotes/{self.remote}/{branch}",
                cwd=self.path, logger=self.logger,
            )
        except GitError:
            return False
        return True

    async def default_branch(self, fallback: str = "master") -> str:
        """Return the branch the remote reports as its default.

        Falls back to ``fallback`` when ``refs/remotes/<remote>/HEAD`` is unset.
        """
        prefix = f"refs/remotes/{self.remote}/"
        try:
            ref = await _run_git(
                "symbolic-ref", f"{prefix}HEAD", cwd=self.path, logger=self.logger
            )
        except GitError:
            return fallback
        ref = ref.strip()
        if ref.startswith(prefix) and len(ref) > len(prefix):
            return ref[len(prefix):]
        return fallback

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator["Workspace"]:
        """Hold the working tree exclusively for the duration of the block."""
        async with self._lock:
            yield self

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def head(self) -> str:
        """Return the commit id checked out in the working tree."""
        stdout = await _run_git("rev-parse", "HEAD", cwd=self.path, logger=self.logger)
        return stdout.strip()

    async def checkout(
        self,
        branch: str,
        force: bool = True,
        reset: bool = True,
        clean: bool = True,
    ) -> str:
        """Check out the remote state of ``branch`` and return its head.

        A local branch of the same name is created or reset to the
        remote-tracking ref.  With ``reset`` and ``clean`` the tree is left
        pristine: no local modifications and no untracked or ignored files.

        Raises:
            RuntimeError: If the workspace is not held via :meth:`acquire`.
            GitError: If any git step fails.
        """
        if not self.locked:
            raise RuntimeError("Workspace.checkout() requires holding acquire()")

        ref = f"{self.remote}/{branch}"
        args = ["checkout", "--quiet"]
        if force:
            args.append("--force")
        args += ["-B", branch, ref]
        await _run_git(*args, cwd=self.path, logger=self.logger)

        if reset:
            await _run_git("reset", "--hard", "--quiet", ref, cwd=self.path, logger=self.logger)
        if clean:
            await _run_git("clean", "-ffdx", "--quiet", cwd=self.path, logger=self.logger)

        return await self.head()
