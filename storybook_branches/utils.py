"""Shared utility functions for storybook-branches.

Provides async external-tool execution with structured results, logging
setup, and small file-system helpers used by the git adapter, the site
builder and the reconciler.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

console = Console()
error_console = Console(stderr=True)

LOGGER_NAME = "storybook_branches"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def configure_logging(level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger once and return it.

    Records are rendered through Rich with timestamps.  Calling this again
    replaces the handler instead of stacking a second one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=error_console,
        show_path=False,
        rich_tracebacks=True,
        log_time_format="[%Y-%m-%d %H:%M:%S]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger or one of its children."""
    if not name:
        return logging.getLogger(LOGGER_NAME)
    if name.startswith(LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


# ---------------------------------------------------------------------------
# External tool execution
# ---------------------------------------------------------------------------


@dataclass
class CommandResult:
    """Structured result of an external tool invocation."""

    command: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return " ".join(self.command)

    def describe(self) -> str:
        """One-line description of a failed command, for error messages."""
        detail = self.stderr or self.stdout
        message = f"Command failed with {self.returncode}: {self.command_line}"
        if detail:
            message += f"\n{detail}"
        return message


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    logger: logging.Logger | None = None,
) -> CommandResult:
    """Run an external tool asynchronously and capture its output.

    Args:
        cmd: Executable followed by its arguments.
        cwd: Working directory for the child process.
        timeout: Optional wall-clock limit in seconds.  ``None`` waits for
            the process to exit however long it takes.
        env: Optional extra environment variables merged on top of ``os.environ``.
        logger: Receives the command line and its output at debug level.

    Returns:
        A :class:`CommandResult`.  A missing executable is reported as a
        failed result with return code 127 rather than raised.
    """
    log = logger or get_logger()
    merged_env: dict[str, str] | None = None
    if env:
        merged_env = {**os.environ, **env}

    log.debug("Executing command in %s: %s", cwd or os.getcwd(), " ".join(cmd))

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
        )
    except FileNotFoundError as exc:
        return CommandResult(command=list(cmd), returncode=127, stderr=str(exc))
    except PermissionError as exc:
        return CommandResult(command=list(cmd), returncode=126, stderr=str(exc))

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(
            command=list(cmd),
            returncode=-1,
            stderr=f"Command timed out after {timeout}s: {' '.join(cmd)}",
        )

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    if stdout:
        log.debug(stdout)
    if stderr:
        log.debug(stderr)

    return CommandResult(
        command=list(cmd),
        returncode=process.returncode or 0,
        stdout=stdout,
        stderr=stderr,
    )


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist."""
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path.resolve()


def remove_tree(path: str | Path) -> bool:
    """Delete a file or directory tree.

    Returns:
        ``True`` if something was removed, ``False`` if the path did not exist.

    Raises:
        OSError: Any failure other than the path being absent.
    """
    target = Path(path)
    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
    except FileNotFoundError:
        return False
    return True


def format_duration(seconds: float) -> str:
    """Render a build time for log lines: ``"4.2s"``, ``"2m 07s"``, ``"1h 03m 00s"``."""
    if seconds < 60:
        return f"{max(seconds, 0.0):.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    return f"{minutes}m {secs:02d}s"
