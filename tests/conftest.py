"""Shared pytest fixtures for the storybook-branches test suite.

Provides reusable fixtures for:
- Temporary output trees and configurations
- A real git remote with several branches, plus its clone
- Mock subprocess helpers
- Fake built entry pages
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from storybook_branches.config import Config
from storybook_branches.navigation import NavigationInjector

ENTRY_PAGE_HTML = """<!DOCTYPE html>
<html>
  <head><title>Storybook</title></head>
  <body>
    <div id="root"></div>
  </body>
</html>
"""


# ---------------------------------------------------------------------------
# Paths & configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def config(tmp_path: Path) -> Config:
    """Config whose output root lives in the test's temp directory."""
    cfg = Config(repository="https://example.invalid/repo.git", output=tmp_path / "dist")
    cfg.ensure_directories()
    return cfg


@pytest.fixture
def fake_git_dir(tmp_path: Path) -> Path:
    """A directory with a `.git` dir so Workspace accepts it.

    All git operations are mocked, so we don't need a real repo.
    """
    workdir = tmp_path / "repository"
    (workdir / ".git").mkdir(parents=True)
    return workdir


@pytest.fixture
def make_entry_page():
    """Factory that writes a built (and optionally injected) entry page."""
    injector = NavigationInjector()

    def factory(root: Path, branch: str, branches: list[str] | None = None) -> Path:
        page = root / branch / "index.html"
        page.parent.mkdir(parents=True, exist_ok=True)
        page.write_text(ENTRY_PAGE_HTML, encoding="utf-8")
        if branches is not None:
            injector.inject(page, branch, branches)
        return page

    return factory


# ---------------------------------------------------------------------------
# Real git repositories
# ---------------------------------------------------------------------------

def _git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


@pytest.fixture
def git_remote(tmp_path: Path) -> Path:
    """Temporary git repository acting as the upstream remote.

    Has the branches ``main``, ``storybook-1`` and ``storybook-2``; ``main``
    is checked out, so clones report it as the default branch.
    """
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo_dir = tmp_path / "remote"
    repo_dir.mkdir()
    _git("init", "--quiet", cwd=repo_dir)
    _git("symbolic-ref", "HEAD", "refs/heads/main", cwd=repo_dir)
    _git("config", "user.email", "test@storybook-branches.local", cwd=repo_dir)
    _git("config", "user.name", "Storybook Branches Test", cwd=repo_dir)
    _git("config", "commit.gpgsign", "false", cwd=repo_dir)

    (repo_dir / "README.md").write_text("# Test Project\n", encoding="utf-8")
    _git("add", ".", cwd=repo_dir)
    _git("commit", "--quiet", "-m", "Initial commit", cwd=repo_dir)

    for branch in ("storybook-1", "storybook-2"):
        _git("checkout", "--quiet", "-b", branch, "main", cwd=repo_dir)
        (repo_dir / f"{branch}.txt").write_text(branch, encoding="utf-8")
        _git("add", ".", cwd=repo_dir)
        _git("commit", "--quiet", "-m", f"Add {branch}", cwd=repo_dir)

    _git("checkout", "--quiet", "main", cwd=repo_dir)
    return repo_dir


@pytest.fixture
def git(git_remote: Path):
    """Run a git command in the remote and return its stdout."""
    def run(*args: str, cwd: Path | None = None) -> str:
        return _git(*args, cwd=cwd or git_remote)

    return run


# ---------------------------------------------------------------------------
# Subprocess mocks
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory
