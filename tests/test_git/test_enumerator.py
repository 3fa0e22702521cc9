"""Unit tests for branch enumeration (storybook_branches.git.enumerator).

Tests cover:
- Filter matching with search semantics
- Sequential checkout and callback arguments
- Checkout failures skip the branch without aborting enumeration
- Callback failures are contained and the branch is still reported
- The working tree is held while the callback runs
- Listing failures propagate
- The ``storybook.+`` filter against a real remote
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from storybook_branches.git import BranchEnumerator, BranchRef, GitError, Workspace


def _workspace(fake_git_dir: Path, branches: list[str], heads: dict[str, str],
               failing: set[str] | None = None) -> Workspace:
    """Workspace whose git calls are replaced by canned answers."""
    failing = failing or set()
    workspace = Workspace(fake_git_dir)
    workspace.list_remote_branches = AsyncMock(return_value=branches)

    async def checkout(branch: str, **kwargs) -> str:
        assert workspace.locked
        if branch in failing:
            raise GitError(f"pathspec '{branch}' did not match", stderr="error")
        return heads[branch]

    workspace.checkout = AsyncMock(side_effect=checkout)
    return workspace


class TestMatches:
    @pytest.mark.unit
    def test_default_matches_everything(self, fake_git_dir: Path):
        enumerator = BranchEnumerator(Workspace(fake_git_dir))
        assert enumerator.matches("main")
        assert enumerator.matches("feature/x")

    @pytest.mark.unit
    def test_search_semantics(self, fake_git_dir: Path):
        enumerator = BranchEnumerator(Workspace(fake_git_dir), "storybook.+")
        assert enumerator.matches("storybook-1")
        assert enumerator.matches("feature/storybook-x")
        assert not enumerator.matches("main")
        assert not enumerator.matches("storybook")

    @pytest.mark.unit
    def test_anchored_filter(self, fake_git_dir: Path):
        enumerator = BranchEnumerator(Workspace(fake_git_dir), "^release/")
        assert enumerator.matches("release/1.0")
        assert not enumerator.matches("hotfix/release/1.0")


class TestForEachBranch:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_filter_scenario(self, fake_git_dir: Path):
        workspace = _workspace(
            fake_git_dir,
            ["main", "storybook-1", "storybook-2"],
            {"main": "a1", "storybook-1": "b2", "storybook-2": "c3"},
        )
        callback = AsyncMock()
        enumerator = BranchEnumerator(workspace, "storybook.+")

        refs = await enumerator.for_each_branch(callback)

        assert refs == [BranchRef("storybook-1", "b2"), BranchRef("storybook-2", "c3")]
        assert [c.args for c in callback.call_args_list] == [
            ("storybook-1", "b2", ["storybook-1", "storybook-2"]),
            ("storybook-2", "c3", ["storybook-1", "storybook-2"]),
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_checkout_flags_forwarded(self, fake_git_dir: Path):
        workspace = _workspace(fake_git_dir, ["main"], {"main": "a1"})
        enumerator = BranchEnumerator(workspace, force=True, reset=False, clean=True)

        await enumerator.for_each_branch(AsyncMock())

        workspace.checkout.assert_awaited_once_with("main", force=True, reset=False, clean=True)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_checkout_failure_skips_branch(self, fake_git_dir: Path, caplog):
        workspace = _workspace(
            fake_git_dir,
            ["broken", "main", "next"],
            {"main": "a1", "next": "b2"},
            failing={"broken"},
        )
        callback = AsyncMock()
        enumerator = BranchEnumerator(workspace)

        refs = await enumerator.for_each_branch(callback)

        assert [ref.branch for ref in refs] == ["main", "next"]
        assert [c.args[0] for c in callback.call_args_list] == ["main", "next"]
        assert "Could not check out broken" in caplog.text
        assert not workspace.locked

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_callback_failure_is_contained(self, fake_git_dir: Path, caplog):
        workspace = _workspace(fake_git_dir, ["main", "next"], {"main": "a1", "next": "b2"})
        seen = []

        async def callback(branch, head, branches):
            seen.append(branch)
            if branch == "main":
                raise ValueError("exploded")

        refs = await BranchEnumerator(workspace).for_each_branch(callback)

        assert seen == ["main", "next"]
        assert [ref.branch for ref in refs] == ["main", "next"]
        assert "Failed to process main: exploded" in caplog.text

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_callback_runs_while_tree_is_held(self, fake_git_dir: Path):
        workspace = _workspace(fake_git_dir, ["main"], {"main": "a1"})
        observed = MagicMock()

        async def callback(branch, head, branches):
            observed(workspace.locked)

        await BranchEnumerator(workspace).for_each_branch(callback)

        observed.assert_called_once_with(True)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_matching_branches(self, fake_git_dir: Path):
        workspace = _workspace(fake_git_dir, ["main"], {"main": "a1"})
        callback = AsyncMock()

        refs = await BranchEnumerator(workspace, "storybook.+").for_each_branch(callback)

        assert refs == []
        callback.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_listing_failure_propagates(self, fake_git_dir: Path):
        workspace = Workspace(fake_git_dir)
        workspace.list_remote_branches = AsyncMock(side_effect=GitError("not a git repository"))

        with pytest.raises(GitError):
            await BranchEnumerator(workspace).for_each_branch(AsyncMock())


@pytest.mark.integration
class TestForEachBranchWithGit:
    @pytest.mark.asyncio
    async def test_storybook_filter(self, git_remote: Path, git, tmp_path: Path):
        workspace = await Workspace.clone(str(git_remote), tmp_path / "repository")
        checked_out = {}

        async def callback(branch, head, branches):
            checked_out[branch] = (workspace.path / f"{branch}.txt").read_text()

        refs = await BranchEnumerator(workspace, "storybook.+").for_each_branch(callback)

        assert [ref.branch for ref in refs] == ["storybook-1", "storybook-2"]
        assert refs[0].head == git("rev-parse", "storybook-1")
        assert checked_out == {"storybook-1": "storybook-1", "storybook-2": "storybook-2"}
