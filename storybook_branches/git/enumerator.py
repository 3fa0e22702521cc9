"""Branch enumeration over the shared working tree.

Lists the remote branches matching a filter and checks each one out in turn,
handing the pristine checkout to a consumer callback before moving on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from storybook_branches.git.repository import GitError, Workspace
from storybook_branches.utils import get_logger

BranchCallback = Callable[[str, str, list[str]], Awaitable[None]]


@dataclass(frozen=True)
class BranchRef:
    """A branch reported by the enumerator and its checked-out head."""

    branch: str
    head: str


class BranchEnumerator:
    """Walks the matching remote branches one checkout at a time.

    Attributes:
        workspace: The shared working tree.
        branch_filter: Compiled regex, matched with search semantics.
    """

    def __init__(
        self,
        workspace: Workspace,
        branch_filter: str | re.Pattern[str] = ".+",
        force: bool = True,
        reset: bool = True,
        clean: bool = True,
        logger: logging.Logger | None = None,
    ):
        self.workspace = workspace
        if isinstance(branch_filter, str):
            branch_filter = re.compile(branch_filter)
        self.branch_filter = branch_filter
        self.force = force
        self.reset = reset
        self.clean = clean
        self.logger = logger or get_logger(__name__)

    def matches(self, branch: str) -> bool:
        return self.branch_filter.search(branch) is not None

    async def list_branches(self) -> list[str]:
        """Return the remote branches that pass the filter.

        Raises:
            GitError: If the remote-tracking refs cannot be listed.
        """
        branches = await self.workspace.list_remote_branches()
        return [branch for branch in branches if self.matches(branch)]

    async def for_each_branch(self, callback: BranchCallback) -> list[BranchRef]:
        """Check out every matching branch and invoke ``callback`` on it.

        The callback receives ``(branch, head, branches)`` while the branch is
        checked out, where ``branches`` lists every matching branch.  Branches
        that fail to check out are logged and left out of the result.

        Returns:
            The successfully checked-out branches in enumeration order.
        """
        branches = await self.list_branches()
        refs: list[BranchRef] = []

        for branch in branches:
            async with self.workspace.acquire():
                try:
                    head = await self.workspace.checkout(
                        branch, force=self.force, reset=self.reset, clean=self.clean
                    )
                except GitError as exc:
                    self.logger.warning("Could not check out %s: %s", branch, exc)
                    continue

                try:
                    await callback(branch, head, list(branches))
                except Exception as exc:
                    self.logger.warning("Failed to process %s: %s", branch, exc)

            refs.append(BranchRef(branch=branch, head=head))

        return refs
