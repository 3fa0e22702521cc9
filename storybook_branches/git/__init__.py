"""storybook-branches source-control module.

Wraps the git command line for the shared working tree and walks the
remote branches that should be built.

Key classes:
    Workspace         - Clone, fetch and exclusive checkout of the working tree
    BranchEnumerator  - Sequential checkout of every matching remote branch
"""

from .enumerator import BranchCallback, BranchEnumerator, BranchRef
from .repository import GitError, Workspace

__all__ = [
    # Working tree
    "Workspace",
    "GitError",
    # Enumeration
    "BranchEnumerator",
    "BranchRef",
    "BranchCallback",
]
