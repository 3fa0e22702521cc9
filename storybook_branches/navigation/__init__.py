"""storybook-branches navigation module.

Keeps the branch switcher embedded in every built entry page, and the root
redirect page, in line with the live branch set.
"""

from .injector import (
    BRANCHES_PATTERN,
    NavigationInjector,
    branch_assignment,
    branches_assignment,
    parse_branches,
)

__all__ = [
    "NavigationInjector",
    "BRANCHES_PATTERN",
    "branch_assignment",
    "branches_assignment",
    "parse_branches",
]
