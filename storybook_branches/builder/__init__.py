"""storybook-branches builder module.

Decides which branches need a rebuild and runs the external Storybook build
for them.

Key classes:
    BuildGate    - Build marker persistence and change detection
    SiteBuilder  - Install, pre-build, build-storybook, relocate, inject, stamp
"""

from .gate import BuildGate
from .site_builder import BuildError, BuildResult, BuildStatus, SiteBuilder

__all__ = [
    # Change detection
    "BuildGate",
    # Site builds
    "SiteBuilder",
    "BuildResult",
    "BuildStatus",
    "BuildError",
]
