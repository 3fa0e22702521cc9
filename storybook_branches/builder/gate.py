"""Build gate: per-branch change detection.

A branch is rebuilt only when its head differs from the commit recorded in
the build marker, a small file in the branch's output directory written after
the last successful build.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_MARKER_FILE = ".head"


class BuildGate:
    """Reads and stamps build markers.

    ``needs_build`` never writes; only :meth:`stamp` does, and only the site
    builder calls it, as the final step of a successful build.
    """

    def __init__(self, marker_file: str = DEFAULT_MARKER_FILE):
        self.marker_file = marker_file

    def marker_path(self, output_dir: str | Path) -> Path:
        return Path(output_dir) / self.marker_file

    def read_marker(self, output_dir: str | Path) -> str | None:
        """Return the last successfully built head, or ``None`` if never built.

        Raises:
            OSError: If the marker exists but cannot be read.
        """
        try:
            return self.marker_path(output_dir).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def needs_build(self, output_dir: str | Path, head: str) -> bool:
        """Return ``True`` unless the marker already holds ``head``."""
        return self.read_marker(output_dir) != head.strip()

    def stamp(self, output_dir: str | Path, head: str) -> Path:
        """Record ``head`` as the last successful build of ``output_dir``."""
        path = self.marker_path(output_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(head.strip(), encoding="utf-8")
        return path
