"""Navigation state injected into built Storybook pages.

Every branch's entry page carries a small branch switcher whose state is two
literal script assignments::

    const branch = "main";
    const branches = ["main","feat-a"];

Builds finish independently, so the ``branches`` assignment is rewritten in
every live branch's page each cycle.  All text matching on generated HTML
lives in this module.
"""

from __future__ import annotations

import html
import json
import logging
import re
from collections.abc import Iterable
from pathlib import Path

from storybook_branches.utils import get_logger

ASSETS_DIR = Path(__file__).parent / "assets"
INJECT_TEMPLATE = ASSETS_DIR / "inject.html"
REDIRECT_TEMPLATE = ASSETS_DIR / "redirect.html"

ENTRY_PAGE = "index.html"
BODY_CLOSE = "</body>"
BRANCH_PLACEHOLDER = "const branch = null;"
BRANCHES_PLACEHOLDER = "const branches = [];"
DEFAULT_BRANCH_TOKEN = "%defaultBranch%"

# Matches an injected list of JSON string literals, escaped quotes included.
BRANCHES_PATTERN = re.compile(r'const branches = \[(?:"(?:[^"\\]|\\.)*"|[^\]"])*\];')


def _js_literal(value: object) -> str:
    """Encode ``value`` as a script-evaluable literal safe inside ``<script>``."""
    return json.dumps(value, separators=(",", ":")).replace("</", "<\\/")


def branch_assignment(branch: str) -> str:
    return f"const branch = {_js_literal(branch)};"


def branches_assignment(branches: Iterable[str]) -> str:
    return f"const branches = {_js_literal(list(branches))};"


def parse_branches(content: str) -> list[str] | None:
    """Return the branch list injected into ``content``, if any."""
    match = BRANCHES_PATTERN.search(content)
    if match is None:
        return None
    literal = match.group(0)[len("const branches = "):-1]
    return json.loads(literal)


class NavigationInjector:
    """Writes and refreshes navigation state in built artifacts."""

    def __init__(
        self,
        inject_template: str | None = None,
        redirect_template: str | None = None,
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or get_logger(__name__)
        self._inject_template = inject_template
        self._redirect_template = redirect_template

    @property
    def inject_template(self) -> str:
        if self._inject_template is None:
            self._inject_template = INJECT_TEMPLATE.read_text(encoding="utf-8")
        return self._inject_template

    @property
    def redirect_template(self) -> str:
        if self._redirect_template is None:
            self._redirect_template = REDIRECT_TEMPLATE.read_text(encoding="utf-8")
        return self._redirect_template

    # ------------------------------------------------------------------
    # Entry pages
    # ------------------------------------------------------------------

    def render_snippet(self, branch: str, branches: Iterable[str]) -> str:
        return (
            self.inject_template
            .replace(BRANCH_PLACEHOLDER, branch_assignment(branch), 1)
            .replace(BRANCHES_PLACEHOLDER, branches_assignment(branches), 1)
        )

    def inject(self, index_file: str | Path, branch: str, branches: Iterable[str]) -> None:
        """Insert the branch switcher into a freshly built entry page.

        The snippet goes right before the first ``</body>``, or at the end
        of the page if it has none.

        Raises:
            OSError: If the entry page cannot be read or written.
        """
        path = Path(index_file)
        content = path.read_text(encoding="utf-8")
        snippet = self.render_snippet(branch, branches)
        if BODY_CLOSE in content:
            injected = content.replace(BODY_CLOSE, snippet + BODY_CLOSE, 1)
        else:
            injected = content + snippet
        path.write_text(injected, encoding="utf-8")

    def refix(self, index_file: str | Path, branches: Iterable[str]) -> bool:
        """Replace the injected branch list in an entry page.

        A page that does not exist yet (the branch never built) is skipped
        silently; other read or write errors are logged.

        Returns:
            ``True`` if the page was rewritten.
        """
        path = Path(index_file)
        replacement = branches_assignment(branches)
        try:
            content = path.read_text(encoding="utf-8")
            updated, count = BRANCHES_PATTERN.subn(lambda _: replacement, content, count=1)
            if count == 0:
                self.logger.debug("No injected branch list in %s", path)
                return False
            if updated == content:
                return False
            path.write_text(updated, encoding="utf-8")
        except (FileNotFoundError, NotADirectoryError):
            return False
        except (OSError, UnicodeDecodeError) as exc:
            self.logger.warning("Could not fix file: %s: %s", path, exc)
            return False
        return True

    def refix_all(self, root: str | Path, branches: Iterable[str]) -> list[str]:
        """Refresh the branch list of every branch under ``root``.

        Returns:
            The branches whose entry page was rewritten.
        """
        current = list(branches)
        fixed = []
        for branch in current:
            if self.refix(Path(root) / branch / ENTRY_PAGE, current):
                fixed.append(branch)
        return fixed

    # ------------------------------------------------------------------
    # Default branch redirect
    # ------------------------------------------------------------------

    def write_redirect(self, index_file: str | Path, default_branch: str) -> Path:
        """Write the root page that redirects to ``default_branch``.

        Raises:
            OSError: If the page cannot be written.
        """
        path = Path(index_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            self.redirect_template.replace(
                DEFAULT_BRANCH_TOKEN, html.escape(default_branch, quote=True)
            ),
            encoding="utf-8",
        )
        return path
