"""SSH credentials for cloning private repositories.

Container deployments hand the deploy key and the known hosts over as
environment variables (``ID_RSA``, ``KNOWN_HOSTS``); they are written to
``~/.ssh`` before the first git command runs.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from storybook_branches.utils import get_logger


def _ssh_dir(home: Path) -> Path:
    ssh_dir = home / ".ssh"
    ssh_dir.mkdir(parents=True, exist_ok=True)
    ssh_dir.chmod(0o700)
    return ssh_dir


def install_ssh_credentials(
    environ: dict[str, str] | None = None,
    home: str | Path | None = None,
    logger: logging.Logger | None = None,
) -> list[Path]:
    """Write ``ID_RSA`` and ``KNOWN_HOSTS`` into ``<home>/.ssh``.

    Unset or empty variables are skipped.

    Returns:
        The files that were written.
    """
    env = os.environ if environ is None else environ
    log = logger or get_logger(__name__)
    home_dir = Path(home) if home is not None else Path.home()

    written: list[Path] = []
    for variable, filename, mode in (
        ("ID_RSA", "id_rsa", 0o600),
        ("KNOWN_HOSTS", "known_hosts", None),
    ):
        value = env.get(variable, "")
        if not value:
            continue
        target = _ssh_dir(home_dir) / filename
        target.write_text(value if value.endswith("\n") else value + "\n", encoding="utf-8")
        if mode is not None:
            target.chmod(mode)
        log.info("Written '%s'", target)
        written.append(target)
    return written
