"""Static file server for the built Storybooks.

Serves ``<output>/storybooks`` on a background thread.  The reconciler keeps
writing into the same tree, so files may appear, change or vanish between
the existence check and the read; such races surface as 404 or 500
responses, never as a crashed server.
"""

from __future__ import annotations

import logging
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import unquote, urlsplit

from storybook_branches.utils import get_logger

MIME_TYPES: dict[str, str] = {
    ".ico": "image/x-icon",
    ".htm": "text/html",
    ".html": "text/html",
    ".js": "text/javascript",
    ".json": "application/json",
    ".css": "text/css",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".svg": "image/svg+xml",
}
DEFAULT_MIME_TYPE = "text/plain"


def resolve_request_path(root: Path, url_path: str) -> Path:
    """Map a URL path onto ``root``, clamping traversal attempts to ``root``."""
    root = root.resolve()
    local = (root / ("./" + unquote(url_path))).resolve()
    if local != root and not str(local).startswith(str(root) + os.sep):
        return root
    return local


class ArtifactRequestHandler(BaseHTTPRequestHandler):
    """Serves files below ``server.root``."""

    server: "_ArtifactHTTPServer"

    def do_GET(self) -> None:
        self._serve(send_body=True)

    def do_HEAD(self) -> None:
        self._serve(send_body=False)

    def _serve(self, send_body: bool) -> None:
        logger = self.server.logger
        url_path = urlsplit(self.path).path or "/"
        try:
            local_path = resolve_request_path(self.server.root, url_path)
            exists = local_path.exists()
            is_dir = exists and local_path.is_dir()
        except (OSError, ValueError) as exc:
            # Null bytes or names the file system cannot represent.
            logger.debug("Unusable request path %r: %s", url_path, exc)
            exists = False

        if not exists:
            self._respond(404, b"File not found!", DEFAULT_MIME_TYPE, send_body)
            return

        if is_dir:
            if not url_path.endswith("/"):
                self.send_response(301)
                self.send_header("Location", url_path + "/")
                self.send_header("Content-Length", "0")
                self.end_headers()
                return
            local_path = local_path / "index.html"

        try:
            data = local_path.read_bytes()
        except OSError as exc:
            logger.warning("Error reading file: %s: %s", local_path, exc)
            self._respond(500, b"Error reading file!", DEFAULT_MIME_TYPE, send_body)
            return

        content_type = MIME_TYPES.get(local_path.suffix.lower(), DEFAULT_MIME_TYPE)
        self._respond(200, data, content_type, send_body)

    def _respond(self, status: int, body: bytes, content_type: str, send_body: bool) -> None:
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if send_body:
            self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:
        self.server.logger.debug("%s - %s", self.address_string(), format % args)


class _ArtifactHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], root: Path, logger: logging.Logger):
        self.root = root
        self.logger = logger
        super().__init__(address, ArtifactRequestHandler)


class ArtifactServer:
    """Runs the static file server on a daemon thread.

    Example::

        server = ArtifactServer(config.storybooks_path, port=9001)
        server.start()
        ...
        server.stop()
    """

    def __init__(
        self,
        root: str | Path,
        port: int = 9001,
        host: str = "",
        logger: logging.Logger | None = None,
    ):
        self.root = Path(root).resolve()
        self.port = port
        self.host = host
        self.logger = logger or get_logger(__name__)
        self._httpd: _ArtifactHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int]:
        """The bound ``(host, port)``; the port is real even if 0 was requested."""
        if self._httpd is None:
            return (self.host, self.port)
        host, port = self._httpd.server_address[:2]
        return (str(host), int(port))

    def start(self) -> None:
        """Bind the port and start serving in the background.

        Raises:
            OSError: If the port cannot be bound.
        """
        if self._httpd is not None:
            return
        self._httpd = _ArtifactHTTPServer((self.host, self.port), self.root, self.logger)
        self._thread = threading.Thread(
            target=self._httpd.serve_forever,
            name="artifact-server",
            daemon=True,
        )
        self._thread.start()
        self.logger.info("Server listening on :%d", self.address[1])

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._httpd = None
        self._thread = None
