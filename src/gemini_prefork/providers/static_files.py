"""Request handler serving a directory tree."""

import logging
from pathlib import Path

from ..core import detect_mime_type
from ..server import Request

logger = logging.getLogger(__name__)


class StaticFileHandler:
    """Handler that serves files from a root directory.

    Directories are served through their index file when present,
    otherwise as a generated gemtext listing. Paths that escape the
    root are treated as missing.
    """

    def __init__(self, root_path: str | Path, index_file: str = "index.gmi"):
        """
        Initialize with root directory path.

        Args:
            root_path: The root directory to serve content from.
            index_file: File name served for directory requests.
        """
        self.root = Path(root_path).resolve()
        if not self.root.is_dir():
            raise ValueError(f"Root path must be a directory: {root_path}")
        self.index_file = index_file

    def __call__(self, request: Request) -> None:
        try:
            resolved = self._resolve_path(request.path)
        except ValueError as e:
            logger.warning(str(e))
            request.respond_not_found()
            return

        if resolved.is_dir():
            self._serve_directory(request, resolved)
        elif resolved.is_file():
            self._serve_file(request, resolved)
        else:
            logger.debug(f"Not found: {request.path}")
            request.respond_not_found()

    def _resolve_path(self, path: str) -> Path:
        """
        Resolve a URL path to a real filesystem path.

        Args:
            path: URL path (e.g., "/documents/file.gmi")

        Returns:
            Resolved Path object within root.

        Raises:
            ValueError: If path escapes root directory.
        """
        clean_path = path.lstrip("/")

        if not clean_path:
            return self.root

        resolved = (self.root / clean_path).resolve()

        try:
            resolved.relative_to(self.root)
        except ValueError:
            raise ValueError(f"Path escapes root directory: {path}")

        return resolved

    def _serve_directory(self, request: Request, directory: Path) -> None:
        if not request.path.endswith("/"):
            target = str(request.url).split("?", 1)[0] + "/"
            request.respond_redirect(target, permanent=True)
            return

        index = directory / self.index_file
        if index.is_file():
            request.respond_bytes("text/gemini", index.read_bytes())
            return

        request.respond_success("text/gemini", self.render_listing(request.path, directory))

    def _serve_file(self, request: Request, path: Path) -> None:
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read {path}: {e}")
            request.respond_not_found()
            return
        request.respond_bytes(detect_mime_type(path), data)

    def render_listing(self, url_path: str, directory: Path) -> str:
        """
        Render a directory as gemtext links, directories first.

        Args:
            url_path: The requested path, ending with "/".
            directory: The directory on disk.
        """
        entries = [item for item in directory.iterdir() if not item.name.startswith(".")]
        dirs = sorted((e for e in entries if e.is_dir()), key=lambda e: e.name.lower())
        files = sorted((e for e in entries if not e.is_dir()), key=lambda e: e.name.lower())

        lines = [f"# Index of {url_path}", ""]
        if url_path != "/":
            lines.append("=> ../ ..")
        lines.extend(f"=> {d.name}/ {d.name}/" for d in dirs)
        lines.extend(f"=> {f.name} {f.name}" for f in files)
        return "\n".join(lines) + "\n"
