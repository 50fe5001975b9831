"""Local HTTP server exposing downloaded Telegram media to Discord."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

logger = logging.getLogger("bridge.file_server")


def _resolve_inside(root: Path, relative: str) -> Path | None:
    """Return ``root / relative`` when it stays inside ``root``."""
    candidate = (root / relative).resolve()
    try:
        candidate.relative_to(root)
    except ValueError:
        return None
    return candidate


def create_app(files_directory: str | Path) -> FastAPI:
    """Build the file server app.

    Args:
        files_directory: Directory TDLib downloads media into.

    Returns:
        FastAPI app with ``/health`` and ``/files/{path}`` routes.

    """
    root = Path(files_directory).resolve()
    app = FastAPI(title="Bridge File Server", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Return a basic health payload."""
        return {"status": "ok"}

    @app.get("/files/{file_path:path}")
    async def get_file(file_path: str) -> FileResponse:
        """Serve a downloaded file by its path relative to the files directory."""
        target = _resolve_inside(root, file_path)
        if target is None or not target.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        return FileResponse(target)

    return app


def serve_in_thread(app: FastAPI, host: str, port: int) -> threading.Thread:
    """Run ``app`` under uvicorn on a daemon thread and return the thread."""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, name="file-server", daemon=True)
    thread.start()
    logger.info("File server listening on http://%s:%s", host, port)
    return thread


class AttachmentLinker:
    """Map files downloaded by TDLib to URLs served by the file server."""

    def __init__(self, files_directory: str | Path, base_url: str) -> None:
        self._root = Path(files_directory).resolve()
        self._base_url = base_url.rstrip("/")

    def url_for(self, local_path: str) -> str | None:
        """Return the public URL of ``local_path``, or None if it lies outside the files directory."""
        try:
            relative = Path(local_path).resolve().relative_to(self._root)
        except ValueError:
            return None
        return f"{self._base_url}/files/{quote(relative.as_posix())}"
