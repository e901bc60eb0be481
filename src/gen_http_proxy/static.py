"""Static file fallback for requests that were not authenticated."""

import asyncio
import logging
import os

from aiohttp import web
from werkzeug.security import safe_join

from .exceptions import StaticFileError

logger = logging.getLogger(__name__)

LOGIN_PAGE = "/login.html"
DEFAULT_CONTENT_TYPE = "text/plain"

CONTENT_TYPES = {
    ".ico": "image/x-icon",
    ".html": "text/html",
    ".js": "text/javascript",
    ".json": "application/json",
    ".css": "text/css",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".wav": "audio/wav",
    ".mp3": "audio/mpeg",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
}


def content_type_for(path: str) -> str:
    """Map a file extension to its content type (``text/plain`` if unknown)."""
    _, ext = os.path.splitext(path)
    return CONTENT_TYPES.get(ext, DEFAULT_CONTENT_TYPE)


def resolve_path(folder: str, url_path: str):
    """Locate ``url_path`` under ``folder``; None if it escapes the folder."""
    relative = url_path.lstrip("/")
    if not relative:
        return None
    return safe_join(folder, relative)


def _read_file(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise StaticFileError(path, str(e)) from e


async def serve_static(request: web.Request, folder: str) -> web.Response:
    """
    Serve the file matching the request path from ``folder``.

    Missing files and directories redirect to the login page; read failures
    answer 500 with the error.
    """
    path = resolve_path(folder, request.path)
    if path is None or not await asyncio.to_thread(os.path.isfile, path):
        return web.Response(status=301, headers={"Location": LOGIN_PAGE})

    try:
        data = await asyncio.to_thread(_read_file, path)
    except StaticFileError as e:
        logger.error(f"Static file read failed: {e}")
        return web.Response(status=500, text=e.message)

    return web.Response(body=data, headers={"Content-Type": content_type_for(path)})
