"""Exchange collaborator backed by the local filesystem and an HTTP endpoint.

This module implements the ExchangeInterface protocol using:
- aiofiles for non-blocking reads and atomic writes in an export directory
- httpx.AsyncClient for fetching and posting well-known remote resources
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Self

import aiofiles
import aiofiles.os
import httpx

from state_persistence.errors import ErrorCode, ExchangeError
from state_persistence.exchange.base import ExchangeInterface

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_filename(filename: str) -> str:
    """Replace characters outside ``[a-zA-Z0-9._-]`` with underscores."""
    safe = _UNSAFE_FILENAME_CHARS.sub("_", Path(filename).name)
    if not safe or safe in {".", ".."}:
        raise ExchangeError(f"Invalid filename: {filename!r}", ErrorCode.FILE_WRITE_ERROR)
    return safe


class LocalExchange(ExchangeInterface):
    """Reads and writes exchange files locally and talks HTTP for remote ones.

    Args:
        export_dir: Directory that exported files are written to and that
            relative import paths are resolved against.
        base_url: Base URL for `fetch_file` / `post_file`. Defaults to the
            `STATE_PERSISTENCE_EXCHANGE_URL` environment variable.
        client: Optional preconfigured httpx.AsyncClient. Not closed by
            `close()` when injected.
        timeout: HTTP timeout in seconds (default: 30.0).

    Example:
        ```python
        async with LocalExchange(Path("saved-files"), base_url="http://localhost:3000") as exchange:
            path = await exchange.write_file('{"projects": []}', "backup.json")
            text = await exchange.fetch_file("default.json")
        ```
    """

    def __init__(
        self,
        export_dir: Path,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._export_dir = Path(export_dir)
        self._base_url = base_url or os.getenv("STATE_PERSISTENCE_EXCHANGE_URL")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def export_dir(self) -> Path:
        """Directory for exported files."""
        return self._export_dir

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the owned HTTP client, if one was created."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def read_file(self, path: str | Path) -> str:
        target = Path(path)
        if not target.is_absolute():
            target = self._export_dir / target
        try:
            async with aiofiles.open(target, mode="r", encoding="utf-8") as handle:
                content: str = await handle.read()
                return content
        except FileNotFoundError as exc:
            raise ExchangeError(f"File not found: {target}", ErrorCode.FILE_NOT_FOUND) from exc
        except PermissionError as exc:
            raise ExchangeError(f"Permission denied: {target}", ErrorCode.PERMISSION_DENIED) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ExchangeError(f"File read error: {exc}", ErrorCode.FILE_READ_ERROR) from exc

    async def write_file(self, data: str, filename: str) -> Path:
        target = self._export_dir / sanitize_filename(filename)
        temp = target.with_name(f".{target.name}.tmp")
        try:
            await aiofiles.os.makedirs(self._export_dir, exist_ok=True)
            async with aiofiles.open(temp, mode="w", encoding="utf-8", newline="\n") as handle:
                await handle.write(data)
                await handle.flush()
            await aiofiles.os.replace(temp, target)
        except OSError as exc:
            raise ExchangeError(f"File write error: {exc}", ErrorCode.FILE_WRITE_ERROR) from exc
        logger.info(f"Exported {len(data)} chars to {target}")
        return target

    async def fetch_file(self, url: str) -> str:
        response = await self._request("GET", url)
        return response.text

    async def post_file(self, url: str, data: str) -> None:
        await self._request(
            "POST",
            url,
            content=data.encode("utf-8"),
            headers={"Content-Type": "application/json"},
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if not self._base_url:
                raise ExchangeError("No exchange base URL configured", ErrorCode.NETWORK_ERROR)
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout)
        return self._client

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ExchangeError(f"Request to {url} timed out", ErrorCode.TIMEOUT_ERROR) from exc
        except httpx.HTTPError as exc:
            raise ExchangeError(f"Network error for {url}: {exc}", ErrorCode.NETWORK_ERROR) from exc

        if response.status_code == 404:
            raise ExchangeError(f"Remote file not found: {url}", ErrorCode.FILE_NOT_FOUND)
        if not response.is_success:
            raise ExchangeError(
                f"HTTP error! status: {response.status_code}", ErrorCode.NETWORK_ERROR
            )
        return response
