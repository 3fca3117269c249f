"""Protocol for the host-supplied file exchange collaborator."""

from pathlib import Path
from typing import Protocol, runtime_checkable


@runtime_checkable
class ExchangeInterface(Protocol):
    """File read/write and remote fetch/post primitives used by import/export."""

    async def read_file(self, path: str | Path) -> str:
        """Return the text content of a user-chosen file."""
        ...

    async def write_file(self, data: str, filename: str) -> Path:
        """Write `data` under `filename` and return where it landed."""
        ...

    async def fetch_file(self, url: str) -> str:
        """Download a remote resource as text."""
        ...

    async def post_file(self, url: str, data: str) -> None:
        """Upload `data` to a remote resource."""
        ...
