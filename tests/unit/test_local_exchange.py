"""Tests for LocalExchange."""

from pathlib import Path

import httpx
import pytest

from state_persistence.errors import ErrorCode, ExchangeError
from state_persistence.exchange.base import ExchangeInterface
from state_persistence.exchange.local import LocalExchange, sanitize_filename


def mock_client(handler) -> httpx.AsyncClient:
    """Build an AsyncClient that routes requests to `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://files.test")


class TestSanitizeFilename:
    """Tests for sanitize_filename."""

    def test_replaces_unsafe_characters(self) -> None:
        """Characters outside [a-zA-Z0-9._-] become underscores."""
        assert sanitize_filename("Q3 Roadmap (v2).json") == "Q3_Roadmap__v2_.json"

    def test_strips_directories(self) -> None:
        """Directory components never escape the export directory."""
        assert sanitize_filename("../../etc/passwd") == "passwd"

    @pytest.mark.parametrize("name", ["", ".", ".."])
    def test_rejects_empty_names(self, name: str) -> None:
        """Names that resolve to nothing are rejected."""
        with pytest.raises(ExchangeError) as exc_info:
            sanitize_filename(name)
        assert exc_info.value.code == ErrorCode.FILE_WRITE_ERROR


class TestLocalFiles:
    """Tests for read_file and write_file."""

    def test_conforms_to_protocol(self, tmp_path: Path) -> None:
        """LocalExchange satisfies ExchangeInterface."""
        assert isinstance(LocalExchange(tmp_path), ExchangeInterface)

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path: Path) -> None:
        """Written files can be read back by name."""
        exchange = LocalExchange(tmp_path / "exports")

        path = await exchange.write_file('{"projects": []}', "backup.json")

        assert path == tmp_path / "exports" / "backup.json"
        assert await exchange.read_file("backup.json") == '{"projects": []}'
        assert await exchange.read_file(path) == '{"projects": []}'
        assert not list((tmp_path / "exports").glob(".*.tmp"))

    @pytest.mark.asyncio
    async def test_write_replaces_existing(self, tmp_path: Path) -> None:
        """Writing the same name replaces the previous content."""
        exchange = LocalExchange(tmp_path)
        await exchange.write_file("old", "a.json")
        await exchange.write_file("new", "a.json")
        assert (tmp_path / "a.json").read_text(encoding="utf-8") == "new"

    @pytest.mark.asyncio
    async def test_read_missing_file(self, tmp_path: Path) -> None:
        """Missing files map to FILE_NOT_FOUND."""
        with pytest.raises(ExchangeError) as exc_info:
            await LocalExchange(tmp_path).read_file("missing.json")
        assert exc_info.value.code == ErrorCode.FILE_NOT_FOUND

    @pytest.mark.asyncio
    async def test_read_directory(self, tmp_path: Path) -> None:
        """Reading something that is not a file maps to an exchange error."""
        (tmp_path / "folder").mkdir()
        with pytest.raises(ExchangeError) as exc_info:
            await LocalExchange(tmp_path).read_file("folder")
        assert exc_info.value.code in {ErrorCode.FILE_READ_ERROR, ErrorCode.PERMISSION_DENIED}

    @pytest.mark.asyncio
    async def test_write_into_file_path_fails(self, tmp_path: Path) -> None:
        """An unusable export directory maps to FILE_WRITE_ERROR."""
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(ExchangeError) as exc_info:
            await LocalExchange(blocker).write_file("{}", "a.json")
        assert exc_info.value.code == ErrorCode.FILE_WRITE_ERROR


class TestRemoteFiles:
    """Tests for fetch_file and post_file."""

    @pytest.mark.asyncio
    async def test_fetch_file(self, tmp_path: Path) -> None:
        """fetch_file returns the response body."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/default.json"
            return httpx.Response(200, text='{"pages": []}')

        async with LocalExchange(tmp_path, client=mock_client(handler)) as exchange:
            assert await exchange.fetch_file("default.json") == '{"pages": []}'

    @pytest.mark.asyncio
    async def test_post_file(self, tmp_path: Path) -> None:
        """post_file sends the document as JSON."""
        received: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        exchange = LocalExchange(tmp_path, client=mock_client(handler))
        await exchange.post_file("default.json", '{"projects": []}')

        assert received[0].method == "POST"
        assert received[0].headers["Content-Type"] == "application/json"
        assert received[0].content == b'{"projects": []}'

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "code"),
        [(404, ErrorCode.FILE_NOT_FOUND), (500, ErrorCode.NETWORK_ERROR)],
    )
    async def test_http_status_errors(self, tmp_path: Path, status: int, code: ErrorCode) -> None:
        """Non-success statuses map to exchange errors."""
        exchange = LocalExchange(tmp_path, client=mock_client(lambda request: httpx.Response(status)))
        with pytest.raises(ExchangeError) as exc_info:
            await exchange.fetch_file("default.json")
        assert exc_info.value.code == code

    @pytest.mark.asyncio
    async def test_transport_errors(self, tmp_path: Path) -> None:
        """Connection failures and timeouts map to network and timeout codes."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        def stall(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("read timed out", request=request)

        with pytest.raises(ExchangeError) as refused:
            await LocalExchange(tmp_path, client=mock_client(refuse)).fetch_file("a.json")
        with pytest.raises(ExchangeError) as stalled:
            await LocalExchange(tmp_path, client=mock_client(stall)).fetch_file("a.json")

        assert refused.value.code == ErrorCode.NETWORK_ERROR
        assert stalled.value.code == ErrorCode.TIMEOUT_ERROR

    @pytest.mark.asyncio
    async def test_no_base_url(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Remote calls without a configured base URL fail cleanly."""
        monkeypatch.delenv("STATE_PERSISTENCE_EXCHANGE_URL", raising=False)
        with pytest.raises(ExchangeError, match="No exchange base URL"):
            await LocalExchange(tmp_path).fetch_file("default.json")
