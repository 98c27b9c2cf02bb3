"""Tests for transport selection and creation."""

from unittest.mock import MagicMock, patch

import pytest

from activerun.config.schema import ProviderConfig
from activerun.mcp.transport import _expand_env_vars, create_transport, infer_transport_kind
from activerun.mcp.types import TransportKind


class TestExpandEnvVars:
    def test_expand_simple_var(self, monkeypatch):
        monkeypatch.setenv("TEST_VAR", "test_value")

        assert _expand_env_vars({"KEY": "${TEST_VAR}"}) == {"KEY": "test_value"}

    def test_expand_missing_var(self, monkeypatch):
        monkeypatch.delenv("MISSING_VAR", raising=False)

        assert _expand_env_vars({"KEY": "${MISSING_VAR}"}) == {"KEY": ""}

    def test_expand_inside_value(self, monkeypatch):
        monkeypatch.setenv("TOKEN", "abc")

        assert _expand_env_vars({"Authorization": "Bearer ${TOKEN}"}) == {
            "Authorization": "Bearer abc"
        }

    def test_bare_dollar_not_expanded(self):
        assert _expand_env_vars({"KEY": "$VAR"}) == {"KEY": "$VAR"}


class TestInferTransportKind:
    def test_command_means_stdio(self):
        config = ProviderConfig(name="fs", command=["server"])
        assert infer_transport_kind(config) is TransportKind.STDIO

    @pytest.mark.parametrize("url", ["ws://localhost:9000", "wss://tools.example.com/mcp"])
    def test_socket_url_means_websocket(self, url):
        assert infer_transport_kind(ProviderConfig(name="w", url=url)) is TransportKind.WEBSOCKET

    def test_http_url_means_streamable_http(self):
        config = ProviderConfig(name="h", url="https://tools.example.com/mcp")
        assert infer_transport_kind(config) is TransportKind.STREAMABLE_HTTP

    def test_explicit_override_wins(self):
        config = ProviderConfig(name="s", url="http://localhost/sse", transport="sse")
        assert infer_transport_kind(config) is TransportKind.SSE

    def test_unknown_transport_raises(self):
        with pytest.raises(ValueError, match="Unknown transport: carrier-pigeon"):
            infer_transport_kind(ProviderConfig(name="x", transport="carrier-pigeon"))

    def test_nothing_to_go_on_raises(self):
        with pytest.raises(ValueError, match="needs either 'command' or 'url'"):
            infer_transport_kind(ProviderConfig(name="x"))


class TestCreateTransport:
    @pytest.mark.asyncio
    async def test_stdio_requires_command(self):
        config = ProviderConfig(name="test", transport="stdio")

        with pytest.raises(ValueError, match="requires 'command'"):
            await create_transport(config)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("transport", ["websocket", "streamable-http", "sse"])
    async def test_url_transports_require_url(self, transport):
        config = ProviderConfig(name="test", transport=transport)

        with pytest.raises(ValueError, match="requires 'url'"):
            await create_transport(config)

    @pytest.mark.asyncio
    async def test_stdio_creates_client(self):
        config = ProviderConfig(
            name="test",
            command=["python", "-m", "test_server"],
            args=["--port", "8080"],
        )

        mock_client = MagicMock()
        with patch("mcp.client.stdio.stdio_client", return_value=mock_client) as mock_stdio:
            result = await create_transport(config)

        params = mock_stdio.call_args[0][0]
        assert params.command == "python"
        assert params.args == ["-m", "test_server", "--port", "8080"]
        assert result is mock_client

    @pytest.mark.asyncio
    async def test_stdio_merges_environment(self, monkeypatch):
        monkeypatch.setenv("BASE_VAR", "base_value")
        monkeypatch.setenv("SECRET", "secret_value")
        config = ProviderConfig(
            name="test",
            command=["server"],
            env={"API_KEY": "${SECRET}", "CUSTOM": "custom_value"},
        )

        with patch("mcp.client.stdio.stdio_client") as mock_stdio:
            await create_transport(config)

        env = mock_stdio.call_args[0][0].env
        assert env["BASE_VAR"] == "base_value"
        assert env["API_KEY"] == "secret_value"
        assert env["CUSTOM"] == "custom_value"

    @pytest.mark.asyncio
    async def test_websocket_creates_client(self):
        config = ProviderConfig(name="web", url="ws://localhost:9000")

        mock_client = MagicMock()
        with patch(
            "mcp.client.websocket.websocket_client", return_value=mock_client
        ) as mock_ws:
            result = await create_transport(config)

        mock_ws.assert_called_once_with("ws://localhost:9000")
        assert result is mock_client

    @pytest.mark.asyncio
    async def test_streamable_http_passes_expanded_headers(self, monkeypatch):
        monkeypatch.setenv("API_TOKEN", "secret123")
        monkeypatch.delenv("MISSING_VAR", raising=False)
        config = ProviderConfig(
            name="h",
            url="http://localhost:8080/mcp",
            headers={"Authorization": "${API_TOKEN}", "Empty": "${MISSING_VAR}"},
        )

        with patch("mcp.client.streamable_http.streamablehttp_client") as mock_http:
            await create_transport(config)

        assert mock_http.call_args[0][0] == "http://localhost:8080/mcp"
        assert mock_http.call_args[1]["headers"] == {"Authorization": "secret123"}

    @pytest.mark.asyncio
    async def test_sse_uses_timeout(self):
        config = ProviderConfig(
            name="s", url="http://localhost:8080/sse", transport="sse", timeout=30.0
        )

        with patch("mcp.client.sse.sse_client") as mock_sse:
            await create_transport(config)

        assert mock_sse.call_args[0][0] == "http://localhost:8080/sse"
        assert mock_sse.call_args[1]["timeout"] == 30.0
        assert mock_sse.call_args[1]["headers"] is None
