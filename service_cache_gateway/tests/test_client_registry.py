"""
Unit tests for ClientSessionRegistry.
"""

import json
import pytest
from unittest.mock import AsyncMock

from service_cache_gateway.app.clients.registry import ClientSessionRegistry


class TestClientSessionRegistry:
    """Test cases for ClientSessionRegistry."""

    @pytest.fixture
    def registry(self):
        """Create ClientSessionRegistry instance."""
        return ClientSessionRegistry()

    @pytest.fixture
    def mock_websocket(self):
        """Mock WebSocket object."""
        websocket = AsyncMock()
        websocket.send_text = AsyncMock()
        return websocket

    def test_add_and_remove_client(self, registry, mock_websocket):
        """Test session registration bookkeeping."""
        client_id = registry.add_client(mock_websocket, metadata={"user_agent": "test"})

        assert registry.has_clients()
        assert len(registry) == 1
        assert registry.get_client(client_id).metadata == {"user_agent": "test"}

        assert registry.remove_client(client_id) is True
        assert registry.remove_client(client_id) is False
        assert not registry.has_clients()

    @pytest.mark.asyncio
    async def test_claim_sets_controller_version(self, registry, mock_websocket):
        """Test that claim marks every session as controlled."""
        registry.add_client(mock_websocket)
        registry.add_client(AsyncMock())

        claimed = await registry.claim("v3")

        assert claimed == 2
        assert all(client.controller_version == "v3" for client in registry.match_all())
        assert registry.get_stats() == {"total_clients": 2, "controlled_clients": 2}

    @pytest.mark.asyncio
    async def test_post_message_sends_json(self, registry, mock_websocket):
        """Test sending a message to one client."""
        client_id = registry.add_client(mock_websocket)

        assert await registry.post_message(client_id, {"type": "CACHE_CLEARED"}) is True
        mock_websocket.send_text.assert_called_once_with(json.dumps({"type": "CACHE_CLEARED"}))

    @pytest.mark.asyncio
    async def test_post_message_to_unknown_client(self, registry):
        """Test sending to a client that is not registered."""
        assert await registry.post_message("missing", {"type": "CACHE_CLEARED"}) is False

    @pytest.mark.asyncio
    async def test_broadcast_drops_failed_clients(self, registry, mock_websocket):
        """A client whose send fails is removed; the others still receive the message."""
        broken = AsyncMock()
        broken.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))
        healthy_id = registry.add_client(mock_websocket)
        broken_id = registry.add_client(broken)

        sent = await registry.broadcast({"type": "CACHE_CLEARED"})

        assert sent == 1
        assert registry.get_client(healthy_id) is not None
        assert registry.get_client(broken_id) is None
        mock_websocket.send_text.assert_called_once()
