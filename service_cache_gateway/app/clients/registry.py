"""
Registry of connected client sessions.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from shared.logging import get_logger


@dataclass
class ClientSession:
    """A connected client (one open app window/tab)."""
    client_id: str
    websocket: Any  # WebSocket object
    controller_version: Optional[str] = None
    connected_at: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)


class ClientSessionRegistry:
    """Tracks client sessions so the gateway can claim and message them."""

    def __init__(self):
        self.logger = get_logger("cache_gateway.clients")
        self.clients: Dict[str, ClientSession] = {}

    def __len__(self) -> int:
        return len(self.clients)

    def has_clients(self) -> bool:
        return bool(self.clients)

    def add_client(self, websocket: Any, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Register a client session and return its id."""
        client_id = str(uuid.uuid4())
        self.clients[client_id] = ClientSession(
            client_id=client_id,
            websocket=websocket,
            metadata=metadata or {},
        )
        self.logger.info("Client session added", client_id=client_id, total_clients=len(self.clients))
        return client_id

    def remove_client(self, client_id: str) -> bool:
        if self.clients.pop(client_id, None) is None:
            return False
        self.logger.info("Client session removed", client_id=client_id, total_clients=len(self.clients))
        return True

    def get_client(self, client_id: str) -> Optional[ClientSession]:
        return self.clients.get(client_id)

    def match_all(self) -> List[ClientSession]:
        return list(self.clients.values())

    async def claim(self, version: str) -> int:
        """Take control of every open session for the given cache version."""
        for client in self.clients.values():
            client.controller_version = version
        self.logger.info("Clients claimed", version=version, claimed=len(self.clients))
        return len(self.clients)

    async def post_message(self, client_id: str, message: Dict[str, Any]) -> bool:
        """Send a message to one client; a failed send drops the session."""
        client = self.clients.get(client_id)
        if client is None:
            return False

        try:
            await client.websocket.send_text(json.dumps(message))
            return True
        except Exception as e:
            self.logger.error("Failed to send message to client", client_id=client_id, error=str(e))
            self.remove_client(client_id)
            return False

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send a message to every client once. Returns the number reached."""
        sent_count = 0
        for client_id in list(self.clients):
            if await self.post_message(client_id, message):
                sent_count += 1

        self.logger.debug("Broadcast message to clients", message_type=message.get("type"), sent_count=sent_count)
        return sent_count

    def get_stats(self) -> Dict[str, Any]:
        controlled = sum(1 for client in self.clients.values() if client.controller_version)
        return {
            "total_clients": len(self.clients),
            "controlled_clients": controlled,
        }
