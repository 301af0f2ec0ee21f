"""
Data types shared by the cache strategies and storage backends.
"""

import base64
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import SplitResult, urlsplit


OFFLINE_API_MESSAGE = "You are currently offline. Some features may be unavailable."
OFFLINE_CONTENT_MESSAGE = "Offline - Content not available"


class StrategyKind(str, Enum):
    """Caching strategy selected for a request."""
    BYPASS = "bypass"
    NETWORK_FIRST = "network_first"
    CACHE_FIRST = "cache_first"
    NETWORK_FIRST_OFFLINE = "network_first_offline"


class ResponseSource(str, Enum):
    """Where the response handed back to the client came from."""
    NETWORK = "network"
    CACHE = "cache"
    OFFLINE = "offline"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class CacheRequest:
    """An intercepted request, addressed by its absolute upstream URL."""
    url: str
    method: str = "GET"
    mode: str = "cors"
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def cache_key(self) -> str:
        """Request identity used as the store key."""
        return f"{self.method.upper()} {self.url}"

    @property
    def is_navigation(self) -> bool:
        return self.mode == "navigate"

    @property
    def parsed_url(self) -> SplitResult:
        return urlsplit(self.url)


Header = Tuple[str, str]


@dataclass
class CachedResponse:
    """Captured response snapshot: status, headers and body.

    Headers are kept as ordered (name, value) pairs so repeated fields such
    as Set-Cookie survive; a mapping is accepted and converted.
    """
    status: int
    headers: List[Header] = field(default_factory=list)
    body: bytes = b""

    def __post_init__(self):
        if isinstance(self.headers, Mapping):
            self.headers = list(self.headers.items())
        else:
            self.headers = [(name, value) for name, value in self.headers]

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def get_header(self, name: str) -> Optional[str]:
        """First value of a header, case-insensitive."""
        values = self.get_all_headers(name)
        return values[0] if values else None

    def get_all_headers(self, name: str) -> List[str]:
        name = name.lower()
        return [value for key, value in self.headers if key.lower() == name]

    @property
    def content_type(self) -> Optional[str]:
        return self.get_header("content-type")

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)

    def clone(self) -> "CachedResponse":
        return CachedResponse(status=self.status, headers=list(self.headers), body=self.body)

    def to_json(self) -> str:
        """Serialize for durable storage backends."""
        return json.dumps({
            "status": self.status,
            "headers": [[name, value] for name, value in self.headers],
            "body": base64.b64encode(self.body).decode("ascii"),
        })

    @classmethod
    def from_json(cls, payload) -> "CachedResponse":
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        data = json.loads(payload)
        return cls(
            status=int(data["status"]),
            headers=data.get("headers") or [],
            body=base64.b64decode(data.get("body") or ""),
        )


@dataclass
class StrategyResult:
    """Outcome of routing a request through a caching strategy."""
    response: CachedResponse
    strategy: StrategyKind
    source: ResponseSource


@dataclass(frozen=True)
class CacheNames:
    """Versioned store names; bumping the version orphans the old stores."""
    version: str

    @property
    def static(self) -> str:
        return f"{self.version}-static"

    @property
    def dynamic(self) -> str:
        return f"{self.version}-dynamic"

    @property
    def api(self) -> str:
        return f"{self.version}-api"

    def all(self) -> Tuple[str, str, str]:
        return (self.static, self.dynamic, self.api)


def offline_api_response() -> CachedResponse:
    """503 JSON placeholder for API calls that cannot be served."""
    body = json.dumps({"error": OFFLINE_API_MESSAGE}, separators=(",", ":"))
    return CachedResponse(
        status=503,
        headers={"Content-Type": "application/json"},
        body=body.encode("utf-8"),
    )


def offline_content_response() -> CachedResponse:
    """503 plain-text placeholder for pages and other content."""
    return CachedResponse(
        status=503,
        headers={"Content-Type": "text/plain"},
        body=OFFLINE_CONTENT_MESSAGE.encode("utf-8"),
    )
