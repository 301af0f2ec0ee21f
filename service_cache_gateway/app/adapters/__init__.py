"""
Adapters package for the cache gateway.

Contains the HTTP client wrapper for the upstream web app. Transport
failures surface as ``NetworkError``, which the caching strategies treat as
"offline".
"""

from .upstream_client import UpstreamClient

__all__ = ["UpstreamClient"]
