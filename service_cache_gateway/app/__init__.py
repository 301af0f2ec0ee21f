"""
Offline Cache Gateway service package.

The gateway sits between browser clients and the upstream web app and
applies a per-request caching policy so the app keeps working offline:
- API calls: network-first, falling back to the last cached response
- Static assets: cache-first
- Pages: network-first, falling back to the cache or an offline page

Structure:
- app.main: FastAPI app, control routes and the catch-all proxy.
- app.caching: Request classification, strategies and cache storage.
- app.adapters: HTTP client for the upstream app.
- app.lifecycle: Install/activate, control messages, background sync.
- app.clients: Registry of connected client sessions.
"""
