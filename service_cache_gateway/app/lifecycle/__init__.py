"""Cache version lifecycle (install, activate, control messages, sync)."""

from .worker import CACHE_CLEARED, CLEAR_CACHE, SKIP_WAITING, CacheLifecycle, LifecycleState

__all__ = ["CACHE_CLEARED", "CLEAR_CACHE", "SKIP_WAITING", "CacheLifecycle", "LifecycleState"]
