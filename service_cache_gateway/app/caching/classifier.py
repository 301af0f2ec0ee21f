"""
Request classification: an ordered list of predicates, first match wins.
"""

import re
from dataclasses import dataclass
from typing import Callable, List, Tuple
from urllib.parse import SplitResult

from .models import CacheRequest, StrategyKind


STATIC_ASSET_PATTERN = re.compile(r"\.(js|css|png|jpg|jpeg|svg|gif|webp|woff2?|ttf|eot)$")

FALLBACK_RULE = "page"


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    predicate: Callable[[CacheRequest, SplitResult], bool]
    strategy: StrategyKind


class RequestClassifier:
    """Maps an intercepted request to the caching strategy that serves it.

    Rules are evaluated in order:
    1. non-GET methods bypass caching
    2. non-HTTP(S) schemes bypass caching
    3. API paths use network-first
    4. static assets (by extension, icons directory or manifest) use cache-first
    5. everything else uses network-first with offline fallback
    """

    def __init__(
        self,
        api_prefix: str = "/api/",
        icons_prefix: str = "/icons/",
        manifest_path: str = "/manifest.json",
    ):
        self.api_prefix = api_prefix
        self.icons_prefix = icons_prefix
        self.manifest_path = manifest_path
        self.rules: List[ClassificationRule] = [
            ClassificationRule("non_get", lambda req, url: req.method.upper() != "GET", StrategyKind.BYPASS),
            ClassificationRule("non_http", lambda req, url: url.scheme not in ("http", "https"), StrategyKind.BYPASS),
            ClassificationRule("api", lambda req, url: url.path.startswith(self.api_prefix), StrategyKind.NETWORK_FIRST),
            ClassificationRule("static_asset", self._is_static_asset, StrategyKind.CACHE_FIRST),
        ]

    def _is_static_asset(self, request: CacheRequest, url: SplitResult) -> bool:
        path = url.path
        return (
            STATIC_ASSET_PATTERN.search(path) is not None
            or path.startswith(self.icons_prefix)
            or path == self.manifest_path
        )

    def match(self, request: CacheRequest) -> Tuple[str, StrategyKind]:
        """Return the name of the matching rule and its strategy."""
        url = request.parsed_url
        for rule in self.rules:
            if rule.predicate(request, url):
                return rule.name, rule.strategy
        return FALLBACK_RULE, StrategyKind.NETWORK_FIRST_OFFLINE

    def classify(self, request: CacheRequest) -> StrategyKind:
        return self.match(request)[1]
