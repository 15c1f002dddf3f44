"""
Process-wide registry of constructed feeds.

Protocol detection and credential setup happen at most once per source per
registry: the first caller for a source key builds the feed, concurrent
callers for the same key await that single construction, and every later
call gets the stored instance. The first caller's no_cache/ignore_failures
flags win for the lifetime of the registry.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import httpx

from feedrestore.domain.errors import SourceUnavailableError
from feedrestore.domain.models import PackageSource
from feedrestore.services.content_lock import ContentLock
from feedrestore.services.detection import Detected, DetectionContext, FeedDetector, default_detectors
from feedrestore.services.feeds.base import PackageFeed
from feedrestore.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)


class FeedRegistry:
    def __init__(
        self,
        cache_dir: Path,
        detectors: Optional[Sequence[FeedDetector]] = None,
        timeout: float = 100.0,
        lock: Optional[ContentLock] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.context = DetectionContext(
            cache_dir=Path(cache_dir),
            timeout=timeout,
            lock=lock or ContentLock(),
            http_transport=http_transport,
        )
        self.detectors: List[FeedDetector] = list(detectors) if detectors is not None else default_detectors()
        self._constructions: SingleFlight[PackageFeed] = SingleFlight("feed registry", forget_failures=True)
        self._feeds: Dict[str, PackageFeed] = {}

    async def get_feed(
        self,
        source: PackageSource,
        no_cache: Optional[bool] = None,
        ignore_failures: Optional[bool] = None,
    ) -> PackageFeed:
        """
        Return the feed for ``source``, building it on first use.

        Args:
            source: Package source; its key decides which feed is returned
            no_cache: Overrides source.no_cache when the feed is first built
            ignore_failures: Overrides source.ignore_failures when the feed is first built

        Returns:
            The feed instance shared by every caller using the same source key
        """
        feed = self._feeds.get(source.key)
        if feed is not None:
            return feed

        updates = {}
        if no_cache is not None:
            updates["no_cache"] = no_cache
        if ignore_failures is not None:
            updates["ignore_failures"] = ignore_failures
        configured = source.model_copy(update=updates) if updates else source

        return await self._constructions.once(source.key, lambda: self._create_feed(configured))

    async def _create_feed(self, source: PackageSource) -> PackageFeed:
        for detector in self.detectors:
            result = await detector.detect(source, self.context)
            if isinstance(result, Detected):
                logger.info(f"Feed for {source}: {result.feed.kind}")
                self._feeds[source.key] = result.feed
                return result.feed
        raise SourceUnavailableError(source.source, "no detector recognized this source")

    def feed_for_key(self, source_key: str) -> Optional[PackageFeed]:
        return self._feeds.get(source_key)

    def feeds(self) -> List[PackageFeed]:
        return list(self._feeds.values())
