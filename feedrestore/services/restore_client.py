"""
Feed-facing API used by the dependency resolver.

The resolver addresses sources by the names given in the settings file (or
by their URI/path), asks for the versions of a package and then opens the
manifest or archive of the version it picked. PackageInfo objects remember
the source they came from, so the open_* calls need no source argument.
"""
from __future__ import annotations

import asyncio
import io
import logging
from typing import Any, Dict, List, Optional

from feedrestore.domain.errors import ConfigurationError
from feedrestore.domain.models import (
    PackageInfo,
    PackageSource,
    RestoreSettings,
    SourceSettings,
    normalize_source_key,
)
from feedrestore.services.feeds.base import PackageFeed
from feedrestore.services.feed_registry import FeedRegistry

logger = logging.getLogger(__name__)


class RestoreClient:
    def __init__(self, settings: RestoreSettings, registry: FeedRegistry):
        self.settings = settings
        self.registry = registry

    # ========================================================================
    # Source lookup
    # ========================================================================

    def _find_source_settings(self, source_id: str) -> Optional[SourceSettings]:
        for entry in self.settings.sources:
            if entry.name == source_id:
                return entry
        key = normalize_source_key(source_id)
        for entry in self.settings.sources:
            if normalize_source_key(entry.source) == key:
                return entry
        return None

    def get_source(self, source_id: str) -> PackageSource:
        entry = self._find_source_settings(source_id)
        if entry is None:
            known = ", ".join(s.name for s in self.settings.sources) or "none"
            raise ConfigurationError(f"Unknown package source '{source_id}' (configured: {known})")
        return entry.to_package_source(
            no_cache=self.settings.no_cache,
            ignore_failures=self.settings.ignore_failed_sources,
        )

    async def get_feed(self, source_id: str) -> PackageFeed:
        return await self.registry.get_feed(self.get_source(source_id))

    def _feed_for_package(self, package: PackageInfo) -> PackageFeed:
        feed = self.registry.feed_for_key(package.source_key) if package.source_key else None
        if feed is None:
            raise ConfigurationError(f"No feed is known for {package} (source key {package.source_key!r})")
        return feed

    # ========================================================================
    # Resolver operations
    # ========================================================================

    async def list_versions(self, source_id: str, package_id: str) -> List[PackageInfo]:
        logger.debug(f"Listing versions of {package_id} on {source_id}")
        feed = await self.get_feed(source_id)
        return await feed.find_packages_by_id(package_id)

    async def list_versions_all(self, package_id: str) -> Dict[str, List[PackageInfo]]:
        """
        List ``package_id`` on every enabled source concurrently.

        Returns a mapping of source name to versions. A failing source makes
        the whole call fail unless failures are ignored in the settings.
        """
        sources = self.settings.enabled_sources()
        results = await asyncio.gather(
            *(self.list_versions(s.name, package_id) for s in sources)
        )
        return {s.name: packages for s, packages in zip(sources, results)}

    async def open_manifest(self, package: PackageInfo) -> io.BytesIO:
        return await self._feed_for_package(package).open_manifest(package)

    async def open_content(self, package: PackageInfo) -> Any:
        return await self._feed_for_package(package).open_content(package)

    async def open_runtime(self, package: PackageInfo) -> Optional[io.BytesIO]:
        return await self._feed_for_package(package).open_runtime(package)

    async def read_content(self, package: PackageInfo) -> bytes:
        stream = await self.open_content(package)
        try:
            return await stream.read()
        finally:
            await stream.close()

