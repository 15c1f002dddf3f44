"""
Feed interface and the machinery shared by the remote feed variants.
"""
from __future__ import annotations

import asyncio
import hashlib
import io
import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional, Tuple

import aiofiles

from feedrestore.domain.errors import FeedError, SourceUnavailableError, TransportError
from feedrestore.domain.models import PackageInfo, PackageSource
from feedrestore.domain.versioning import SemanticVersion
from feedrestore.services.http_cache import DiskCacheTransport
from feedrestore.services.package_archive import RUNTIME_ENTRY, read_entry, read_manifest, validate_archive
from feedrestore.services.retry import Attempt, RetryPolicy
from feedrestore.services.single_flight import SingleFlight

logger = logging.getLogger(__name__)

LIST_FRESHNESS = timedelta(minutes=30)
CONTENT_FRESHNESS = timedelta(hours=24)

# Final failures of these kinds may be tolerated by an ignoring feed.
IGNORABLE_ERRORS = (TransportError, SourceUnavailableError)


def page_cache_key(page_uri: str) -> str:
    """
    Cache key for a linked listing page.

    Package listings use "list_<id>"; pages live under "page_<hash>" so no
    package id can name the same cache file.
    """
    return f"page_{hashlib.sha1(page_uri.encode('utf-8')).hexdigest()[:16]}"


class PackageFeed(ABC):
    """
    Abstract base class for a source of package metadata and content.
    """

    @property
    @abstractmethod
    def source(self) -> PackageSource:
        """The package source this feed was built for."""
        pass

    @abstractmethod
    async def find_packages_by_id(self, package_id: str) -> List[PackageInfo]:
        """List every version of ``package_id`` the feed provides."""
        pass

    @abstractmethod
    async def open_content(self, package: PackageInfo) -> Any:
        """Open the archive of ``package`` as an aiofiles binary stream."""
        pass

    @abstractmethod
    async def open_manifest(self, package: PackageInfo) -> io.BytesIO:
        """Open the manifest of ``package``."""
        pass

    @abstractmethod
    async def open_runtime(self, package: PackageInfo) -> Optional[io.BytesIO]:
        """Open the runtime.json of ``package``, or None if it has none."""
        pass

    @property
    def kind(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"{self.kind}({self.source.source!r})"


class RemoteFeed(PackageFeed):
    """
    Base class for feeds backed by a DiskCacheTransport.

    Owns two single-flight maps, one for version listings keyed by package id
    and one for archive downloads keyed by content URI, and the durable
    "ignored" flag set when a tolerated source keeps failing.
    """

    def __init__(
        self,
        source: PackageSource,
        transport: DiskCacheTransport,
        content_transport: Optional[DiskCacheTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._source = source
        self.transport = transport
        self.content_transport = content_transport or transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.ignore_failures = source.ignore_failures
        if source.no_cache:
            self.list_freshness = timedelta(0)
            self.content_freshness = timedelta(0)
        else:
            self.list_freshness = LIST_FRESHNESS
            self.content_freshness = CONTENT_FRESHNESS
        self._listings: SingleFlight[Tuple[PackageInfo, ...]] = SingleFlight(f"{source} listings")
        self._downloads: SingleFlight[Path] = SingleFlight(f"{source} downloads")
        self._ignored = False

    @property
    def source(self) -> PackageSource:
        return self._source

    @property
    def base_uri(self) -> str:
        return self.transport.base_uri

    @property
    def ignored(self) -> bool:
        return self._ignored

    @abstractmethod
    async def _list_versions(self, package_id: str, freshness: timedelta) -> List[PackageInfo]:
        """Fetch and parse the version listing for one attempt."""
        pass

    def _build_package(
        self,
        package_id: str,
        version_text: str,
        content_uri: str,
        listed: bool = True,
    ) -> Optional[PackageInfo]:
        version = SemanticVersion.try_parse(version_text)
        if version is None:
            logger.warning(f"Skipping invalid version '{version_text}' of {package_id} from {self.source}")
            return None
        return PackageInfo(
            id=package_id,
            version=version,
            content_uri=content_uri,
            listed=listed,
            source_key=self.source.key,
        )

    def _log_success(self, operation: str, attempt: Attempt) -> None:
        state = self.retry_policy.on_success(attempt)
        if state.attempts > 1:
            logger.info(f"{operation} succeeded after {state.attempts} attempts")

    # ========================================================================
    # Version listing
    # ========================================================================

    async def find_packages_by_id(self, package_id: str) -> List[PackageInfo]:
        result = await self._listings.once(
            package_id.lower(),
            lambda: self._find_packages_by_id(package_id),
        )
        return list(result)

    async def _find_packages_by_id(self, package_id: str) -> Tuple[PackageInfo, ...]:
        for attempt in self.retry_policy.attempts():
            if self._ignored:
                return ()
            try:
                packages = await self._list_versions(package_id, attempt.freshness(self.list_freshness))
                self._log_success(f"FindPackagesById: {package_id} from {self.source}", attempt)
                return tuple(packages)
            except FeedError as e:
                state = self.retry_policy.on_failure(attempt, e)
                if isinstance(state, Attempt):
                    logger.warning(
                        f"FindPackagesById: {package_id} from {self.source} failed "
                        f"(attempt {attempt.number + 1}/{self.retry_policy.max_attempts}): {e}"
                    )
                    continue

                if self.ignore_failures and isinstance(e, IGNORABLE_ERRORS):
                    self._ignored = True
                    logger.warning(
                        f"FindPackagesById: {package_id} from {self.source} failed, "
                        f"ignoring this source from now on: {e}"
                    )
                    return ()

                logger.error(f"FindPackagesById: {package_id} from {self.source} failed: {e}")
                raise
        return ()

    # ========================================================================
    # Content
    # ========================================================================

    def _content_cache_key(self, package: PackageInfo) -> str:
        return f"nupkg_{package.id.lower()}.{str(package.version).lower()}"

    async def download(self, package: PackageInfo) -> Path:
        """
        Make sure the archive of ``package`` is in the disk cache and return
        its cache file. At most one download per content URI is in flight.
        """
        return await self._downloads.once(package.content_uri, lambda: self._download(package))

    async def _download(self, package: PackageInfo) -> Path:
        cache_key = self._content_cache_key(package)
        for attempt in self.retry_policy.attempts():
            try:
                result = await self.content_transport.get(
                    package.content_uri,
                    cache_key,
                    attempt.freshness(self.content_freshness),
                    validate=validate_archive,
                )
                await result.aclose()
                self._log_success(f"Download of {package}", attempt)
                return result.cache_file
            except FeedError as e:
                state = self.retry_policy.on_failure(attempt, e)
                if isinstance(state, Attempt):
                    logger.warning(
                        f"Download of {package} from {package.content_uri} failed "
                        f"(attempt {attempt.number + 1}/{self.retry_policy.max_attempts}): {e}"
                    )
                    continue
                logger.error(f"Download of {package} from {package.content_uri} failed: {e}")
                raise
        raise RuntimeError("retry policy produced no attempts")

    async def open_content(self, package: PackageInfo) -> Any:
        path = await self.download(package)

        async def _open():
            return await aiofiles.open(path, "rb")

        # Another process refreshing the cache may delete and replace the
        # file, so only open it while holding its lock.
        return await self.content_transport.lock.with_lock(path, _open)

    async def open_manifest(self, package: PackageInfo) -> io.BytesIO:
        path = await self.download(package)
        data = await self.content_transport.lock.with_lock(
            path, lambda: asyncio.to_thread(read_manifest, path, package.id)
        )
        return io.BytesIO(data)

    async def open_runtime(self, package: PackageInfo) -> Optional[io.BytesIO]:
        path = await self.download(package)
        data = await self.content_transport.lock.with_lock(
            path, lambda: asyncio.to_thread(read_entry, path, RUNTIME_ENTRY)
        )
        return io.BytesIO(data) if data is not None else None
