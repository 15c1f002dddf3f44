"""
HTTP GET with a disk-backed, freshness-windowed cache.

Each logical resource is stored under a deterministic file name derived from
its cache key, inside a folder derived from the transport's base URI. A
refresh downloads into a temporary file next to the cache file, validates it
and only then moves it into place with an atomic rename, so readers see
either the previous complete file or the new complete file.

All cache file access happens under the cross-process content lock for that
file, because a refresh in another process deletes and replaces it.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlsplit

import aiofiles
import httpx

from feedrestore.domain.errors import InvalidContentError, NotFoundError, TransportError
from feedrestore.domain.models import CacheEntry, FetchResult
from feedrestore.services.content_lock import ContentLock

logger = logging.getLogger(__name__)

CACHE_FILE_SUFFIX = ".dat"
_MAX_KEY_LENGTH = 120
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")

Validator = Callable[[Path], None]


def cache_folder_name(base_uri: str) -> str:
    """
    Folder for all cache files of one base URI: '<host>_<hash>'.
    """
    host = urlsplit(base_uri).hostname or "local"
    digest = hashlib.sha1(base_uri.encode("utf-8")).hexdigest()[:12]
    return f"{_UNSAFE_CHARS.sub('_', host)}_{digest}"


def cache_file_name(cache_key: str) -> str:
    name = _UNSAFE_CHARS.sub("_", cache_key)
    if len(name) > _MAX_KEY_LENGTH:
        # Keep long keys unique after truncation
        digest = hashlib.sha1(cache_key.encode("utf-8")).hexdigest()[:16]
        name = f"{name[:_MAX_KEY_LENGTH - 17]}_{digest}"
    return name + CACHE_FILE_SUFFIX


class DiskCacheTransport:
    """
    Cached HTTP access to one remote base URI.

    Credentials are attached to every request made by the instance. Use
    without_credentials() for URIs that must be fetched anonymously, such as
    pre-signed content links.
    """

    def __init__(
        self,
        base_uri: str,
        cache_root: Path,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 100.0,
        lock: Optional[ContentLock] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_uri = base_uri
        self.cache_root = Path(cache_root)
        self.username = username
        self.password = password
        self.timeout = timeout
        self.lock = lock or ContentLock()
        self._transport = transport
        self.cache_dir = self.cache_root / cache_folder_name(base_uri)

    @property
    def authenticated(self) -> bool:
        return bool(self.username)

    def without_credentials(self) -> "DiskCacheTransport":
        return DiskCacheTransport(
            self.base_uri,
            self.cache_root,
            timeout=self.timeout,
            lock=self.lock,
            transport=self._transport,
        )

    def cache_file_for(self, cache_key: str) -> Path:
        return self.cache_dir / cache_file_name(cache_key)

    def _client(self) -> httpx.AsyncClient:
        kwargs = {"follow_redirects": True, "timeout": self.timeout}
        if self.username:
            kwargs["auth"] = httpx.BasicAuth(self.username, self.password or "")
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def get(
        self,
        uri: str,
        cache_key: str,
        freshness: timedelta,
        validate: Optional[Validator] = None,
        not_found_is_empty: bool = False,
    ) -> FetchResult:
        """
        Fetch ``uri``, serving it from the cache file for ``cache_key`` when
        that file is younger than ``freshness``.

        Args:
            uri: Absolute URI to request
            cache_key: Logical key naming the cache file
            freshness: Maximum age of a usable cache file; zero always refetches
            validate: Called with the downloaded temporary file; raising rejects it
            not_found_is_empty: Return an empty FetchResult on 404 instead of raising

        Returns:
            FetchResult with an open stream on the cache file
        """
        entry = CacheEntry(path=self.cache_file_for(cache_key), cache_key=cache_key, freshness=freshness)
        entry.path.parent.mkdir(parents=True, exist_ok=True)

        async with self.lock.hold(entry.path):
            if entry.is_fresh():
                logger.debug(f"Cache hit for {uri}: {entry.path}")
                return FetchResult(stream=await aiofiles.open(entry.path, "rb"), cache_file=entry.path)

            found = await self._download(uri, entry, validate)
            if not found:
                if not_found_is_empty:
                    logger.debug(f"Not found, treating as empty: {uri}")
                    return FetchResult()
                raise NotFoundError(uri)

            return FetchResult(stream=await aiofiles.open(entry.path, "rb"), cache_file=entry.path)

    async def _download(self, uri: str, entry: CacheEntry, validate: Optional[Validator]) -> bool:
        """Download into a temp file, validate it and move it over the cache file."""
        tmp_path = entry.path.with_name(f"{entry.path.name}.{uuid.uuid4().hex}.tmp")
        logger.info(f"GET {uri}")

        try:
            try:
                async with self._client() as client:
                    async with client.stream("GET", uri) as response:
                        if response.status_code == 404:
                            return False
                        response.raise_for_status()

                        async with aiofiles.open(tmp_path, "wb") as f:
                            async for chunk in response.aiter_bytes():
                                await f.write(chunk)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                raise TransportError(uri, f"HTTP {status} {e.response.reason_phrase}", status_code=status) from e
            except httpx.HTTPError as e:
                raise TransportError(uri, str(e) or type(e).__name__) from e

            if validate is not None:
                try:
                    await asyncio.to_thread(validate, tmp_path)
                except Exception as e:
                    logger.warning(f"Rejected response from {uri}: {e}")
                    raise InvalidContentError(uri, str(e)) from e

            # Atomic: readers see the old file or the new one, never a torn write
            os.replace(tmp_path, entry.path)
            logger.debug(f"Cached {uri} as {entry.path}")
            return True
        finally:
            if tmp_path.exists():
                tmp_path.unlink(missing_ok=True)
