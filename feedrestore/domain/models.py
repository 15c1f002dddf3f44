"""
Pydantic models for feed resolution and caching.

This module defines the data models shared by the transport, the feeds and
the feed registry:
- Package source identity and its normalized lookup key
- Package version descriptors returned by feeds
- Disk cache entries and transport fetch results
- Restore settings loaded from the configuration file

All models use Pydantic for validation and serialization.
"""

from __future__ import annotations

import os
import time
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Literal, Optional
from urllib.parse import urlsplit, urlunsplit
from urllib.request import url2pathname

from pydantic import BaseModel, ConfigDict, Field

from feedrestore.domain.versioning import SemanticVersion

_DEFAULT_PORTS = {"http": 80, "https": 443}

ProtocolVersion = Literal["auto", "2", "3"]


# ---------------------------------------------------------------------------
# Source identity
# ---------------------------------------------------------------------------


def is_local_source(source: str) -> bool:
    """
    Return True when a source string names a filesystem location.

    Plain paths, file: URIs and Windows drive paths (whose "scheme" is a
    single letter) are local; everything else is a remote index.
    """
    scheme = urlsplit(source.strip()).scheme.lower()
    return scheme in ("", "file") or len(scheme) == 1


def local_source_path(source: str) -> Path:
    text = source.strip()
    parts = urlsplit(text)
    if parts.scheme.lower() == "file":
        text = url2pathname(parts.path)
    return Path(os.path.expanduser(text))


def normalize_source_key(source: str) -> str:
    """
    Build the lookup key for a source.

    Remote sources: scheme and host are case-folded, default ports dropped,
    the path keeps its case and loses trailing slashes.
    Local sources: absolute, normalized, platform case-folded path.
    """
    if is_local_source(source):
        path = os.path.abspath(local_source_path(source))
        return os.path.normcase(os.path.normpath(path))

    parts = urlsplit(source.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    port = parts.port
    if port and port != _DEFAULT_PORTS.get(scheme):
        netloc = f"{host}:{port}"
    return urlunsplit((scheme, netloc, parts.path.rstrip("/"), parts.query, ""))


class PackageSource(BaseModel):
    """
    Identity of a package feed plus the credentials and flags it is used with.

    Two sources are equal when their normalized keys are equal, whatever their
    flags or credentials; the feed registry relies on this.
    """

    model_config = ConfigDict(frozen=True)

    source: str = Field(description="Index URI or local directory path.")
    name: Optional[str] = Field(
        default=None,
        description="Display name from the settings file.",
    )
    username: Optional[str] = Field(default=None, description="Basic auth user name.")
    password: Optional[str] = Field(default=None, description="Basic auth password.")
    no_cache: bool = Field(
        default=False,
        description="Bypass the disk cache for every request to this source.",
    )
    ignore_failures: bool = Field(
        default=False,
        description="Turn final listing failures into empty results.",
    )
    protocol_version: ProtocolVersion = Field(
        default="auto",
        description="'auto' detects the remote protocol, '2' or '3' pins it.",
    )

    @property
    def key(self) -> str:
        return normalize_source_key(self.source)

    @property
    def is_local(self) -> bool:
        return is_local_source(self.source)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageSource):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.name or self.source


# ---------------------------------------------------------------------------
# Package descriptors
# ---------------------------------------------------------------------------


class PackageInfo(BaseModel):
    """
    A concrete package version available from a feed.

    Ids compare case-insensitively; equality and hashing only consider the
    id and the version.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(description="Package identifier as requested by the caller.")
    version: SemanticVersion = Field(description="Parsed package version.")
    content_uri: str = Field(description="Fully resolved address of the archive.")
    listed: bool = Field(
        default=True,
        description="False for unlisted or deprecated versions.",
    )
    source_key: Optional[str] = Field(
        default=None,
        description="Normalized key of the source that produced this entry.",
    )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PackageInfo):
            return NotImplemented
        return self.id.lower() == other.id.lower() and self.version == other.version

    def __hash__(self) -> int:
        return hash((self.id.lower(), self.version))

    def __str__(self) -> str:
        return f"{self.id} {self.version}"


# ---------------------------------------------------------------------------
# Disk cache
# ---------------------------------------------------------------------------


class CacheEntry(BaseModel):
    """
    An on-disk cache artifact. Entries are replaced on refresh, never
    rewritten in place.
    """

    path: Path = Field(description="Location of the cached file.")
    cache_key: str = Field(description="Logical key the file was stored under.")
    freshness: timedelta = Field(description="Freshness window used for the lookup.")

    def exists(self) -> bool:
        return self.path.is_file()

    def age(self) -> Optional[timedelta]:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            return None
        return timedelta(seconds=max(0.0, time.time() - mtime))

    def is_fresh(self) -> bool:
        if self.freshness <= timedelta(0):
            return False
        age = self.age()
        return age is not None and age < self.freshness


class FetchResult(BaseModel):
    """
    Successful transport response.

    ``stream`` is an open aiofiles binary handle owned by the caller, or None
    when a not-found response was tolerated. ``cache_file`` is the backing
    file, owned by the transport.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    stream: Optional[Any] = Field(default=None, description="Open binary stream.")
    cache_file: Optional[Path] = Field(default=None, description="Backing cache file.")

    @property
    def found(self) -> bool:
        return self.stream is not None

    async def read(self) -> bytes:
        if self.stream is None:
            return b""
        return await self.stream.read()

    async def aclose(self) -> None:
        if self.stream is not None:
            await self.stream.close()
            self.stream = None

    async def __aenter__(self) -> "FetchResult":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class SourceSettings(BaseModel):
    """
    One entry of the ``sources`` list in the settings file.
    """

    name: str = Field(description="Name callers use to address the source.")
    source: str = Field(description="Index URI or local directory path.")
    username: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    enabled: bool = Field(default=True)
    protocol_version: ProtocolVersion = Field(default="auto")

    def to_package_source(self, no_cache: bool = False, ignore_failures: bool = False) -> PackageSource:
        return PackageSource(
            source=self.source,
            name=self.name,
            username=self.username,
            password=self.password,
            no_cache=no_cache,
            ignore_failures=ignore_failures,
            protocol_version=self.protocol_version,
        )


class RestoreSettings(BaseModel):
    """
    Process-wide restore configuration.

    A missing ``cache_dir`` means "use the default cache root"; see
    feedrestore.data.settings.get_cache_dir().
    """

    cache_dir: Optional[Path] = Field(
        default=None,
        description="Root directory of the shared disk cache.",
    )
    no_cache: bool = Field(
        default=False,
        description="Ignore cached responses and always hit the network.",
    )
    ignore_failed_sources: bool = Field(
        default=False,
        description="Treat sources that keep failing as empty instead of erroring.",
    )
    request_timeout: float = Field(
        default=100.0,
        gt=0,
        description="HTTP timeout in seconds for a single request.",
    )
    lock_timeout: float = Field(
        default=-1,
        description="Seconds to wait for a cache file lock; -1 waits forever.",
    )
    sources: List[SourceSettings] = Field(default_factory=list)

    def enabled_sources(self) -> List[SourceSettings]:
        return [s for s in self.sources if s.enabled]
