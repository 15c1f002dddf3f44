"""
Protocol detection for package sources.

A source is handed to an ordered list of detectors. Each one either builds
the feed for the source (Detected) or declines (NOT_APPLICABLE); the first
Detected result wins. The default order is:

1. LocalDirectoryDetector - filesystem paths and file: URIs
2. ResourceDiscoveryDetector - remote sources publishing a v3 description document
3. LegacyIndexDetector - every remaining remote source (v2 fallback)
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin

import httpx

from feedrestore.domain.errors import FeedError, SourceUnavailableError
from feedrestore.domain.models import PackageSource
from feedrestore.services.content_lock import ContentLock
from feedrestore.services.feeds.base import PackageFeed
from feedrestore.services.feeds.local import LocalDirectoryFeed
from feedrestore.services.feeds.v2 import LegacyIndexFeed
from feedrestore.services.feeds.v3 import (
    PackageBaseAddressFeed,
    RegistrationFeed,
    ensure_trailing_slash,
    load_json_document,
    read_json_file,
)
from feedrestore.services.http_cache import DiskCacheTransport

logger = logging.getLogger(__name__)

PACKAGE_BASE_ADDRESS = "PackageBaseAddress/3.0.0"
REGISTRATIONS_BASE_URL = "RegistrationsBaseUrl/3.0.0-beta"
DESCRIPTION_FRESHNESS = timedelta(days=7)
DESCRIPTION_CACHE_KEY = "index_json"


@dataclass(frozen=True)
class Detected:
    feed: PackageFeed


class _NotApplicable:
    def __repr__(self) -> str:
        return "NOT_APPLICABLE"


NOT_APPLICABLE = _NotApplicable()

DetectionResult = Union[Detected, _NotApplicable]


@dataclass
class DetectionContext:
    """
    Everything a detector needs to build transports for a source.
    """

    cache_dir: Path
    timeout: float = 100.0
    lock: ContentLock = field(default_factory=ContentLock)
    http_transport: Optional[httpx.AsyncBaseTransport] = None

    def create_transport(self, base_uri: str, source: PackageSource) -> DiskCacheTransport:
        return DiskCacheTransport(
            base_uri,
            self.cache_dir,
            username=source.username,
            password=source.password,
            timeout=self.timeout,
            lock=self.lock,
            transport=self.http_transport,
        )


class FeedDetector(ABC):
    """
    Abstract base class for one step of protocol detection.
    """

    @abstractmethod
    async def detect(self, source: PackageSource, context: DetectionContext) -> DetectionResult:
        """Build the feed for ``source`` or return NOT_APPLICABLE."""
        pass


class LocalDirectoryDetector(FeedDetector):
    async def detect(self, source: PackageSource, context: DetectionContext) -> DetectionResult:
        if not source.is_local:
            return NOT_APPLICABLE
        return Detected(LocalDirectoryFeed(source))


def validate_description_document(path: Path) -> None:
    doc = read_json_file(path)
    if not isinstance(doc.get("resources"), list):
        raise ValueError("The value of 'resources' property is not an array.")


def _declared_resources(doc: Dict[str, Any]) -> List[Dict[str, str]]:
    resources = []
    for resource in doc.get("resources") or []:
        if not isinstance(resource, dict) or resource.get("@id") is None:
            continue
        resources.append({"type": resource.get("@type"), "id": str(resource["@id"])})
    return resources


def _find_resource(resources: List[Dict[str, str]], resource_type: str) -> Optional[Dict[str, str]]:
    return next((r for r in resources if r["type"] == resource_type), None)


class ResourceDiscoveryDetector(FeedDetector):
    """
    Reads the source's description document and builds a v3 feed from the
    first usable resource. Flat per-version addressing is preferred over
    registration documents.
    """

    async def detect(self, source: PackageSource, context: DetectionContext) -> DetectionResult:
        if source.is_local or source.protocol_version == "2":
            return NOT_APPLICABLE

        try:
            result = await self._detect(source, context)
        except FeedError as e:
            logger.info(f"Resource discovery failed for {source}: {e}")
            result = NOT_APPLICABLE

        if result is NOT_APPLICABLE and source.protocol_version == "3":
            raise SourceUnavailableError(source.source, "no usable v3 resource found")
        return result

    async def _detect(self, source: PackageSource, context: DetectionContext) -> DetectionResult:
        transport = context.create_transport(source.source, source)
        freshness = timedelta(0) if source.no_cache else DESCRIPTION_FRESHNESS
        result = await transport.get(
            source.source,
            DESCRIPTION_CACHE_KEY,
            freshness,
            validate=validate_description_document,
        )
        async with result:
            doc = load_json_document(await result.read(), source.source)

        resources = _declared_resources(doc)

        base_address = _find_resource(resources, PACKAGE_BASE_ADDRESS)
        if base_address is not None:
            # Relative resource ids are resolved against the source URI
            uri = ensure_trailing_slash(urljoin(source.source, base_address["id"]))
            logger.info(f"Using flat package addressing for {source}: {uri}")
            return Detected(PackageBaseAddressFeed(source, context.create_transport(uri, source)))

        registrations = _find_resource(resources, REGISTRATIONS_BASE_URL)
        if registrations is not None:
            uri = ensure_trailing_slash(urljoin(source.source, registrations["id"]))
            logger.info(f"Using registration documents for {source}: {uri}")
            return Detected(RegistrationFeed(source, context.create_transport(uri, source)))

        logger.info(f"Ignoring v3 description of {source}, which doesn't provide a usable resource")
        return NOT_APPLICABLE


class LegacyIndexDetector(FeedDetector):
    async def detect(self, source: PackageSource, context: DetectionContext) -> DetectionResult:
        if source.is_local:
            return NOT_APPLICABLE
        logger.info(f"Using legacy index protocol for {source}")
        return Detected(LegacyIndexFeed(source, context.create_transport(source.source, source)))


def default_detectors() -> List[FeedDetector]:
    return [LocalDirectoryDetector(), ResourceDiscoveryDetector(), LegacyIndexDetector()]
