"""
Resource-discovery ("v3") feeds.

Two addressing schemes are supported, picked by the protocol detector from
the resources a source's description document declares:

- PackageBaseAddressFeed: flat per-version addressing. Versions are listed by
  '{base}{id}/index.json' and archives live at
  '{base}{id}/{version}/{id}.{version}.nupkg', everything lower-cased.
- RegistrationFeed: paged registration documents. Each item carries its own
  content URI, which is fetched without the source's credentials because such
  links are usually pre-signed.
"""
from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from feedrestore.domain.errors import InvalidContentError
from feedrestore.domain.models import PackageInfo, PackageSource
from feedrestore.services.feeds.base import RemoteFeed, page_cache_key
from feedrestore.services.http_cache import DiskCacheTransport
from feedrestore.services.package_archive import ARCHIVE_EXTENSION
from feedrestore.services.retry import RetryPolicy

logger = logging.getLogger(__name__)


def load_json_document(data: bytes, uri: str) -> Dict[str, Any]:
    """Parse a JSON object, raising InvalidContentError for anything else."""
    try:
        doc = json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidContentError(uri, f"not a valid JSON document ({e})") from e
    if not isinstance(doc, dict):
        raise InvalidContentError(uri, "expected a JSON object")
    return doc


def read_json_file(path: Path) -> Dict[str, Any]:
    doc = json.loads(path.read_bytes().decode("utf-8-sig"))
    if not isinstance(doc, dict):
        raise ValueError("expected a JSON object")
    return doc


def validate_versions_index(path: Path) -> None:
    """
    A flat index response is valid when it is a JSON object whose optional
    'versions' property is an array.
    """
    doc = read_json_file(path)
    versions = doc.get("versions")
    if versions is not None and not isinstance(versions, list):
        raise ValueError("The value of 'versions' property is not an array.")


def validate_registration_index(path: Path) -> None:
    doc = read_json_file(path)
    items = doc.get("items")
    if items is not None and not isinstance(items, list):
        raise ValueError("The value of 'items' property is not an array.")


def ensure_trailing_slash(uri: str) -> str:
    return uri if uri.endswith("/") else uri + "/"


class PackageBaseAddressFeed(RemoteFeed):
    def __init__(
        self,
        source: PackageSource,
        transport: DiskCacheTransport,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(source, transport, retry_policy=retry_policy)

    def _index_uri(self, package_id: str) -> str:
        return f"{ensure_trailing_slash(self.base_uri)}{package_id.lower()}/index.json"

    def content_uri(self, package_id: str, version: str) -> str:
        lower_id = package_id.lower()
        lower_version = version.lower()
        return (
            f"{ensure_trailing_slash(self.base_uri)}{lower_id}/{lower_version}/"
            f"{lower_id}.{lower_version}{ARCHIVE_EXTENSION}"
        )

    async def _list_versions(self, package_id: str, freshness: timedelta) -> List[PackageInfo]:
        uri = self._index_uri(package_id)
        result = await self.transport.get(
            uri,
            f"list_{package_id.lower()}",
            freshness,
            validate=validate_versions_index,
            not_found_is_empty=True,
        )
        async with result:
            if not result.found:
                return []
            doc = load_json_document(await result.read(), uri)

        versions = doc.get("versions")
        if versions is None:
            # No "versions" property is the same as an empty array
            return []
        if not isinstance(versions, list):
            raise InvalidContentError(uri, "The value of 'versions' property is not an array.")

        packages = []
        for value in versions:
            package = self._build_package(package_id, str(value), self.content_uri(package_id, str(value)))
            if package is not None:
                packages.append(package)
        logger.debug(f"Found {len(packages)} versions of {package_id} at {uri}")
        return packages


class RegistrationFeed(RemoteFeed):
    def __init__(
        self,
        source: PackageSource,
        transport: DiskCacheTransport,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        # Registration-hosted content links must not carry our credentials
        super().__init__(
            source,
            transport,
            content_transport=transport.without_credentials(),
            retry_policy=retry_policy,
        )

    def _index_uri(self, package_id: str) -> str:
        return f"{ensure_trailing_slash(self.base_uri)}{package_id.lower()}/index.json"

    async def _get_document(self, uri: str, cache_key: str, freshness: timedelta) -> Optional[Dict[str, Any]]:
        result = await self.transport.get(
            uri,
            cache_key,
            freshness,
            validate=validate_registration_index,
            not_found_is_empty=True,
        )
        async with result:
            if not result.found:
                return None
            return load_json_document(await result.read(), uri)

    async def _list_versions(self, package_id: str, freshness: timedelta) -> List[PackageInfo]:
        uri = self._index_uri(package_id)
        cache_key = f"list_{package_id.lower()}"
        doc = await self._get_document(uri, cache_key, freshness)
        if doc is None:
            return []

        packages = []
        try:
            for page in doc.get("items") or []:
                items = page.get("items")
                if items is None and page.get("@id"):
                    # Large registrations link their pages instead of inlining them
                    page_doc = await self._get_document(
                        page["@id"], page_cache_key(page["@id"]), freshness
                    )
                    items = (page_doc or {}).get("items")

                for item in items or []:
                    entry = item.get("catalogEntry") or {}
                    version = entry.get("version")
                    content_uri = item.get("packageContent")
                    if version is None or content_uri is None:
                        logger.debug(f"Skipping incomplete registration item in {uri}")
                        continue
                    package = self._build_package(
                        package_id,
                        str(version),
                        content_uri,
                        listed=bool(entry.get("listed", True)),
                    )
                    if package is not None:
                        packages.append(package)
        except (AttributeError, TypeError) as e:
            raise InvalidContentError(uri, f"unexpected registration document structure ({e})") from e

        logger.debug(f"Found {len(packages)} versions of {package_id} at {uri}")
        return packages
