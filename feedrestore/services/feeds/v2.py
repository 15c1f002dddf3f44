"""
Legacy index ("v2") feed.

Versions are listed through the OData endpoint
``{base}FindPackagesById()?id='{id}'``, which answers with an Atom feed of
one ``<entry>`` per version. Long listings are paged through
``<link rel="next">``.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import quote, urljoin

import lxml.etree

from feedrestore.domain.errors import InvalidContentError
from feedrestore.domain.models import PackageInfo, PackageSource
from feedrestore.services.feeds.base import RemoteFeed, page_cache_key
from feedrestore.services.feeds.v3 import ensure_trailing_slash
from feedrestore.services.http_cache import DiskCacheTransport
from feedrestore.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

ATOM_NS = "http://www.w3.org/2005/Atom"
DATA_NS = "http://schemas.microsoft.com/ado/2007/08/dataservices"
METADATA_NS = "http://schemas.microsoft.com/ado/2007/08/dataservices/metadata"

# Unlisted packages carry this publish date on legacy feeds
_UNLISTED_YEAR = "1900"
_MAX_PAGES = 1000


def _parser() -> lxml.etree.XMLParser:
    return lxml.etree.XMLParser(resolve_entities=False, no_network=True)


def validate_feed_document(path: Path) -> None:
    root = lxml.etree.fromstring(path.read_bytes(), parser=_parser())
    if root.tag != f"{{{ATOM_NS}}}feed":
        raise ValueError(f"expected an Atom feed, got <{root.tag}>")


def _parse_bool(text: Optional[str]) -> Optional[bool]:
    if text is None:
        return None
    return text.strip().lower() == "true"


class LegacyIndexFeed(RemoteFeed):
    def __init__(
        self,
        source: PackageSource,
        transport: DiskCacheTransport,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(source, transport, retry_policy=retry_policy)

    def _find_uri(self, package_id: str) -> str:
        return f"{ensure_trailing_slash(self.base_uri)}FindPackagesById()?id='{quote(package_id)}'"

    async def _list_versions(self, package_id: str, freshness: timedelta) -> List[PackageInfo]:
        packages: List[PackageInfo] = []
        cache_key = f"list_{package_id.lower()}"
        uri: Optional[str] = self._find_uri(package_id)
        seen = set()
        page_number = 0

        while uri and uri not in seen and page_number < _MAX_PAGES:
            seen.add(uri)
            page_key = cache_key if page_number == 0 else page_cache_key(uri)
            result = await self.transport.get(
                uri,
                page_key,
                freshness,
                validate=validate_feed_document,
                not_found_is_empty=True,
            )
            async with result:
                if not result.found:
                    break
                data = await result.read()

            page_packages, next_uri = self._parse_page(package_id, data, uri)
            packages.extend(page_packages)
            uri = next_uri
            page_number += 1

        logger.debug(f"Found {len(packages)} versions of {package_id} from {self.source}")
        return packages

    def _parse_page(self, package_id: str, data: bytes, uri: str) -> Tuple[List[PackageInfo], Optional[str]]:
        try:
            root = lxml.etree.fromstring(data, parser=_parser())
        except lxml.etree.XMLSyntaxError as e:
            raise InvalidContentError(uri, f"not a valid XML document ({e})") from e

        packages = []
        for entry in root.iterfind(f"{{{ATOM_NS}}}entry"):
            props = entry.find(f"{{{METADATA_NS}}}properties")
            if props is None:
                continue
            version = props.findtext(f"{{{DATA_NS}}}Version")
            content = entry.find(f"{{{ATOM_NS}}}content")
            content_src = content.get("src") if content is not None else None
            if not version or not content_src:
                logger.debug(f"Skipping incomplete entry in {uri}")
                continue

            listed = _parse_bool(props.findtext(f"{{{DATA_NS}}}Listed"))
            if listed is None:
                published = props.findtext(f"{{{DATA_NS}}}Published") or ""
                listed = not published.startswith(_UNLISTED_YEAR)

            package = self._build_package(
                package_id,
                version.strip(),
                urljoin(uri, content_src),
                listed=listed,
            )
            if package is not None:
                packages.append(package)

        next_link = root.find(f"{{{ATOM_NS}}}link[@rel='next']")
        next_uri = None
        if next_link is not None and next_link.get("href"):
            next_uri = urljoin(uri, next_link.get("href"))
        return packages, next_uri
