"""
Feed over a local directory of package archives.

Two layouts are recognized, and may be mixed:

- flat: '<root>/<id>.<version>.nupkg'
- hierarchical: '<root>/<id>/<version>/<id>.<version>.nupkg', optionally with
  '<id>.nuspec' next to the archive
"""
from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path
from typing import Any, List, Optional

import aiofiles

from feedrestore.domain.errors import NotFoundError, SourceUnavailableError
from feedrestore.domain.models import PackageInfo, PackageSource, local_source_path
from feedrestore.domain.versioning import SemanticVersion
from feedrestore.services.feeds.base import PackageFeed
from feedrestore.services.package_archive import (
    ARCHIVE_EXTENSION,
    MANIFEST_EXTENSION,
    RUNTIME_ENTRY,
    read_entry,
    read_manifest,
)

logger = logging.getLogger(__name__)


class LocalDirectoryFeed(PackageFeed):
    def __init__(self, source: PackageSource):
        self._source = source
        self.root = local_source_path(source.source)
        self.ignore_failures = source.ignore_failures

    @property
    def source(self) -> PackageSource:
        return self._source

    async def find_packages_by_id(self, package_id: str) -> List[PackageInfo]:
        return await asyncio.to_thread(self._scan, package_id)

    def _scan(self, package_id: str) -> List[PackageInfo]:
        if not self.root.is_dir():
            if self.ignore_failures:
                logger.warning(f"Package source directory {self.root} does not exist, ignoring it")
                return []
            raise SourceUnavailableError(str(self.root), "directory does not exist")

        packages = self._scan_flat(package_id) + self._scan_hierarchical(package_id)
        packages.sort(key=lambda p: p.version)
        logger.debug(f"Found {len(packages)} versions of {package_id} in {self.root}")
        return packages

    def _package(self, package_id: str, version: SemanticVersion, path: Path) -> PackageInfo:
        return PackageInfo(
            id=package_id,
            version=version,
            content_uri=str(path),
            source_key=self.source.key,
        )

    def _scan_flat(self, package_id: str) -> List[PackageInfo]:
        prefix = f"{package_id.lower()}."
        packages = []
        for path in self.root.iterdir():
            name = path.name.lower()
            if not path.is_file() or not name.endswith(ARCHIVE_EXTENSION) or not name.startswith(prefix):
                continue
            # 'foo.bar.1.0.0.nupkg' must not be listed as a version of 'foo'
            version = SemanticVersion.try_parse(path.name[len(prefix):-len(ARCHIVE_EXTENSION)])
            if version is None:
                continue
            packages.append(self._package(package_id, version, path))
        return packages

    def _scan_hierarchical(self, package_id: str) -> List[PackageInfo]:
        id_dir = next(
            (d for d in self.root.iterdir() if d.is_dir() and d.name.lower() == package_id.lower()),
            None,
        )
        if id_dir is None:
            return []

        packages = []
        for version_dir in id_dir.iterdir():
            if not version_dir.is_dir():
                continue
            version = SemanticVersion.try_parse(version_dir.name)
            if version is None:
                continue
            archive = self._find_archive(version_dir, package_id, version_dir.name)
            if archive is not None:
                packages.append(self._package(package_id, version, archive))
        return packages

    @staticmethod
    def _find_archive(version_dir: Path, package_id: str, version_text: str) -> Optional[Path]:
        expected = f"{package_id}.{version_text}{ARCHIVE_EXTENSION}".lower()
        for path in version_dir.iterdir():
            if path.is_file() and path.name.lower() == expected:
                return path
        return None

    def _archive_path(self, package: PackageInfo) -> Path:
        path = Path(package.content_uri)
        if not path.is_file():
            raise NotFoundError(package.content_uri)
        return path

    async def open_content(self, package: PackageInfo) -> Any:
        return await aiofiles.open(self._archive_path(package), "rb")

    async def open_manifest(self, package: PackageInfo) -> io.BytesIO:
        path = self._archive_path(package)
        sidecar = path.with_name(f"{package.id}{MANIFEST_EXTENSION}")
        if sidecar.is_file():
            async with aiofiles.open(sidecar, "rb") as f:
                return io.BytesIO(await f.read())
        return io.BytesIO(await asyncio.to_thread(read_manifest, path, package.id))

    async def open_runtime(self, package: PackageInfo) -> Optional[io.BytesIO]:
        data = await asyncio.to_thread(read_entry, self._archive_path(package), RUNTIME_ENTRY)
        return io.BytesIO(data) if data is not None else None
