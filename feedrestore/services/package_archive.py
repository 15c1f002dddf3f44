"""
Helpers for reading package archives.

Package archives are ZIP files. The manifest is the top-level ``.nuspec``
entry; some packages also ship a top-level ``runtime.json``.
"""
from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Optional

from feedrestore.domain.errors import InvalidContentError

ARCHIVE_EXTENSION = ".nupkg"
MANIFEST_EXTENSION = ".nuspec"
RUNTIME_ENTRY = "runtime.json"


def validate_archive(path: Path) -> None:
    """Content validator for downloaded archives."""
    if not zipfile.is_zipfile(path):
        raise ValueError(f"{path.name} is not a valid package archive")


def _top_level_entries(archive: zipfile.ZipFile):
    return [name for name in archive.namelist() if "/" not in name.rstrip("/")]


def read_manifest(path: Path, package_id: str) -> bytes:
    """
    Return the bytes of the manifest entry of an archive.

    Prefers '<id>.nuspec', falls back to any top-level '.nuspec' entry.
    """
    try:
        with zipfile.ZipFile(path, "r") as archive:
            candidates = [
                name for name in _top_level_entries(archive)
                if name.lower().endswith(MANIFEST_EXTENSION)
            ]
            preferred = f"{package_id}{MANIFEST_EXTENSION}".lower()
            candidates.sort(key=lambda name: name.lower() != preferred)
            if not candidates:
                raise InvalidContentError(str(path), "archive does not contain a manifest")
            return archive.read(candidates[0])
    except zipfile.BadZipFile as e:
        raise InvalidContentError(str(path), str(e)) from e


def read_entry(path: Path, entry_name: str) -> Optional[bytes]:
    """Return the bytes of a top-level entry (case-insensitive), or None."""
    try:
        with zipfile.ZipFile(path, "r") as archive:
            for name in _top_level_entries(archive):
                if name.lower() == entry_name.lower():
                    return archive.read(name)
    except zipfile.BadZipFile as e:
        raise InvalidContentError(str(path), str(e)) from e
    return None
