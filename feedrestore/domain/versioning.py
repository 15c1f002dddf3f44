"""
Semantic version parsing and ordering for package versions.

Versions have one to four numeric components, an optional prerelease label
after '-' and optional build metadata after '+'. Build metadata is kept for
display but ignored when comparing.
"""
from __future__ import annotations

import functools
import re
from typing import Optional, Tuple

_VERSION_RE = re.compile(
    r"^(?P<numbers>\d+(?:\.\d+){0,3})"
    r"(?:-(?P<release>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<metadata>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


def _label_key(label: str) -> tuple:
    # Numeric label segments sort before alphanumeric ones, and numerically.
    parts = []
    for part in label.split("."):
        if part.isdigit():
            parts.append((0, int(part), ""))
        else:
            parts.append((1, 0, part.lower()))
    return tuple(parts)


@functools.total_ordering
class SemanticVersion:
    __slots__ = ("numbers", "release", "metadata", "original")

    def __init__(
        self,
        numbers: Tuple[int, ...],
        release: str = "",
        metadata: str = "",
        original: Optional[str] = None,
    ):
        # Pad to four components so 1.0 == 1.0.0 == 1.0.0.0
        padded = tuple(numbers) + (0,) * (4 - len(numbers))
        self.numbers = padded[:4]
        self.release = release or ""
        self.metadata = metadata or ""
        self.original = original

    @classmethod
    def parse(cls, value: str) -> "SemanticVersion":
        version = cls.try_parse(value)
        if version is None:
            raise ValueError(f"'{value}' is not a valid version string")
        return version

    @classmethod
    def try_parse(cls, value: Optional[str]) -> Optional["SemanticVersion"]:
        if value is None:
            return None
        text = str(value).strip()
        match = _VERSION_RE.match(text)
        if not match:
            return None
        numbers = tuple(int(n) for n in match.group("numbers").split("."))
        return cls(
            numbers,
            release=match.group("release") or "",
            metadata=match.group("metadata") or "",
            original=text,
        )

    @property
    def is_prerelease(self) -> bool:
        return bool(self.release)

    def normalized(self) -> str:
        """
        Canonical string form: at least three numeric components, the fourth
        only when non-zero, followed by the prerelease label.
        """
        count = 4 if self.numbers[3] else 3
        text = ".".join(str(n) for n in self.numbers[:count])
        if self.release:
            text = f"{text}-{self.release}"
        return text

    def _key(self) -> tuple:
        # A release sorts after all of its prereleases.
        if self.release:
            return (self.numbers, 0, _label_key(self.release))
        return (self.numbers, 1, ())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other: "SemanticVersion") -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __str__(self) -> str:
        return self.original or self.normalized()

    def __repr__(self) -> str:
        return f"SemanticVersion('{self}')"
