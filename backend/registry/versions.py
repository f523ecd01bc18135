"""
Version Model for Image Tags

Turns a raw image tag into a comparable version value.

Supported tag shapes:
- "latest" → Latest
- "1", "1.2", "1.2.3" → Semantic with partial specificity
- "v1.2.3" → same as "1.2.3" (leading 'v' stripped)

Tags like "1.2.3-alpine" parse as Semantic(1, 2, None): components that
are present but not numeric count as absent, so such tags never become
fully qualified and never take part in freshness comparisons.
"""

import functools
import re
from dataclasses import dataclass
from typing import Optional, Tuple

LATEST_TAG = "latest"

_NUMERIC = re.compile(r"^[0-9]+$")


class VersionParseError(ValueError):
    """Tag does not encode a version (major component missing or non-numeric)."""

    def __init__(self, tag: str):
        super().__init__(f"Cannot parse version from tag {tag!r}")
        self.tag = tag


@functools.total_ordering
class Version:
    """
    Base for the two version variants.

    Ordering:
    - Latest sorts before every Semantic value
    - Semantic values compare major, minor, patch in turn; a missing
      component is less than a present one, two missing ones are equal
    """

    def sort_key(self) -> Tuple:
        raise NotImplementedError

    def fully_qualified(self) -> bool:
        raise NotImplementedError

    def __lt__(self, other):
        if not isinstance(other, Version):
            return NotImplemented
        return self.sort_key() < other.sort_key()


@dataclass(frozen=True)
class Latest(Version):
    """The floating 'latest' tag."""

    def sort_key(self) -> Tuple:
        return (0,)

    def fully_qualified(self) -> bool:
        return True

    def __str__(self) -> str:
        return LATEST_TAG


def _component_key(value: Optional[int]) -> Tuple:
    return (0,) if value is None else (1, value)


@dataclass(frozen=True)
class Semantic(Version):
    """A dotted numeric version, minor and patch independently optional."""

    major: int
    minor: Optional[int] = None
    patch: Optional[int] = None

    def sort_key(self) -> Tuple:
        return (1, self.major, _component_key(self.minor), _component_key(self.patch))

    def fully_qualified(self) -> bool:
        return self.minor is not None and self.patch is not None

    def __str__(self) -> str:
        text = str(self.major)
        if self.minor is None:
            return text
        text += f".{self.minor}"
        if self.patch is None:
            return text
        return f"{text}.{self.patch}"


def compare_versions(a: Version, b: Version) -> int:
    """Three-way comparison: -1, 0 or 1."""
    key_a, key_b = a.sort_key(), b.sort_key()
    return (key_a > key_b) - (key_a < key_b)


def _parse_component(raw: Optional[str]) -> Optional[int]:
    if raw is None or not _NUMERIC.match(raw):
        return None
    return int(raw)


@dataclass(frozen=True)
class RawTag:
    """An image tag exactly as written in the image reference."""

    value: str

    def parse_version(self) -> Version:
        """
        Parse the tag into a Version.

        Raises:
            VersionParseError: if the major component is missing or not numeric

        Examples:
            >>> RawTag("v1.2.3").parse_version()
            Semantic(major=1, minor=2, patch=3)
            >>> RawTag("1.2.rc1").parse_version()
            Semantic(major=1, minor=2, patch=None)
        """
        if self.value == LATEST_TAG:
            return Latest()

        tag = self.value[1:] if self.value.startswith("v") else self.value
        parts = tag.split(".")

        major = _parse_component(parts[0])
        if major is None:
            raise VersionParseError(self.value)

        minor = _parse_component(parts[1] if len(parts) > 1 else None)
        patch = _parse_component(parts[2] if len(parts) > 2 else None)

        return Semantic(major=major, minor=minor, patch=patch)

    def __str__(self) -> str:
        return self.value
