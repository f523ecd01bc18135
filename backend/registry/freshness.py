"""
Freshness Resolver

Decides whether an image pinned to a version tag is the newest fully
qualified version published in its registry.

Workflow:
1. Parse the image's own tag (unparsable → indeterminate)
2. 'latest' short-circuits to up-to-date without any registry call
3. List the registry's tags (failure → indeterminate)
4. Keep only parsable, fully qualified tags ("1" and "1.2" are moving aliases)
5. Compare against the maximum; newer published version → out of date

Indeterminate outcomes are returned as None and logged here, so callers can
skip the task and carry on.
"""

import logging
from typing import Iterable, List, Optional

from registry.image_ref import ImageReference
from registry.registry_adapter import RegistryError
from registry.types import FreshnessResult, OutOfDate, UpToDate
from registry.versions import Latest, RawTag, Version, VersionParseError

logger = logging.getLogger(__name__)


def comparable_versions(tags: Iterable[str]) -> List[Version]:
    """Parse tags, dropping anything unparsable or not fully qualified."""
    versions = []
    for tag in tags:
        try:
            version = RawTag(tag).parse_version()
        except VersionParseError:
            continue
        if version.fully_qualified():
            versions.append(version)
    return versions


def classify(current: Version, tags: Iterable[str]) -> Optional[FreshnessResult]:
    """
    Compare a version against the newest comparable tag.

    Returns:
        OutOfDate if a strictly newer version exists, UpToDate otherwise,
        None if no tag is comparable
    """
    candidates = comparable_versions(tags)
    if not candidates:
        return None

    newest = max(candidates)
    if newest > current:
        return OutOfDate(current=str(current), newest=str(newest))
    return UpToDate(version=str(current))


class FreshnessResolver:
    """
    Resolves freshness for image references.

    Args:
        tag_lister: object with `async get_tags(image) -> List[str]`
            (normally a RegistryAdapter)
    """

    def __init__(self, tag_lister):
        self.tag_lister = tag_lister

    async def resolve(self, image: ImageReference) -> Optional[FreshnessResult]:
        try:
            current = image.tag.parse_version()
        except VersionParseError as e:
            logger.warning(f"Skipping {image}: tag {e.tag!r} is not a version")
            return None

        if isinstance(current, Latest):
            logger.debug(f"Skipping registry check for {image}, already tracking latest")
            return UpToDate(version=str(current))

        try:
            tags = await self.tag_lister.get_tags(image)
        except RegistryError as e:
            logger.error(f"Failed to list tags for {image}: {e}")
            return None

        result = classify(current, tags)
        if result is None:
            logger.warning(f"Skipping {image}: registry reported no comparable version tags")
        elif isinstance(result, OutOfDate):
            logger.info(f"Update available for {image}: {result.current} → {result.newest}")
        return result
