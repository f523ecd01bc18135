"""
Registry Module

Image-freshness detection against container registries.

Architecture:
- image_ref: raw image string → ImageReference
- versions: tag → comparable Version
- RegistryAdapter: anonymous-then-Bearer tags/list client
- FreshnessResolver: classifies an image as up to date or out of date
"""

from registry.freshness import FreshnessResolver
from registry.image_ref import ImageReference, InvalidReference, parse_image_reference
from registry.registry_adapter import RegistryAdapter, RegistryError
from registry.types import FreshnessResult, OutOfDate, UpToDate
from registry.versions import Latest, RawTag, Semantic, Version, VersionParseError

__all__ = [
    'FreshnessResolver',
    'ImageReference',
    'InvalidReference',
    'parse_image_reference',
    'RegistryAdapter',
    'RegistryError',
    'FreshnessResult',
    'OutOfDate',
    'UpToDate',
    'Latest',
    'RawTag',
    'Semantic',
    'Version',
    'VersionParseError',
]
