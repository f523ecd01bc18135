"""
Image Reference Parsing

Splits a raw image string into registry, optional namespace, name and tag.

Examples:
    nginx:1.25 → (registry.hub.docker.com, None, nginx, 1.25)
    grafana/loki:2.9.1 → (registry.hub.docker.com, grafana, loki, 2.9.1)
    ghcr.io/org/app:v1.0.0 → (ghcr.io, org, app, v1.0.0)
    redis → (registry.hub.docker.com, None, redis, latest)
"""

from dataclasses import dataclass
from typing import Optional

from registry.versions import LATEST_TAG, RawTag

DEFAULT_REGISTRY = "registry.hub.docker.com"

# Official Docker Hub images live under this namespace
DEFAULT_NAMESPACE = "library"


class InvalidReference(ValueError):
    """Image string that cannot be checked (templated, too deep, or empty)."""

    def __init__(self, raw: str):
        super().__init__(f"Invalid image reference: {raw!r}")
        self.raw = raw


@dataclass(frozen=True)
class ImageReference:
    registry: str
    namespace: Optional[str]
    name: str
    tag: RawTag

    @property
    def repository(self) -> str:
        """Repository path as used by the registry v2 API."""
        return f"{self.namespace or DEFAULT_NAMESPACE}/{self.name}"

    def __str__(self) -> str:
        path = f"{self.namespace}/{self.name}" if self.namespace else self.name
        return f"{self.registry}/{path}:{self.tag}"


def parse_image_reference(raw: str) -> ImageReference:
    """
    Parse a raw image string.

    Args:
        raw: Image as written in the task config (e.g., "user/app:1.2.3")

    Returns:
        ImageReference

    Raises:
        InvalidReference: if the string contains '$' (unexpanded template
            variable), has more than two path segments after the registry,
            or has an empty name
    """
    if "$" in raw:
        raise InvalidReference(raw)

    # A ':' followed by a '/' belongs to a registry port, not a tag
    name_part, sep, tag = raw.rpartition(":")
    if not sep or "/" in tag:
        name_part, tag = raw, LATEST_TAG

    segments = name_part.split("/")

    if "." in segments[0]:
        registry = segments.pop(0)
    else:
        registry = DEFAULT_REGISTRY

    if not segments or any(not segment for segment in segments):
        raise InvalidReference(raw)

    if len(segments) == 1:
        namespace, name = None, segments[0]
    elif len(segments) == 2:
        namespace, name = segments
    else:
        raise InvalidReference(raw)

    return ImageReference(
        registry=registry,
        namespace=namespace,
        name=name,
        tag=RawTag(tag),
    )
