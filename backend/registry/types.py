"""
Shared types for the registry client and freshness resolver.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Union


@dataclass(frozen=True)
class AuthChallenge:
    """
    Parameters of a registry's Bearer challenge.

    Parsed from a header such as:
    Bearer realm="https://auth.docker.io/token",service="registry.docker.io",scope="repository:library/nginx:pull"
    """
    realm: str
    service: str
    scope: str


@dataclass
class TagPage:
    """One page of a tags/list response."""
    tags: List[str] = field(default_factory=list)
    next_url: Optional[str] = None


@dataclass(frozen=True)
class NeedsAuth:
    """Anonymous request was refused with a usable challenge."""
    challenge: AuthChallenge


@dataclass(frozen=True)
class UpToDate:
    version: str


@dataclass(frozen=True)
class OutOfDate:
    current: str
    newest: str


FreshnessResult = Union[UpToDate, OutOfDate]

FetchResult = Union[TagPage, NeedsAuth]
