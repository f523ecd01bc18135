"""
Registry Adapter for Image Tag Listing

Lists the tags published for an image by querying the registry v2 API.
Supports Docker Hub and any OCI-compliant registry using the standard
Bearer token flow.

Protocol (at most one authentication round-trip per call):
1. GET /v2/{repository}/tags/list anonymously
2. On 401, parse the WWW-Authenticate challenge (realm, service, scope)
3. Fetch a token from the realm
4. Replay the tag request once with the token; a second 401 is final

Tokens are not cached between calls.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional

import aiohttp
import jwt

from registry.image_ref import ImageReference
from registry.types import AuthChallenge, FetchResult, NeedsAuth, TagPage

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_ID = "Nomad-VMonitor"

# Upper bound on Link-header pagination for a single image
MAX_TAG_PAGES = 100

# Hostnames that all mean Docker Hub
DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io", "registry.hub.docker.com"}

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class RegistryError(Exception):
    """Base error for registry interaction."""


class RegistryTransportError(RegistryError):
    """Connection, DNS, timeout, or unreadable response body."""


class RegistryStatusError(RegistryError):
    """Registry answered with an unexpected HTTP status."""

    def __init__(self, status: int, url: str):
        super().__init__(f"Registry returned {status} for {url}")
        self.status = status
        self.url = url


class RegistryFailedAuth(RegistryError):
    """Registry refused access without a challenge, or refused the token."""


class RegistryAuthError(RegistryError):
    """Challenge could not be parsed or the token endpoint failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def parse_www_authenticate(header: str) -> AuthChallenge:
    """
    Parse a WWW-Authenticate Bearer challenge.

    Args:
        header: Header value, e.g. 'Bearer realm="https://ghcr.io/token",service="ghcr.io",scope="repository:user/app:pull"'

    Returns:
        AuthChallenge

    Raises:
        RegistryAuthError: on a non-Bearer scheme or a missing realm, service or scope
    """
    scheme, _, params_str = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        raise RegistryAuthError(f"Unexpected WWW-Authenticate scheme: {header[:20]}")

    params: Dict[str, str] = dict(_CHALLENGE_PARAM.findall(params_str))

    missing = [key for key in ("realm", "service", "scope") if key not in params]
    if missing:
        raise RegistryAuthError(f"WWW-Authenticate missing {', '.join(missing)}")

    if not params["realm"].startswith(("http://", "https://")):
        raise RegistryAuthError(f"WWW-Authenticate realm is not a URL: {params['realm']}")

    return AuthChallenge(realm=params["realm"], service=params["service"], scope=params["scope"])


class RegistryAdapter:
    """
    Client for the tags/list endpoint of container registries.

    The aiohttp session is shared and owned by the caller.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        client_id: str = DEFAULT_CLIENT_ID,
        timeout: float = 30,
    ):
        self.session = session
        self.client_id = client_id
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _normalize_registry_url(self, registry: str) -> str:
        """
        Normalize registry host to a base HTTPS URL.

        Examples:
            docker.io → https://registry.hub.docker.com
            ghcr.io → https://ghcr.io
        """
        if registry in DOCKER_HUB_ALIASES:
            return "https://registry.hub.docker.com"
        return f"https://{registry}"

    def tags_url(self, image: ImageReference) -> str:
        return f"{self._normalize_registry_url(image.registry)}/v2/{image.repository}/tags/list"

    async def get_tags(self, image: ImageReference) -> List[str]:
        """
        List every tag the registry reports for an image.

        Raises:
            RegistryTransportError, RegistryStatusError, RegistryFailedAuth, RegistryAuthError
        """
        url = self.tags_url(image)

        token = None
        result = await self._try_get_tags(url)
        if isinstance(result, NeedsAuth):
            logger.debug(f"Registry requires auth for {image.repository}, fetching token from {result.challenge.realm}")
            token = await self.fetch_token(result.challenge)
            result = await self._try_get_tags(url, token)
            if isinstance(result, NeedsAuth):
                raise RegistryFailedAuth(f"Registry rejected token for {url}")

        tags = list(result.tags)
        pages = 1
        while result.next_url:
            if pages >= MAX_TAG_PAGES:
                logger.warning(f"Stopped listing tags for {image} after {pages} pages")
                break
            result = await self._try_get_tags(result.next_url, token)
            if isinstance(result, NeedsAuth):
                raise RegistryFailedAuth(f"Registry rejected token for {result.challenge.scope}")
            tags.extend(result.tags)
            pages += 1

        logger.debug(f"Registry reported {len(tags)} tags for {image}")
        return tags

    async def _try_get_tags(self, url: str, token: Optional[str] = None) -> FetchResult:
        """
        Issue a single tags/list request.

        Returns:
            TagPage on success, NeedsAuth on a 401 carrying a challenge
        """
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with self.session.get(url, headers=headers, timeout=self._timeout) as response:
                if response.status == 401:
                    www_auth = response.headers.get("WWW-Authenticate")
                    if not www_auth:
                        raise RegistryFailedAuth(f"Registry returned 401 without WWW-Authenticate for {url}")
                    return NeedsAuth(parse_www_authenticate(www_auth))

                if not 200 <= response.status < 300:
                    raise RegistryStatusError(response.status, url)

                data = await response.json(content_type=None)
                next_link = response.links.get("next")

        except asyncio.TimeoutError as e:
            raise RegistryTransportError(f"Timeout fetching {url}") from e
        except aiohttp.ClientError as e:
            raise RegistryTransportError(f"Error fetching {url}: {e}") from e
        except ValueError as e:
            raise RegistryTransportError(f"Malformed tag list from {url}: {e}") from e

        if not isinstance(data, dict):
            raise RegistryTransportError(f"Malformed tag list from {url}")

        # Registries answer "tags": null for repositories without tags
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise RegistryTransportError(f"Malformed tag list from {url}")

        next_url = str(next_link["url"]) if next_link and next_link.get("url") else None
        return TagPage(tags=[tag for tag in tags if isinstance(tag, str)], next_url=next_url)

    async def fetch_token(self, challenge: AuthChallenge) -> str:
        """
        Fetch a Bearer token from the challenge realm.

        The token must be JWT-structured; its signature is not verified.

        Raises:
            RegistryAuthError: on transport failure, non-2xx, or malformed token
        """
        params = {
            "service": challenge.service,
            "scope": challenge.scope,
            "client_id": self.client_id,
        }

        try:
            async with self.session.get(challenge.realm, params=params, timeout=self._timeout) as response:
                if not 200 <= response.status < 300:
                    response_text = await response.text()
                    raise RegistryAuthError(
                        f"Token request to {challenge.realm} failed with status {response.status}: {response_text[:200]}"
                    )
                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise RegistryAuthError(f"Timeout fetching token from {challenge.realm}") from e
        except aiohttp.ClientError as e:
            raise RegistryAuthError(f"Error fetching token from {challenge.realm}: {e}") from e
        except ValueError as e:
            raise RegistryAuthError(f"Token endpoint {challenge.realm} returned malformed body") from e

        token = None
        if isinstance(data, dict):
            token = data.get("token") or data.get("access_token")
        if not isinstance(token, str) or not token:
            raise RegistryAuthError(f"Token endpoint {challenge.realm} returned no token")

        try:
            jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise RegistryAuthError(f"Token from {challenge.realm} is not a valid JWT: {e}") from e

        logger.debug(f"Obtained token from {challenge.realm}")
        return token
