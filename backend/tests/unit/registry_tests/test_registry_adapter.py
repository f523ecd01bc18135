"""
Unit tests for the registry tags/list client.

Tests verify:
- Anonymous success needs a single request
- 401 + challenge → exactly one token fetch and one retry
- A second 401 is a final authentication failure
- Challenge parsing rejects incomplete or non-Bearer headers
- Status, transport and token errors map to the right exception
- Link-header pagination
"""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest

from registry.image_ref import parse_image_reference
from registry.registry_adapter import (
    MAX_TAG_PAGES,
    RegistryAdapter,
    RegistryAuthError,
    RegistryFailedAuth,
    RegistryStatusError,
    RegistryTransportError,
    parse_www_authenticate,
)
from registry.types import AuthChallenge

from registry_mocks import build_response

CHALLENGE = (
    'Bearer realm="https://auth.docker.io/token",'
    'service="registry.docker.io",'
    'scope="repository:library/nginx:pull"'
)


def _unauthorized(header=CHALLENGE):
    return build_response(status=401, headers={"WWW-Authenticate": header} if header else {})


def _tags(*tags, next_url=None):
    links = {"next": {"url": next_url}} if next_url else {}
    return build_response(json_data={"name": "library/nginx", "tags": list(tags)}, links=links)


@pytest.fixture
def adapter(mock_session):
    return RegistryAdapter(mock_session, client_id="Nomad-VMonitor", timeout=5)


@pytest.fixture
def nginx():
    return parse_image_reference("nginx:1.25.0")


class TestParseWwwAuthenticate:

    def test_full_challenge(self):
        challenge = parse_www_authenticate(CHALLENGE)

        assert challenge == AuthChallenge(
            realm="https://auth.docker.io/token",
            service="registry.docker.io",
            scope="repository:library/nginx:pull",
        )

    def test_scheme_is_case_insensitive(self):
        challenge = parse_www_authenticate(CHALLENGE.replace("Bearer", "bearer"))
        assert challenge.service == "registry.docker.io"

    def test_param_order_does_not_matter(self):
        header = 'Bearer scope="repository:a/b:pull",service="ghcr.io",realm="https://ghcr.io/token"'
        assert parse_www_authenticate(header).realm == "https://ghcr.io/token"

    @pytest.mark.parametrize("header", [
        'Basic realm="Registry Realm"',
        'Bearer realm="https://auth.docker.io/token",service="registry.docker.io"',
        'Bearer service="registry.docker.io",scope="repository:library/nginx:pull"',
        'Bearer realm="auth.docker.io/token",service="x",scope="y"',
        'Bearer',
    ])
    def test_rejected_challenges(self, header):
        with pytest.raises(RegistryAuthError):
            parse_www_authenticate(header)


class TestRegistryUrl:

    @pytest.mark.parametrize("raw,expected", [
        ("nginx:1.0.0", "https://registry.hub.docker.com/v2/library/nginx/tags/list"),
        ("docker.io/grafana/loki:2.9.1", "https://registry.hub.docker.com/v2/grafana/loki/tags/list"),
        ("ghcr.io/org/app:1.0.0", "https://ghcr.io/v2/org/app/tags/list"),
        ("registry.local:5000/team/app:1.0.0", "https://registry.local:5000/v2/team/app/tags/list"),
    ])
    def test_tags_url(self, adapter, raw, expected):
        assert adapter.tags_url(parse_image_reference(raw)) == expected


class TestGetTags:
    """Test the anonymous-then-token flow"""

    @pytest.mark.asyncio
    async def test_anonymous_success(self, adapter, mock_session, nginx):
        mock_session.responses = [_tags("1.25.0", "1.25.1", "latest")]

        tags = await adapter.get_tags(nginx)

        assert tags == ["1.25.0", "1.25.1", "latest"]
        assert mock_session.get.call_count == 1
        headers = mock_session.get.call_args.kwargs["headers"]
        assert "Authorization" not in headers

    @pytest.mark.asyncio
    async def test_challenge_fetches_one_token_and_retries_once(self, adapter, mock_session, nginx, make_jwt):
        token = make_jwt()
        mock_session.responses = [
            _unauthorized(),
            build_response(json_data={"token": token}),
            _tags("1.25.0", "1.26.0"),
        ]

        tags = await adapter.get_tags(nginx)

        assert tags == ["1.25.0", "1.26.0"]
        assert mock_session.get.call_count == 3

        token_call = mock_session.get.call_args_list[1]
        assert token_call.args[0] == "https://auth.docker.io/token"
        assert token_call.kwargs["params"] == {
            "service": "registry.docker.io",
            "scope": "repository:library/nginx:pull",
            "client_id": "Nomad-VMonitor",
        }

        retry_call = mock_session.get.call_args_list[2]
        assert retry_call.kwargs["headers"]["Authorization"] == f"Bearer {token}"

    @pytest.mark.asyncio
    async def test_access_token_key_accepted(self, adapter, mock_session, nginx, make_jwt):
        mock_session.responses = [
            _unauthorized(),
            build_response(json_data={"access_token": make_jwt()}),
            _tags("1.0.0"),
        ]

        assert await adapter.get_tags(nginx) == ["1.0.0"]

    @pytest.mark.asyncio
    async def test_second_unauthorized_is_failed_auth(self, adapter, mock_session, nginx, make_jwt):
        mock_session.responses = [
            _unauthorized(),
            build_response(json_data={"token": make_jwt()}),
            _unauthorized(),
        ]

        with pytest.raises(RegistryFailedAuth):
            await adapter.get_tags(nginx)

        # No second token round-trip
        assert mock_session.get.call_count == 3

    @pytest.mark.asyncio
    async def test_unauthorized_without_challenge(self, adapter, mock_session, nginx):
        mock_session.responses = [_unauthorized(header=None)]

        with pytest.raises(RegistryFailedAuth):
            await adapter.get_tags(nginx)
        assert mock_session.get.call_count == 1

    @pytest.mark.asyncio
    async def test_incomplete_challenge(self, adapter, mock_session, nginx):
        mock_session.responses = [_unauthorized(header='Bearer realm="https://auth.docker.io/token"')]

        with pytest.raises(RegistryAuthError):
            await adapter.get_tags(nginx)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 429, 500, 503])
    async def test_unexpected_status(self, adapter, mock_session, nginx, status):
        mock_session.responses = [build_response(status=status)]

        with pytest.raises(RegistryStatusError) as exc_info:
            await adapter.get_tags(nginx)
        assert exc_info.value.status == status

    @pytest.mark.asyncio
    async def test_connection_error(self, adapter, mock_session, nginx):
        mock_session.responses = [aiohttp.ClientConnectionError("connection refused")]

        with pytest.raises(RegistryTransportError):
            await adapter.get_tags(nginx)

    @pytest.mark.asyncio
    async def test_timeout(self, adapter, mock_session, nginx):
        mock_session.responses = [asyncio.TimeoutError()]

        with pytest.raises(RegistryTransportError):
            await adapter.get_tags(nginx)

    @pytest.mark.asyncio
    async def test_malformed_body(self, adapter, mock_session, nginx):
        mock_session.responses = [build_response(json_data=ValueError("not json"))]

        with pytest.raises(RegistryTransportError):
            await adapter.get_tags(nginx)

    @pytest.mark.asyncio
    async def test_null_tags(self, adapter, mock_session, nginx):
        mock_session.responses = [build_response(json_data={"name": "library/nginx", "tags": None})]

        assert await adapter.get_tags(nginx) == []


class TestFetchToken:

    @pytest.fixture
    def challenge(self):
        return parse_www_authenticate(CHALLENGE)

    @pytest.mark.asyncio
    async def test_non_jwt_token_rejected(self, adapter, mock_session, challenge):
        mock_session.responses = [build_response(json_data={"token": "opaque-token"})]

        with pytest.raises(RegistryAuthError):
            await adapter.fetch_token(challenge)

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, adapter, mock_session, challenge):
        mock_session.responses = [build_response(json_data={"expires_in": 300})]

        with pytest.raises(RegistryAuthError):
            await adapter.fetch_token(challenge)

    @pytest.mark.asyncio
    async def test_token_endpoint_error_status(self, adapter, mock_session, challenge):
        mock_session.responses = [build_response(status=403, text="denied")]

        with pytest.raises(RegistryAuthError) as exc_info:
            await adapter.fetch_token(challenge)
        assert "403" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_token_endpoint_unreachable(self, adapter, mock_session, challenge):
        mock_session.responses = [aiohttp.ClientConnectionError("boom")]

        with pytest.raises(RegistryAuthError):
            await adapter.fetch_token(challenge)

    @pytest.mark.asyncio
    async def test_valid_token_returned(self, adapter, mock_session, challenge, make_jwt):
        token = make_jwt({"sub": "anonymous"})
        mock_session.responses = [build_response(json_data={"token": token})]

        assert await adapter.fetch_token(challenge) == token


class TestPagination:

    @pytest.mark.asyncio
    async def test_follows_next_links(self, adapter, mock_session, nginx):
        mock_session.responses = [
            _tags("1.0.0", next_url="https://registry.hub.docker.com/v2/library/nginx/tags/list?last=1.0.0"),
            _tags("1.1.0", next_url="https://registry.hub.docker.com/v2/library/nginx/tags/list?last=1.1.0"),
            _tags("1.2.0"),
        ]

        assert await adapter.get_tags(nginx) == ["1.0.0", "1.1.0", "1.2.0"]
        assert mock_session.get.call_args_list[1].args[0].endswith("?last=1.0.0")

    @pytest.mark.asyncio
    async def test_token_reused_for_later_pages(self, adapter, mock_session, nginx, make_jwt):
        token = make_jwt()
        mock_session.responses = [
            _unauthorized(),
            build_response(json_data={"token": token}),
            _tags("1.0.0", next_url="https://registry.hub.docker.com/v2/library/nginx/tags/list?last=1.0.0"),
            _tags("1.1.0"),
        ]

        assert await adapter.get_tags(nginx) == ["1.0.0", "1.1.0"]
        assert mock_session.get.call_args_list[3].kwargs["headers"]["Authorization"] == f"Bearer {token}"

    @pytest.mark.asyncio
    async def test_page_limit(self, adapter, nginx):
        session = MagicMock()
        session.get = MagicMock(
            side_effect=lambda url, **kwargs: _tags("1.0.0", next_url=f"{url}?more")
        )
        adapter.session = session

        tags = await adapter.get_tags(nginx)

        assert len(tags) == MAX_TAG_PAGES
        assert session.get.call_count == MAX_TAG_PAGES
