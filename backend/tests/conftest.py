"""
Shared pytest fixtures for Nomad VMonitor tests.

Fixtures provided:
- make_jwt: Builds a structurally valid JWT (registries' token format)
- mock_session: aiohttp.ClientSession mock whose get() replays queued responses
- metrics: FreshnessMetrics on a private registry
- job_payload: Factory for Nomad job detail JSON
"""

import os
import sys
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import jwt
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from monitor.metrics import FreshnessMetrics


@pytest.fixture
def make_jwt():
    def _make(claims: Optional[Dict[str, Any]] = None) -> str:
        return jwt.encode(
            claims or {"sub": "vmonitor", "access": []},
            "vmonitor-test-signing-key-0123456789abcdef",
            algorithm="HS256",
        )
    return _make


@pytest.fixture
def mock_session():
    """
    aiohttp session mock.

    Queue responses on `session.responses`; each get() call pops the next
    one. Exceptions in the queue are raised from get() instead.
    """
    session = MagicMock()
    session.responses = []

    def _get(url, **kwargs):
        item = session.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    session.get = MagicMock(side_effect=_get)
    return session


@pytest.fixture
def metrics():
    return FreshnessMetrics()


@pytest.fixture
def job_payload():
    def _make(name: str, groups: Dict[str, List[Dict[str, Any]]], parent_id: str = "") -> Dict[str, Any]:
        return {
            "ID": name,
            "Name": name,
            "ParentID": parent_id,
            "Type": "service",
            "TaskGroups": [
                {"Name": group, "Count": 1, "Tasks": tasks}
                for group, tasks in groups.items()
            ],
        }
    return _make
