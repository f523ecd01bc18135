"""
Client for the Nomad HTTP API

Read-only access to the two endpoints the reconciler needs:
- GET /v1/jobs
- GET /v1/job/{id}
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from nomad.models import JobDetail, JobListEntry

logger = logging.getLogger(__name__)

_JOB_LIST = TypeAdapter(List[JobListEntry])


class NomadAPIError(Exception):
    """Job list or job detail could not be fetched or decoded."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status


class NomadClient:
    """
    Typed GET + deserialize wrapper around the Nomad API.

    The httpx client is shared and owned by the caller.
    """

    def __init__(self, base_url: str, client: httpx.AsyncClient, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client
        self.token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["X-Nomad-Token"] = self.token
        return headers

    async def _get(self, path: str) -> Any:
        url = f"{self.base_url}/{path}"
        try:
            response = await self.client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise NomadAPIError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            raise NomadAPIError(f"Nomad returned {response.status_code} for {url}", status=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise NomadAPIError(f"Nomad returned invalid JSON for {url}") from e

    async def list_jobs(self) -> List[JobListEntry]:
        data = await self._get("v1/jobs")
        try:
            return _JOB_LIST.validate_python(data)
        except ValidationError as e:
            raise NomadAPIError(f"Unexpected job list format: {e}") from e

    async def read_job(self, job_id: str) -> JobDetail:
        data = await self._get(f"v1/job/{quote(job_id, safe='')}")
        try:
            return JobDetail.model_validate(data)
        except ValidationError as e:
            logger.debug(f"Undecodable job {job_id}: {data}")
            raise NomadAPIError(f"Unexpected format for job {job_id}: {e}") from e
