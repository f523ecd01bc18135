"""
Nomad Event Stream Listener

Long-polls GET /v1/event/stream and calls a notifier whenever the stream
reports an index newer than any seen before. The reconciler uses this to
run a check early instead of waiting for the next timer tick.

The stream is filtered to the Job topic and is newline-delimited JSON.
Nomad sends "{}" heartbeats every few seconds, which are ignored.
Triggers arriving while a check runs collapse into one follow-up check.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

RECONNECT_DELAY_SECONDS = 10

# Only job (re)registrations can change which images are deployed
STREAM_TOPICS = ("Job",)


class StreamEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    topic: str = Field(default="", alias="Topic")
    type: str = Field(default="", alias="Type")
    key: str = Field(default="", alias="Key")
    namespace: str = Field(default="", alias="Namespace")
    index: int = Field(default=0, alias="Index")
    filter_keys: Optional[List[str]] = Field(default=None, alias="FilterKeys")
    payload: Optional[Dict[str, Any]] = Field(default=None, alias="Payload")


class EventBatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    index: int = Field(alias="Index")
    events: List[StreamEvent] = Field(default_factory=list, alias="Events")


class EventStream:
    """
    Listener for the Nomad event stream.

    Args:
        client: shared httpx client
        base_url: Nomad base URL
        notify: called with the new index each time it advances
        token: optional X-Nomad-Token
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        notify: Callable[[int], None],
        token: Optional[str] = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.notify = notify
        self.token = token
        self.index = 0

    def handle_line(self, line: str) -> Optional[int]:
        """
        Process one line of the stream.

        Returns:
            The new index if it advanced, None otherwise
        """
        line = line.strip()
        if len(line) <= 2:
            return None

        try:
            batch = EventBatch.model_validate(json.loads(line))
        except (ValueError, ValidationError) as e:
            logger.error(f"Parsing event batch failed: {e}")
            return None

        for event in batch.events:
            logger.debug(f"Event {event.topic}/{event.type} key={event.key} index={event.index}")

        if batch.index <= self.index:
            return None

        self.index = batch.index
        self.notify(batch.index)
        return batch.index

    async def _listen_once(self):
        headers = {}
        if self.token:
            headers["X-Nomad-Token"] = self.token

        url = f"{self.base_url}/v1/event/stream"
        params = [("index", self.index)] + [("topic", topic) for topic in STREAM_TOPICS]
        async with self.client.stream("GET", url, params=params, headers=headers) as response:
            if not response.is_success:
                logger.error(f"Event stream returned {response.status_code}")
                return
            logger.debug(f"Event stream connected at index {self.index}")
            async for line in response.aiter_lines():
                self.handle_line(line)

    async def listen(self, shutdown_event: asyncio.Event):
        """Listen until shutdown, reconnecting after errors or disconnects."""
        logger.info("Starting event stream listener")
        while not shutdown_event.is_set():
            try:
                await self._listen_once()
            except httpx.HTTPError as e:
                logger.error(f"Event stream error: {e}")

            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=RECONNECT_DELAY_SECONDS)
            except asyncio.TimeoutError:
                pass
        logger.info("Event stream listener stopped")
