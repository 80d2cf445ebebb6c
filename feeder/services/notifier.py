"""Notification dispatch.

This module sends formatted notifications to a Notebrook channel.
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from feeder.config import DEFAULT_TIMEOUT, FeederConfig, USER_AGENT
from feeder.errors import NotifyError


logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Sends one message; raises NotifyError on failure."""

    async def send(self, message: str) -> None:
        ...


class NotebrookDispatcher:
    """Posts messages to a named Notebrook channel.

    The channel is looked up by name on first use and created if it does not
    exist. Its id is then reused for the lifetime of the dispatcher.
    """

    def __init__(
        self,
        url: str,
        token: str,
        channel: str,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.url = url.rstrip("/")
        self.token = token
        self.channel = channel
        self.timeout = timeout
        self._channel_id: Optional[int] = None

    @classmethod
    def from_config(cls, config: FeederConfig) -> "NotebrookDispatcher":
        config.require_notifier()
        return cls(
            url=config.notebrook_url,
            token=config.notebrook_token,
            channel=config.notebrook_channel,
            timeout=config.http_timeout,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={
                "Authorization": self.token,
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
        )

    async def send(self, message: str) -> None:
        """Send a message to the configured channel.

        Raises:
            NotifyError: If any request fails, times out or is rejected
        """
        async with self._client() as client:
            try:
                channel_id = await self._ensure_channel(client)
                response = await client.post(
                    f"{self.url}/channels/{channel_id}/messages",
                    json={"content": message},
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                raise NotifyError(f"Notification request failed: {e}") from e
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise NotifyError(f"Unexpected Notebrook response: {e}") from e

        if response.status_code == 413:
            raise NotifyError("Notification payload too large")
        if not 200 <= response.status_code < 300:
            raise NotifyError(f"Notification rejected: HTTP {response.status_code}")

    async def _ensure_channel(self, client: httpx.AsyncClient) -> int:
        if self._channel_id is not None:
            return self._channel_id

        channel_id = await self._find_channel_id(client)
        if channel_id is None:
            logger.info(f"Creating Notebrook channel: {self.channel}")
            response = await client.post(
                f"{self.url}/channels/",
                json={"name": self.channel},
            )
            _check_status(response, "create channel")
            channel_id = int(response.json()["id"])

        self._channel_id = channel_id
        return channel_id

    async def _find_channel_id(self, client: httpx.AsyncClient) -> Optional[int]:
        response = await client.get(f"{self.url}/channels")
        _check_status(response, "list channels")

        channels: List[Dict[str, Any]] = response.json().get("channels", [])
        for channel in channels:
            if channel.get("name") == self.channel:
                return int(channel["id"])
        return None


def _check_status(response: httpx.Response, action: str) -> None:
    if not 200 <= response.status_code < 300:
        raise NotifyError(f"Failed to {action}: HTTP {response.status_code}")
