"""Forwarding of sent chat messages to a persistent chat service."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import aiohttp

from areasync.config import ChatArchiveConfig
from areasync.exceptions import ChatArchiveError

_logger = logging.getLogger(__name__)


class ChatArchive(Protocol):
    """Structural interface for the persistent chat collaborator.

    The engine only needs a single coroutine, so tests can pass any object
    with a matching ``post_message``.
    """

    async def post_message(self, player_id: str, text: str, player_name: str) -> None:
        ...


class HttpChatArchive:
    """POSTs ``{playerId, text, playerName}`` to ``<base_url>/message``."""

    def __init__(
        self,
        config: ChatArchiveConfig,
        *,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session

    async def __aenter__(self) -> HttpChatArchive:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None

    @property
    def url(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/message"

    async def post_message(self, player_id: str, text: str, player_name: str) -> None:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
            self._external_session = False

        body = json.dumps({"playerId": player_id, "text": text, "playerName": player_name})
        headers = {"content-type": "application/json; charset=UTF-8"}
        timeout = aiohttp.ClientTimeout(total=self._config.timeout)

        _logger.debug("POST %s", self.url)

        try:
            async with self._http_session.post(self.url, data=body, headers=headers, timeout=timeout) as resp:
                if resp.status >= 300:
                    text_body = await resp.text()
                    raise ChatArchiveError(
                        f"HTTP {resp.status} from chat archive: {text_body[:200]}",
                        status_code=resp.status,
                    )
        except ChatArchiveError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ChatArchiveError(f"Chat archive request failed: {exc}") from exc
