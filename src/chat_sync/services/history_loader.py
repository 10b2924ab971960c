from __future__ import annotations

import logging

from chat_sync.application.dto.message import MessagePage
from chat_sync.application.ports.chat_api import ChatApi
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation

logger = logging.getLogger(__name__)


class RestFallbackLoader:
    """Catch-up reads that seed the stores before live events are trusted."""

    def __init__(
        self,
        api: ChatApi,
        *,
        conversations_page_size: int = settings.CONVERSATIONS_PAGE_SIZE,
        history_page_size: int = settings.HISTORY_PAGE_SIZE,
    ) -> None:
        self._api = api
        self._conversations_page_size = conversations_page_size
        self._history_page_size = history_page_size

    async def load_conversations(self) -> list[Conversation]:
        conversations = await self._api.list_conversations(limit=self._conversations_page_size)
        logger.debug("Loaded %d conversations", len(conversations))
        return conversations

    async def fetch_history(self, conversation_id: str, cursor: str | None = None) -> MessagePage:
        page = await self._api.list_messages(
            conversation_id, cursor=cursor, limit=self._history_page_size,
        )
        logger.debug(
            "Fetched %d messages for %s (cursor=%s, more=%s)",
            len(page.messages), conversation_id, cursor, page.has_more,
        )
        return page
