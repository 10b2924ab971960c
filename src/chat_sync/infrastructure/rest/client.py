"""httpx-based implementation of the ChatApi port."""
from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import httpx
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaError

from chat_sync.application.dto.message import MessagePage
from chat_sync.application.exceptions import (
    AppError,
    InvalidResponseError,
    NotFoundError,
    TransientNetworkError,
    ValidationError,
)
from chat_sync.config import settings
from chat_sync.domain.entities.conversation import Conversation
from chat_sync.domain.entities.message import Message
from chat_sync.infrastructure.rest.mappers import (
    conversation_to_entity,
    message_to_entity,
    page_to_dto,
)
from chat_sync.infrastructure.rest.schemas import (
    ConversationSchema,
    MessagePageSchema,
    MessageSchema,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

_conversation_list = TypeAdapter(list[ConversationSchema])

T = TypeVar("T")


class HttpChatApi:
    """Implements application.ports.chat_api.ChatApi."""

    def __init__(
        self,
        base_url: str,
        token: str,
        local_user_id: str,
        *,
        timeout: float = settings.REST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._local_user_id = local_user_id
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_conversations(self, *, limit: int = 20) -> list[Conversation]:
        data = await self._request("GET", "/conversations", params={"limit": limit})
        schemas = _parse(_conversation_list.validate_python, data, "conversation list")
        return [conversation_to_entity(c) for c in schemas]

    async def list_messages(
        self,
        conversation_id: str,
        *,
        cursor: str | None = None,
        limit: int = 50,
    ) -> MessagePage:
        params: dict[str, Any] = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        data = await self._request(
            "GET", f"/conversations/{conversation_id}/messages", params=params,
        )
        page = _parse(MessagePageSchema.model_validate, data, "message page")
        return page_to_dto(page, self._local_user_id)

    async def send_message(
        self,
        conversation_id: str,
        content: str,
        attachments: tuple[str, ...] = (),
    ) -> Message:
        body = SendMessageRequest(content=content, attachments=list(attachments) or None)
        data = await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json=body.model_dump(by_alias=True, exclude_none=True),
        )
        message = _parse(MessageSchema.model_validate, data, "message")
        return message_to_entity(message, self._local_user_id)

    async def mark_read(self, conversation_id: str) -> None:
        await self._request("POST", f"/conversations/{conversation_id}/read")

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.debug("%s %s -> %d %s", method, path, response.status_code, detail)
            if response.status_code == 404:
                raise NotFoundError(detail)
            if response.status_code in (400, 422):
                raise ValidationError(detail)
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientNetworkError(detail)
            raise AppError(detail)

        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise InvalidResponseError("Malformed response from server") from exc
        # Routes may wrap their result as {"success": ..., "data": ...}
        if isinstance(payload, dict) and "success" in payload:
            if not payload["success"]:
                raise AppError(str(payload.get("message") or payload.get("error") or "Request failed"))
            return payload.get("data")
        return payload


def _parse(validate: Callable[[Any], T], data: Any, what: str) -> T:
    try:
        return validate(data)
    except SchemaError as exc:
        logger.warning("Malformed %s from server (%d errors)", what, exc.error_count())
        raise InvalidResponseError(f"Malformed {what} from server") from exc


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase
