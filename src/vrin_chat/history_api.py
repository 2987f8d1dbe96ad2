from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

import httpx
from loguru import logger

from vrin_chat.chat_api import auth_headers, raise_for_response
from vrin_chat.models import ChatMessage

DEFAULT_CONVERSATION_BASE_URL = "https://rthl3rcg2b.execute-api.us-east-1.amazonaws.com/Stage"
_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class ConversationSummary:
    session_id: str
    title: str
    created_at: str
    last_updated: str
    turn_count: int
    message_count: int
    preview: str
    is_active: bool


@dataclass(frozen=True)
class ConversationDetail:
    session_id: str
    title: str
    messages: list[ChatMessage]
    turn_count: int
    created_at: str
    last_updated: str


def _sort_key(item: ConversationSummary) -> float:
    try:
        return datetime.fromisoformat(item.last_updated.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class ConversationHistoryClient:
    """Reads and manages past conversations kept by the history service."""

    def __init__(
        self,
        base_url: str = DEFAULT_CONVERSATION_BASE_URL,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def list_conversations(self, api_key: str, *, limit: int = 50, offset: int = 0) -> list[ConversationSummary]:
        response = await self._client.get(
            "/conversations",
            headers=auth_headers(api_key),
            params={"limit": max(1, limit), "offset": max(0, offset)},
        )
        raise_for_response(response)
        raw_items = response.json().get("conversations") or []

        items = [
            ConversationSummary(
                session_id=str(raw["session_id"]),
                title=str(raw.get("title") or raw["session_id"]),
                created_at=str(raw.get("created_at", "")),
                last_updated=str(raw.get("last_updated", "")),
                turn_count=int(raw.get("turn_count") or 0),
                message_count=int(raw.get("message_count") or 0),
                preview=str(raw.get("preview", "")),
                is_active=bool(raw.get("is_active", False)),
            )
            for raw in raw_items
        ]
        items.sort(key=_sort_key, reverse=True)
        logger.debug(f"Loaded {len(items)} conversations")
        return items

    async def get_conversation(self, session_id: str, api_key: str) -> ConversationDetail:
        response = await self._client.get(f"/conversations/{session_id}", headers=auth_headers(api_key))
        raise_for_response(response)
        data = response.json()

        messages: list[ChatMessage] = []
        for index, raw in enumerate(data.get("messages") or []):
            role = raw.get("role", "assistant")
            messages.append(ChatMessage.from_dict({"id": f"{role}-{session_id}-{index}", **raw}))

        return ConversationDetail(
            session_id=str(data.get("session_id") or session_id),
            title=str(data.get("title") or session_id),
            messages=messages,
            turn_count=int(data.get("turn_count") or 0),
            created_at=str(data.get("created_at", "")),
            last_updated=str(data.get("last_updated", "")),
        )

    async def update_title(self, session_id: str, title: str, api_key: str) -> dict:
        if not title.strip():
            raise ValueError("Title cannot be empty")
        response = await self._client.put(
            f"/conversations/{session_id}/title",
            headers=auth_headers(api_key),
            json={"title": title.strip()},
        )
        raise_for_response(response)
        return response.json()

    async def delete_conversation(self, session_id: str, api_key: str) -> dict:
        response = await self._client.delete(f"/conversations/{session_id}", headers=auth_headers(api_key))
        raise_for_response(response)
        logger.info(f"Deleted conversation {session_id}")
        return response.json()
