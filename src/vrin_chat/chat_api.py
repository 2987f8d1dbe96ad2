from __future__ import annotations

import mimetypes
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Protocol, runtime_checkable
from uuid import uuid4

import httpx
from loguru import logger

from vrin_chat.errors import ChatApiError, raise_for_message
from vrin_chat.models import SendMessageRequest, SendMessageResponse, Source
from vrin_chat.stream_events import StreamEvent, aiter_events

DEFAULT_BASE_URL = "https://43tybsfy52ehi3fctubc7jwlpi0fgkcz.lambda-url.us-east-1.on.aws"

_QUERY_PATH = "/query"
_START_PATH = "/chat/start"
_END_PATH = "/chat/end"
_UPLOAD_PATH = "/chat/upload"


@runtime_checkable
class ChatBackend(Protocol):
    async def start_conversation(self, api_key: str, initial_context: str | None = None) -> dict: ...

    async def end_conversation(self, session_id: str, api_key: str) -> dict: ...

    async def send_message(self, request: SendMessageRequest, api_key: str) -> SendMessageResponse: ...

    def stream_message(self, request: SendMessageRequest, api_key: str) -> AsyncIterator[StreamEvent]:
        """Streamed send. Raises SessionExpiredError for a stale session id."""
        ...


def mask_key(api_key: str) -> str:
    if len(api_key) <= 8:
        return "***"
    return api_key[:6] + "..."


def auth_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


def raise_for_response(response: httpx.Response) -> None:
    """Raise ChatApiError (or SessionExpiredError) for a non-2xx response.

    The response body must already be read.
    """
    if not response.is_error:
        return

    message = f"API Error: {response.status_code} {response.reason_phrase}"
    text = response.text
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        message = str(body.get("error") or body.get("message") or message)
    elif text:
        message = text

    logger.debug(f"API error: status={response.status_code}, message={message[:200]!r}")
    raise_for_message(message, status_code=response.status_code)


class ChatApiClient:
    """Client for the chat backend: session start/end and message sends.

    Reads have no client-side timeout so that a long-running generation is
    never cut off; only the connect phase is bounded.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        connect_timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(None, connect=connect_timeout),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def start_conversation(self, api_key: str, initial_context: str | None = None) -> dict:
        response = await self._client.post(
            _START_PATH,
            headers=auth_headers(api_key),
            json={"initial_context": initial_context},
        )
        raise_for_response(response)
        data = response.json()
        if not data.get("session_id"):
            raise ChatApiError("Backend did not return a session id")
        logger.debug(f"Conversation started: session={data['session_id']}")
        return data

    async def end_conversation(self, session_id: str, api_key: str) -> dict:
        response = await self._client.post(
            _END_PATH,
            headers=auth_headers(api_key),
            json={"session_id": session_id},
        )
        raise_for_response(response)
        return response.json()

    async def send_message(self, request: SendMessageRequest, api_key: str) -> SendMessageResponse:
        payload = request.to_payload(stream=False)
        logger.debug(
            f"Chat request: key={mask_key(api_key)}, session={request.session_id or 'new'}, "
            f"mode={request.response_mode}, web_search={request.web_search_enabled}"
        )
        response = await self._client.post(_QUERY_PATH, headers=auth_headers(api_key), json=payload)
        raise_for_response(response)
        data = response.json()

        result = SendMessageResponse(
            session_id=data.get("session_id") or f"session-{uuid4()}",
            conversation_turn=int(data.get("conversation_turn") or 1),
            message=data.get("summary") or data.get("message") or "",
            response_mode=data.get("response_mode") or request.response_mode,
            sources=[Source.from_dict(s) for s in data.get("sources") or [] if isinstance(s, dict)],
            metadata=dict(data.get("metadata") or {}),
            expert_analysis=data.get("expert_analysis"),
        )
        logger.debug(
            f"Chat response: session={result.session_id}, turn={result.conversation_turn}, "
            f"chars={len(result.message)}, sources={len(result.sources)}"
        )
        return result

    async def stream_message(self, request: SendMessageRequest, api_key: str) -> AsyncIterator[StreamEvent]:
        """Yield decoded stream events in arrival order.

        Cancelling the task that iterates this generator closes the response.
        """
        payload = request.to_payload(stream=True)
        headers = {**auth_headers(api_key), "Accept": "text/event-stream"}
        logger.debug(
            f"Streaming request: key={mask_key(api_key)}, session={request.session_id or 'new'}, "
            f"mode={request.response_mode}"
        )
        async with self._client.stream("POST", _QUERY_PATH, headers=headers, json=payload) as response:
            if response.is_error:
                await response.aread()
                raise_for_response(response)
            async for event in aiter_events(response.aiter_lines()):
                yield event

    async def upload_file(self, path: str | Path, api_key: str) -> dict:
        file_path = Path(path)
        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")
        mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
        logger.info(f"Uploading {file_path.name} ({file_path.stat().st_size / 1024:.1f} KB, {mime_type})")

        response = await self._client.post(
            _UPLOAD_PATH,
            headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
            files={"file": (file_path.name, file_path.read_bytes(), mime_type)},
        )
        raise_for_response(response)
        return response.json()

    async def get_upload_status(self, upload_id: str, api_key: str) -> dict:
        response = await self._client.get(
            f"{_UPLOAD_PATH}/{upload_id}/status",
            headers=auth_headers(api_key),
        )
        raise_for_response(response)
        return response.json()
