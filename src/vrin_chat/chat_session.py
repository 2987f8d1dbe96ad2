from __future__ import annotations

import asyncio
from collections.abc import Callable
from contextlib import aclosing

from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_none

from vrin_chat.chat_api import ChatBackend
from vrin_chat.errors import ChatApiError, SessionExpiredError, raise_for_message
from vrin_chat.flush_scheduler import AsyncioFlushScheduler, FlushScheduler
from vrin_chat.kv_store import SESSION_ID_KEY, InMemoryKeyValueStore, KeyValueStore
from vrin_chat.models import (
    ChatMessage,
    ChatSession,
    SendMessageRequest,
    Source,
    new_message_id,
    now_ts,
    sources_from_metadata,
)
from vrin_chat.stream_events import ContentDelta, DoneEvent, ErrorEvent, MetadataEvent, ReasoningEvent

MISSING_API_KEY_ERROR = "API key is required"


class StreamCancelled(Exception):
    """The user aborted an in-flight streaming send."""


def expiry_retry_kwargs(on_expired: Callable) -> dict:
    # One extra attempt, only for a stale session id.
    return {
        "retry": retry_if_exception_type(SessionExpiredError),
        "wait": wait_none(),
        "stop": stop_after_attempt(2),
        "before_sleep": on_expired,
        "reraise": True,
    }


class ChatSessionClient:
    """Owns one chat conversation: session continuity, sends, streaming and cancellation.

    State is read through properties. ``on_change`` fires after every state
    transition; ``on_render`` receives the visible streaming text each time the
    flush scheduler samples the buffer.
    """

    def __init__(
        self,
        api: ChatBackend,
        api_key: str,
        *,
        store: KeyValueStore | None = None,
        scheduler: FlushScheduler | None = None,
        on_change: Callable[[], None] | None = None,
        on_render: Callable[[str], None] | None = None,
    ):
        self._api = api
        self._api_key = api_key
        self._store = store if store is not None else InMemoryKeyValueStore()
        self._scheduler = scheduler if scheduler is not None else AsyncioFlushScheduler()
        self._on_change = on_change
        self._on_render = on_render

        self._session: ChatSession | None = None
        self._messages: list[ChatMessage] = []
        self._is_loading = False
        self._is_streaming = False
        self._streaming_content = ""
        self._error: str | None = None

        self._buffer = ""
        self._render_active = False
        self._stream_task: asyncio.Task | None = None
        self._abort_requested = False

        if self._api_key:
            self.restore()

    # -- state --

    @property
    def session(self) -> ChatSession | None:
        return self._session

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_streaming(self) -> bool:
        return self._is_streaming

    @property
    def streaming_content(self) -> str:
        return self._streaming_content

    @property
    def error(self) -> str | None:
        return self._error

    # -- operations --

    def restore(self) -> None:
        saved_session_id = self._store.get(SESSION_ID_KEY)
        if not saved_session_id:
            logger.debug("No saved session found, starting fresh")
            return
        self._session = ChatSession(session_id=saved_session_id)
        logger.info(f"Restored session {saved_session_id}")
        self._notify()

    async def start_new_session(self) -> None:
        if not self._api_key:
            self._set_error(MISSING_API_KEY_ERROR)
            return

        self._is_loading = True
        self._error = None
        self._clear_session_state()
        self._notify()

        try:
            data = await self._api.start_conversation(self._api_key)
            self._session = ChatSession(session_id=data["session_id"])
            self._store.set(SESSION_ID_KEY, self._session.session_id)
            logger.info(f"Started session {self._session.session_id}")
        except Exception as ex:
            logger.error(f"Failed to start session: {ex}")
            self._error = str(ex) or "Failed to start new conversation"
        finally:
            self._is_loading = False
            self._notify()

    async def send_message(
        self,
        text: str,
        mode: str = "chat",
        streaming_enabled: bool = True,
        web_search_enabled: bool = False,
    ) -> None:
        if not self._api_key:
            self._set_error(MISSING_API_KEY_ERROR)
            return
        if not text.strip():
            logger.debug("Empty message, ignoring")
            return

        self._is_loading = True
        self._error = None
        undo = self._append_optimistic(ChatMessage.user(text))
        self._notify()

        logger.debug(
            f"Sending message: session={self._session.session_id if self._session else 'new'}, "
            f"mode={mode}, streaming={streaming_enabled}, web_search={web_search_enabled}"
        )

        try:
            async for attempt in AsyncRetrying(**expiry_retry_kwargs(self._on_session_expired)):
                with attempt:
                    request = SendMessageRequest(
                        message=text,
                        session_id=self._session.session_id if self._session else None,
                        response_mode=mode,
                        web_search_enabled=web_search_enabled,
                    )
                    if streaming_enabled:
                        await self._send_streaming(request)
                    else:
                        await self._send_blocking(request)
        except StreamCancelled:
            logger.info("Streaming cancelled by user")
            self._error = None
        except Exception as ex:
            logger.error(f"Failed to send message: {ex}")
            self._error = str(ex) or "Failed to send message"
            undo()
        finally:
            self._teardown_streaming()
            self._is_loading = False
            self._notify()

    def cancel_streaming(self) -> bool:
        """Abort the in-flight stream. Returns False when nothing was streaming."""
        if self._stream_task is None or self._stream_task.done():
            return False
        logger.info("Cancelling streaming...")
        self._abort_requested = True
        self._stream_task.cancel()
        self._teardown_streaming()
        self._is_loading = False
        self._notify()
        return True

    async def end_session(self) -> None:
        if self._session is None:
            return

        session_id = self._session.session_id
        if self._api_key:
            try:
                await self._api.end_conversation(session_id, self._api_key)
            except Exception as ex:
                logger.warning(f"Failed to end session {session_id}: {ex}")

        self._clear_session_state()
        logger.info(f"Ended session {session_id}")
        self._notify()

    def load_messages(self, session_id: str, messages: list[ChatMessage]) -> None:
        turn = sum(1 for m in messages if m.role == "user")
        self._session = ChatSession(session_id=session_id, conversation_turn=turn)
        self._messages = list(messages)
        self._store.set(SESSION_ID_KEY, session_id)
        logger.info(f"Loaded {len(messages)} messages into session {session_id}")
        self._notify()

    def clear_error(self) -> None:
        self._error = None
        self._notify()

    async def close(self) -> None:
        self.cancel_streaming()
        task = self._stream_task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        self._scheduler.cancel_flush()

    # -- send paths --

    async def _send_blocking(self, request: SendMessageRequest) -> None:
        response = await self._api.send_message(request, self._api_key)
        self._reconcile_session(response.session_id, response.conversation_turn)
        self._messages.append(
            ChatMessage(
                id=new_message_id("assistant"),
                role="assistant",
                content=response.message,
                timestamp=now_ts(),
                sources=list(response.sources),
                metadata=dict(response.metadata),
                expert_analysis=response.expert_analysis,
            )
        )

    async def _send_streaming(self, request: SendMessageRequest) -> None:
        self._abort_requested = False
        self._stream_task = asyncio.create_task(self._consume_stream(request))
        try:
            await self._stream_task
        except asyncio.CancelledError:
            if self._abort_requested:
                raise StreamCancelled() from None
            raise
        finally:
            self._stream_task = None

    async def _consume_stream(self, request: SendMessageRequest) -> None:
        self._buffer = ""
        self._streaming_content = ""
        session_id = request.session_id
        turn: int | None = None
        metadata: dict = {}
        sources: list[Source] = []
        expert_analysis = None
        reasoning_summary: str | None = None
        chunk_count = 0

        async with aclosing(self._api.stream_message(request, self._api_key)) as events:
            async for event in events:
                if isinstance(event, MetadataEvent):
                    data = event.data
                    metadata.update(data)
                    if isinstance(data.get("reasoning_metadata"), dict):
                        metadata.update(data["reasoning_metadata"])
                    session_id = data.get("session_id") or session_id
                    if data.get("conversation_turn"):
                        turn = int(data["conversation_turn"])
                    sources = sources_from_metadata(data) or sources
                    expert_analysis = data.get("expert_analysis", expert_analysis)
                    reasoning_summary = data.get("reasoning_summary") or reasoning_summary
                    logger.debug(f"Stream metadata: keys={sorted(data)}")

                elif isinstance(event, ContentDelta):
                    chunk_count += 1
                    if not self._render_active:
                        self._start_render_loop()
                    self._buffer += event.text

                elif isinstance(event, ReasoningEvent):
                    reasoning_summary = event.text

                elif isinstance(event, DoneEvent):
                    self._stop_render_loop()
                    metadata.update(event.data)
                    if reasoning_summary:
                        metadata["reasoning_summary"] = reasoning_summary
                    session_id = event.data.get("session_id") or session_id
                    if turn is None:
                        turn = (self._session.conversation_turn if self._session else 0) + 1
                    self._reconcile_session(session_id, turn)
                    self._messages.append(
                        ChatMessage(
                            id=new_message_id("assistant"),
                            role="assistant",
                            content=self._buffer,
                            timestamp=now_ts(),
                            sources=sources,
                            metadata=metadata,
                            expert_analysis=expert_analysis,
                        )
                    )
                    logger.debug(f"Stream complete: chunks={chunk_count}, chars={len(self._buffer)}")
                    self._teardown_streaming()
                    return

                elif isinstance(event, ErrorEvent):
                    raise_for_message(event.message)

        raise ChatApiError("Stream ended before completion")

    # -- expiry recovery --

    def _on_session_expired(self, retry_state) -> None:
        stale = self._session.session_id if self._session else None
        logger.warning(f"Session {stale} not found or expired, retrying without a session id")
        self._store.remove(SESSION_ID_KEY)
        self._session = None
        self._teardown_streaming()
        self._is_loading = True
        self._notify()

    # -- streaming buffer rendering --

    def _start_render_loop(self) -> None:
        self._is_loading = False
        self._is_streaming = True
        self._render_active = True
        self._scheduler.schedule_flush(self._render_frame)
        self._notify()

    def _render_frame(self) -> None:
        if not self._render_active:
            return
        self._streaming_content = self._buffer
        if self._on_render is not None:
            self._on_render(self._streaming_content)
        self._scheduler.schedule_flush(self._render_frame)

    def _stop_render_loop(self) -> None:
        self._render_active = False
        self._scheduler.cancel_flush()

    def _teardown_streaming(self) -> None:
        self._stop_render_loop()
        self._buffer = ""
        self._streaming_content = ""
        self._is_streaming = False

    # -- helpers --

    def _append_optimistic(self, message: ChatMessage) -> Callable[[], None]:
        self._messages.append(message)

        def undo() -> None:
            self._messages = [m for m in self._messages if m.id != message.id]

        return undo

    def _reconcile_session(self, session_id: str | None, turn: int) -> None:
        if not session_id:
            return
        if self._session is None or self._session.session_id != session_id:
            self._session = ChatSession(session_id=session_id, conversation_turn=turn)
            self._store.set(SESSION_ID_KEY, session_id)
            logger.info(f"Session established: {session_id}")
        else:
            self._session.touch(turn)

    def _clear_session_state(self) -> None:
        self._store.remove(SESSION_ID_KEY)
        self._session = None
        self._messages = []

    def _set_error(self, message: str) -> None:
        logger.error(message)
        self._error = message
        self._notify()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
