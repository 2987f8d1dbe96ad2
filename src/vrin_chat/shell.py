from __future__ import annotations

import asyncio

from loguru import logger

from vrin_chat.chat_session import ChatSessionClient
from vrin_chat.commands.router import CommandRouter, parse_toggle
from vrin_chat.console import StreamPrinter
from vrin_chat.errors import ChatApiError
from vrin_chat.models import RESPONSE_MODES, validate_response_mode
from vrin_chat.services.session_controller import SessionController
from vrin_chat.shell_config import ShellConfig


class ChatShell:
    _LINE_PREFIX = "assistant> "

    def __init__(self, config: ShellConfig):
        self._api = config.api
        self._api_key = config.api_key
        self._history = config.history
        self._response_mode = config.response_mode
        self._streaming_enabled = config.streaming_enabled
        self._web_search_enabled = config.web_search_enabled
        self._run_lock = asyncio.Lock()
        self._turn_task: asyncio.Task | None = None
        self._interrupt_requested = False

        self._printer = StreamPrinter(prefix=self._LINE_PREFIX)
        self._session_controller = SessionController(line_prefix=self._LINE_PREFIX)
        self._client = ChatSessionClient(
            config.api,
            config.api_key,
            store=config.store,
            scheduler=config.scheduler,
            on_render=self._printer.render,
        )

        self._command_router = CommandRouter(
            on_help=self._on_help,
            on_new=self._handle_new_command,
            on_end=self._handle_end_command,
            on_session=self._handle_session_command,
            on_settings=self._handle_settings_command,
            on_history=self._handle_history_command,
            on_upload=self._handle_upload_command,
            on_unknown=self._on_unknown_command,
        )

    @property
    def client(self) -> ChatSessionClient:
        return self._client

    @property
    def response_mode(self) -> str:
        return self._response_mode

    @property
    def streaming_enabled(self) -> bool:
        return self._streaming_enabled

    @property
    def web_search_enabled(self) -> bool:
        return self._web_search_enabled

    async def run(self, user_message: str) -> None:
        async with self._run_lock:
            self._turn_task = asyncio.current_task()
            try:
                if await self._command_router.try_handle(user_message):
                    return
                await self._send(user_message)
            except asyncio.CancelledError:
                if not self._interrupt_requested:
                    raise
                self._turn_task.uncancel()
                self._printer.finish()
                print()
                print(f"{self._LINE_PREFIX}[interrupted]")
            finally:
                self._turn_task = None
                self._interrupt_requested = False

    def interrupt(self) -> None:
        """Ctrl-C: stop the streamed reply, or abandon whatever the turn is awaiting."""
        if self._client.cancel_streaming():
            return
        task = self._turn_task
        if task is None or task.done() or self._interrupt_requested:
            return
        logger.info("Interrupting current turn")
        self._interrupt_requested = True
        task.cancel()

    async def close(self) -> None:
        await self._client.close()

    async def _send(self, text: str) -> None:
        before = len(self._client.messages)
        self._printer.begin()
        await self._client.send_message(
            text,
            self._response_mode,
            streaming_enabled=self._streaming_enabled,
            web_search_enabled=self._web_search_enabled,
        )

        messages = self._client.messages
        reply = messages[-1] if len(messages) > before and messages[-1].role == "assistant" else None
        self._printer.finish(reply.content if reply is not None else None)
        print()

        if self._client.error:
            print(f"{self._LINE_PREFIX}Error: {self._client.error}")
            self._client.clear_error()
            return
        if reply is None:
            print(f"{self._LINE_PREFIX}[cancelled]")
            return

        for line in self._session_controller.format_sources_lines(reply):
            print(line)
        usage = self._session_controller.format_usage_line(reply)
        if usage:
            print(usage)

    # -- commands --

    async def _on_help(self) -> None:
        print(f"{self._LINE_PREFIX}Available commands:")
        print(f"{self._LINE_PREFIX}- /help")
        print(f"{self._LINE_PREFIX}- /new                     start a fresh session")
        print(f"{self._LINE_PREFIX}- /end                     end the current session")
        print(f"{self._LINE_PREFIX}- /session                 show the current session")
        print(f"{self._LINE_PREFIX}- /mode <{'|'.join(RESPONSE_MODES)}>")
        print(f"{self._LINE_PREFIX}- /stream on|off")
        print(f"{self._LINE_PREFIX}- /web on|off")
        print(f"{self._LINE_PREFIX}- /history [limit]")
        print(f"{self._LINE_PREFIX}- /load <session_id>")
        print(f"{self._LINE_PREFIX}- /rename <session_id> <title>")
        print(f"{self._LINE_PREFIX}- /delete <session_id>")
        print(f"{self._LINE_PREFIX}- /upload <path>")
        print(f"{self._LINE_PREFIX}Press Ctrl-C while a reply is streaming to cancel it.")

    def _on_unknown_command(self, trimmed: str) -> None:
        print(f"{self._LINE_PREFIX}Unknown local command: {trimmed}")

    async def _handle_new_command(self, command: str) -> None:
        await self._client.start_new_session()
        if self._client.error:
            print(f"{self._LINE_PREFIX}Error: {self._client.error}")
            self._client.clear_error()
            return
        session = self._client.session
        if session is not None:
            print(f"{self._LINE_PREFIX}Started session {session.session_id}")

    async def _handle_end_command(self, command: str) -> None:
        session = self._client.session
        if session is None:
            print(f"{self._LINE_PREFIX}No active session to end")
            return
        await self._client.end_session()
        print(f"{self._LINE_PREFIX}Ended session {session.session_id}")

    async def _handle_session_command(self, command: str) -> None:
        for line in self._session_controller.format_session_lines(self._client.session, self._client.messages):
            print(line)

    async def _handle_settings_command(self, command: str) -> None:
        parts = command.split()
        name = parts[0]
        if len(parts) != 2:
            current = {
                "/mode": self._response_mode,
                "/stream": "on" if self._streaming_enabled else "off",
                "/web": "on" if self._web_search_enabled else "off",
            }[name]
            print(f"{self._LINE_PREFIX}{name[1:]}: {current}")
            return

        value = parts[1]
        if name == "/mode":
            try:
                self._response_mode = validate_response_mode(value)
            except ValueError as ex:
                print(f"{self._LINE_PREFIX}{ex}")
                return
            print(f"{self._LINE_PREFIX}Response mode: {self._response_mode}")
            return

        toggle = parse_toggle(value)
        if toggle is None:
            print(f"{self._LINE_PREFIX}Usage: {name} on|off")
            return
        if name == "/stream":
            self._streaming_enabled = toggle
        else:
            self._web_search_enabled = toggle
        print(f"{self._LINE_PREFIX}{name[1:]}: {'on' if toggle else 'off'}")

    async def _handle_history_command(self, command: str) -> None:
        if self._history is None:
            print(f"{self._LINE_PREFIX}Conversation history is not configured")
            return
        parts = command.split(maxsplit=2)
        name = parts[0]

        try:
            if name == "/history":
                await self._list_history(parts)
            elif name == "/load":
                await self._load_conversation(parts)
            elif name == "/rename":
                await self._rename_conversation(parts)
            else:
                await self._delete_conversation(parts)
        except (ChatApiError, ValueError) as ex:
            logger.warning(f"{name} failed: {ex}")
            print(f"{self._LINE_PREFIX}{name[1:]} failed: {ex}")

    async def _list_history(self, parts: list[str]) -> None:
        limit = 20
        if len(parts) >= 2:
            try:
                limit = int(parts[1])
            except ValueError:
                print(f"{self._LINE_PREFIX}Usage: /history [limit]")
                return
        items = await self._history.list_conversations(self._api_key, limit=limit)
        if not items:
            print(f"{self._LINE_PREFIX}No conversations found.")
            return
        active = self._client.session.session_id if self._client.session else None
        print(f"{self._LINE_PREFIX}Recent conversations:")
        for item in items:
            print(self._session_controller.format_conversation_entry(item, active_session_id=active))

    async def _load_conversation(self, parts: list[str]) -> None:
        if len(parts) != 2:
            print(f"{self._LINE_PREFIX}Usage: /load <session_id>")
            return
        detail = await self._history.get_conversation(parts[1], self._api_key)
        self._client.load_messages(detail.session_id, detail.messages)
        print(
            f"{self._LINE_PREFIX}Loaded {detail.title} "
            f"[{self._session_controller.short_id(detail.session_id)}] ({len(detail.messages)} messages)"
        )
        for line in self._session_controller.format_transcript_lines(detail.messages):
            print(line)

    async def _rename_conversation(self, parts: list[str]) -> None:
        if len(parts) != 3:
            print(f"{self._LINE_PREFIX}Usage: /rename <session_id> <title>")
            return
        await self._history.update_title(parts[1], parts[2], self._api_key)
        print(f"{self._LINE_PREFIX}Conversation renamed: {parts[2].strip()}")

    async def _delete_conversation(self, parts: list[str]) -> None:
        if len(parts) != 2:
            print(f"{self._LINE_PREFIX}Usage: /delete <session_id>")
            return
        await self._history.delete_conversation(parts[1], self._api_key)
        print(f"{self._LINE_PREFIX}Deleted conversation {parts[1]}")

    async def _handle_upload_command(self, command: str) -> None:
        path = command.partition(" ")[2].strip()
        if not path:
            print(f"{self._LINE_PREFIX}Usage: /upload <path>")
            return
        try:
            result = await self._api.upload_file(path, self._api_key)
        except (ChatApiError, OSError) as ex:
            logger.warning(f"Upload failed for {path}: {ex}")
            print(f"{self._LINE_PREFIX}Upload failed: {ex}")
            return
        print(
            f"{self._LINE_PREFIX}Uploaded {result.get('filename', path)} "
            f"(upload_id={result.get('upload_id')}, status={result.get('status')})"
        )
