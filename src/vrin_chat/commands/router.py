from __future__ import annotations

from collections.abc import Awaitable, Callable

CommandHandler = Callable[[str], Awaitable[None]]


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_new: CommandHandler,
        on_end: CommandHandler,
        on_session: CommandHandler,
        on_settings: CommandHandler,
        on_history: CommandHandler,
        on_upload: CommandHandler,
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_unknown = on_unknown
        self._handlers: dict[str, CommandHandler] = {
            "/new": on_new,
            "/end": on_end,
            "/session": on_session,
            "/mode": on_settings,
            "/stream": on_settings,
            "/web": on_settings,
            "/history": on_history,
            "/load": on_history,
            "/rename": on_history,
            "/delete": on_history,
            "/upload": on_upload,
        }

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        if trimmed == "/help":
            await self._on_help()
            return True

        name = trimmed.split(maxsplit=1)[0]
        handler = self._handlers.get(name)
        if handler is None:
            self._on_unknown(trimmed)
            return True

        await handler(trimmed)
        return True


def parse_toggle(value: str) -> bool | None:
    lowered = value.strip().lower()
    if lowered in {"on", "true", "yes", "1"}:
        return True
    if lowered in {"off", "false", "no", "0"}:
        return False
    return None
