from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from vrin_chat.app_config import AppConfig, RuntimeEnv
from vrin_chat.chat_api import ChatApiClient
from vrin_chat.flush_scheduler import AsyncioFlushScheduler
from vrin_chat.history_api import ConversationHistoryClient
from vrin_chat.kv_store import SqliteKeyValueStore
from vrin_chat.logging_config import setup_logging
from vrin_chat.shell import ChatShell
from vrin_chat.shell_config import ShellConfig


@dataclass
class AppRuntime:
    shell: ChatShell
    api: ChatApiClient
    history: ConversationHistoryClient
    store: SqliteKeyValueStore
    log_descriptions: list[str]

    async def close(self) -> None:
        await self.shell.close()
        await self.api.aclose()
        await self.history.aclose()
        self.store.close()


async def bootstrap_runtime(app: AppConfig, env: RuntimeEnv) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)

    store_path = Path(app.session_store_path)
    if not store_path.is_absolute():
        store_path = Path.cwd() / store_path
    store = SqliteKeyValueStore(str(store_path))

    api = ChatApiClient(app.base_url, connect_timeout=app.connect_timeout_seconds)
    history = ConversationHistoryClient(app.conversation_base_url)

    shell = ChatShell(
        ShellConfig(
            api=api,
            api_key=env.api_key,
            history=history,
            store=store,
            scheduler=AsyncioFlushScheduler(app.flush_interval_ms / 1000.0),
            response_mode=app.response_mode,
            streaming_enabled=app.streaming_enabled,
            web_search_enabled=app.web_search_enabled,
        )
    )

    return AppRuntime(
        shell=shell,
        api=api,
        history=history,
        store=store,
        log_descriptions=log_descriptions,
    )
