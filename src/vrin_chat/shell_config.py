from dataclasses import dataclass, field
from typing import Any

from vrin_chat.flush_scheduler import AsyncioFlushScheduler, FlushScheduler
from vrin_chat.kv_store import InMemoryKeyValueStore, KeyValueStore


@dataclass
class ShellConfig:
    api: Any
    api_key: str = ""
    history: Any = None
    store: KeyValueStore = field(default_factory=InMemoryKeyValueStore)
    scheduler: FlushScheduler = field(default_factory=AsyncioFlushScheduler)
    response_mode: str = "chat"
    streaming_enabled: bool = True
    web_search_enabled: bool = False
