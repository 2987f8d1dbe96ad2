from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

from vrin_chat.chat_api import DEFAULT_BASE_URL
from vrin_chat.history_api import DEFAULT_CONVERSATION_BASE_URL
from vrin_chat.models import validate_response_mode

API_KEY_ENV_VAR = "VRIN_API_KEY"


@dataclass
class RuntimeEnv:
    api_key: str
    api_key_env_var: str


@dataclass
class AppConfig:
    base_url: str
    conversation_base_url: str
    response_mode: str
    streaming_enabled: bool
    web_search_enabled: bool
    session_store_path: str
    flush_interval_ms: int
    connect_timeout_seconds: float
    log_level: str
    log_consumers: list | None


def load_json_config(path: Path | None = None) -> dict:
    config_path = path or Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        base_url=str(config.get("BaseUrl", DEFAULT_BASE_URL)).strip(),
        conversation_base_url=str(config.get("ConversationBaseUrl", DEFAULT_CONVERSATION_BASE_URL)).strip(),
        response_mode=validate_response_mode(str(config.get("ResponseMode", "chat"))),
        streaming_enabled=_to_bool(config.get("StreamingEnabled", True), default=True),
        web_search_enabled=_to_bool(config.get("WebSearchEnabled", False), default=False),
        session_store_path=str(config.get("SessionStorePath", ".vrin_chat/session.db")),
        flush_interval_ms=max(1, int(config.get("FlushIntervalMs", 16))),
        connect_timeout_seconds=float(config.get("ConnectTimeoutSeconds", 30)),
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )


def resolve_runtime_env() -> RuntimeEnv:
    return RuntimeEnv(
        api_key=os.environ.get(API_KEY_ENV_VAR, "").strip(),
        api_key_env_var=API_KEY_ENV_VAR,
    )
