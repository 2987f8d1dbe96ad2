import re
import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_BEARER_PATTERN = re.compile(r"(Bearer\s+)([A-Za-z0-9_\-\.]{6})[A-Za-z0-9_\-\.]+")


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, stream: str = "stderr", colorize: bool | None = None):
        self._stream = sys.stdout if stream == "stdout" else sys.stderr
        self._stream_name = "stdout" if stream == "stdout" else "stderr"
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(
            self._stream,
            level=level,
            colorize=self._colorize,
            format="<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
        )

    def describe(self, level: str) -> str:
        return f"console ({self._stream_name}, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = ".vrin_chat/vrin_chat.log",
        rotation: str = "5 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = path
        self._rotation = rotation
        self._retention = retention
        self._serialize = serialize

    def register(self, level: str) -> None:
        Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            self._path,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}",
            rotation=self._rotation,
            retention=self._retention,
            serialize=self._serialize,
        )

    def describe(self, level: str) -> str:
        kind = "jsonl" if self._serialize else "text"
        return f"file ({self._path}, {kind}, {level})"


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def redact_secrets(message: str) -> str:
    """Shorten bearer tokens so that API keys never reach a sink in full."""
    return _BEARER_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}...", message)


def _patch_record(record: dict) -> None:
    record["message"] = redact_secrets(record["message"])


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Configure logging sinks. Returns a description of each registered consumer."""
    logger.remove()
    logger.configure(patcher=_patch_record)

    if consumers is None:
        consumers = _DEFAULT_CONSUMERS

    descriptions: list[str] = []

    for config in consumers:
        sink_type = config.get("type", "")
        cls = _CONSUMER_TYPES.get(sink_type)
        if cls is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        sink_level = config.get("level", level)

        consumer = cls(**kwargs)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    return descriptions
