from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from dataclasses import dataclass, field

from loguru import logger

_DATA_PREFIX = "data: "
_DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class MetadataEvent:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ContentDelta:
    text: str


@dataclass(frozen=True)
class ReasoningEvent:
    text: str


@dataclass(frozen=True)
class DoneEvent:
    data: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ErrorEvent:
    message: str


StreamEvent = MetadataEvent | ContentDelta | ReasoningEvent | DoneEvent | ErrorEvent


def decode_event(raw: dict) -> StreamEvent | None:
    """Map one decoded SSE JSON object onto a tagged event. Returns None to drop it."""
    event_type = raw.get("type")
    data = raw.get("data")
    if not isinstance(data, dict):
        data = {}

    if event_type == "metadata":
        return MetadataEvent(data)

    if event_type == "content":
        delta = data.get("delta") or raw.get("delta")
        if not delta:
            return None
        return ContentDelta(str(delta))

    if event_type == "reasoning":
        text = data.get("content")
        if not text:
            return None
        return ReasoningEvent(str(text))

    if event_type == "done":
        merged = dict(data)
        for key in ("reasoning_tokens", "total_tokens"):
            if raw.get(key) is not None:
                merged.setdefault(key, raw[key])
        return DoneEvent(merged)

    if event_type == "error":
        return ErrorEvent(str(data.get("message") or raw.get("message") or "Streaming error"))

    logger.debug(f"Ignoring unknown stream event type: {event_type!r}")
    return None


def parse_sse_line(line: str) -> StreamEvent | None:
    line = line.rstrip("\r")
    if not line.strip() or line.startswith(":"):
        return None
    if not line.startswith(_DATA_PREFIX):
        return None

    payload = line[len(_DATA_PREFIX):].strip()
    if payload == _DONE_SENTINEL:
        return None

    try:
        raw = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse SSE event: {payload[:200]!r}")
        return None
    if not isinstance(raw, dict):
        logger.warning(f"Unexpected SSE payload: {payload[:200]!r}")
        return None
    return decode_event(raw)


def iter_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    for line in lines:
        event = parse_sse_line(line)
        if event is not None:
            yield event


async def aiter_events(lines: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    async for line in lines:
        event = parse_sse_line(line)
        if event is not None:
            yield event
