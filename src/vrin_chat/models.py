from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

RESPONSE_MODES = ("chat", "expert", "raw_facts", "brainstorm")
MESSAGE_ROLES = ("user", "assistant", "system")


def now_ts() -> float:
    return time.time()


def new_message_id(role: str) -> str:
    return f"{role}-{uuid4().hex[:12]}"


def parse_confidence(value: Any) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def validate_response_mode(mode: str) -> str:
    normalized = mode.strip().lower()
    if normalized not in RESPONSE_MODES:
        raise ValueError(f"Unknown response mode: {mode!r}. Supported: {', '.join(RESPONSE_MODES)}")
    return normalized


@dataclass(frozen=True)
class Source:
    content: str
    type: str
    confidence: float | None = None
    source_id: str | None = None
    metadata: dict | None = None

    @classmethod
    def from_dict(cls, data: dict) -> Source:
        return cls(
            content=str(data.get("content") or data.get("text") or data.get("document_name") or ""),
            type=str(data.get("type", "document")),
            confidence=parse_confidence(data.get("confidence")),
            source_id=data.get("source_id") or data.get("document_id"),
            metadata=data.get("metadata"),
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"content": self.content, "type": self.type}
        if self.confidence is not None:
            result["confidence"] = self.confidence
        if self.source_id is not None:
            result["source_id"] = self.source_id
        if self.metadata is not None:
            result["metadata"] = self.metadata
        return result


def sources_from_metadata(metadata: dict) -> list[Source]:
    """Build sources from a RAG metadata payload.

    Graph facts become ``fact`` sources and vector hits become ``chunk``
    sources. When neither is present the payload's plain ``sources`` list is
    used instead.
    """
    sources: list[Source] = []
    for fact in metadata.get("graph_facts") or []:
        sources.append(
            Source(
                content=f"{fact.get('subject', '')} {fact.get('predicate', '')} {fact.get('object', '')}".strip(),
                type="fact",
                confidence=parse_confidence(fact.get("confidence")),
                source_id=fact.get("source_id"),
            )
        )
    for chunk in metadata.get("vector_results") or []:
        sources.append(
            Source(
                content=str(chunk.get("content") or chunk.get("text") or ""),
                type="chunk",
                metadata=chunk.get("metadata"),
            )
        )
    if sources:
        return sources
    return [Source.from_dict(s) for s in metadata.get("sources") or [] if isinstance(s, dict)]


@dataclass(frozen=True)
class ChatMessage:
    id: str
    role: str
    content: str
    timestamp: float
    sources: list[Source] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    expert_analysis: Any = None

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(id=new_message_id("user"), role="user", content=content, timestamp=now_ts())

    @classmethod
    def from_dict(cls, data: dict) -> ChatMessage:
        role = str(data.get("role", "assistant"))
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=str(data.get("id") or new_message_id(role)),
            role=role,
            content=str(data.get("content", "")),
            timestamp=_parse_timestamp(data.get("timestamp")),
            sources=[Source.from_dict(s) for s in data.get("sources") or [] if isinstance(s, dict)],
            metadata=dict(data.get("metadata") or {}),
            expert_analysis=data.get("expert_analysis"),
        )

    def to_dict(self) -> dict:
        result: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        if self.sources:
            result["sources"] = [s.to_dict() for s in self.sources]
        if self.metadata:
            result["metadata"] = self.metadata
        if self.expert_analysis is not None:
            result["expert_analysis"] = self.expert_analysis
        return result


@dataclass
class ChatSession:
    session_id: str
    conversation_turn: int = 0
    created_at: float = field(default_factory=now_ts)
    last_activity: float = field(default_factory=now_ts)

    def touch(self, conversation_turn: int | None = None) -> None:
        if conversation_turn is not None:
            self.conversation_turn = conversation_turn
        self.last_activity = now_ts()


@dataclass(frozen=True)
class SendMessageRequest:
    message: str
    session_id: str | None = None
    include_sources: bool = True
    response_mode: str = "chat"
    web_search_enabled: bool = False

    def to_payload(self, *, stream: bool) -> dict:
        return {
            "query": self.message,
            "session_id": self.session_id,
            "include_sources": self.include_sources,
            "response_mode": self.response_mode,
            "web_search_enabled": self.web_search_enabled,
            "stream": stream,
        }


@dataclass(frozen=True)
class SendMessageResponse:
    session_id: str
    conversation_turn: int
    message: str
    response_mode: str = "chat"
    sources: list[Source] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)
    expert_analysis: Any = None


def _parse_timestamp(value: Any) -> float:
    if value is None or value == "":
        return now_ts()
    if isinstance(value, (int, float)):
        # Millisecond epochs come from browser-side transcripts.
        return float(value) / 1000.0 if value > 1e11 else float(value)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).timestamp()
    except ValueError:
        return now_ts()
