from __future__ import annotations

from datetime import datetime

from vrin_chat.history_api import ConversationSummary
from vrin_chat.models import ChatMessage, ChatSession


class SessionController:
    def __init__(self, *, line_prefix: str, short_id_len: int = 8, max_sources: int = 5):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self._max_sources = max_sources

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_session_lines(self, session: ChatSession | None, messages: list[ChatMessage]) -> list[str]:
        if session is None:
            return [f"{self._line_prefix}No active session (one is created on the next message)."]
        user_count = sum(1 for m in messages if m.role == "user")
        assistant_count = sum(1 for m in messages if m.role == "assistant")
        return [
            f"{self._line_prefix}Session: {session.session_id}",
            f"{self._line_prefix}- Turn: {session.conversation_turn}",
            f"{self._line_prefix}- Started: {_format_ts(session.created_at)} | "
            f"Last activity: {_format_ts(session.last_activity)}",
            f"{self._line_prefix}- Messages: {len(messages)} (user={user_count}, assistant={assistant_count})",
        ]

    def format_conversation_entry(self, item: ConversationSummary, *, active_session_id: str | None) -> str:
        marker = "*" if item.session_id == active_session_id else " "
        return (
            f"{self._line_prefix}{marker} {item.title} [{self.short_id(item.session_id)}] "
            f"(id={item.session_id}) (turns={item.turn_count}, messages={item.message_count}, "
            f"updated={item.last_updated or '-'})"
        )

    def format_sources_lines(self, message: ChatMessage) -> list[str]:
        if not message.sources:
            return []
        lines = [f"{self._line_prefix}Sources ({len(message.sources)}):"]
        for source in message.sources[: self._max_sources]:
            confidence = f" ({source.confidence:.0%})" if source.confidence is not None else ""
            lines.append(f"{self._line_prefix}- [{source.type}] {_preview(source.content)}{confidence}")
        hidden = len(message.sources) - self._max_sources
        if hidden > 0:
            lines.append(f"{self._line_prefix}  ... and {hidden} more")
        return lines

    def format_usage_line(self, message: ChatMessage) -> str | None:
        metadata = message.metadata
        total = metadata.get("total_tokens")
        if total is None:
            return None
        parts = [f"tokens={total}"]
        if metadata.get("reasoning_tokens"):
            parts.append(f"reasoning={metadata['reasoning_tokens']}")
        if metadata.get("model"):
            parts.append(f"model={metadata['model']}")
        return f"{self._line_prefix}({', '.join(parts)})"

    def format_transcript_lines(self, messages: list[ChatMessage]) -> list[str]:
        lines: list[str] = []
        for message in messages:
            who = "you" if message.role == "user" else message.role
            lines.append(f"{who}> {_preview(message.content, max_chars=200)}")
        return lines


def _format_ts(value: float) -> str:
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M")


def _preview(text: str, max_chars: int = 120) -> str:
    text = " ".join(text.split())
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."
