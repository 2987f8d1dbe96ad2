import asyncio
import unittest

from tests.session.base import FakeBackend, ManualFlushScheduler, response
from vrin_chat.chat_session import ChatSessionClient
from vrin_chat.errors import ChatApiError, SessionExpiredError
from vrin_chat.kv_store import SESSION_ID_KEY, InMemoryKeyValueStore
from vrin_chat.models import Source


class BlockingSendTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.scheduler = ManualFlushScheduler()
        self.store = InMemoryKeyValueStore()
        self.changes = 0
        self.client = ChatSessionClient(
            self.backend,
            "test-key",
            store=self.store,
            scheduler=self.scheduler,
            on_change=self._changed,
        )

    def _changed(self) -> None:
        self.changes += 1

    def test_reply_is_appended_with_sources_and_metadata_verbatim(self) -> None:
        sources = [Source(content="Doc A", type="document", confidence=0.8)]
        metadata = {"total_tokens": 321, "model": "x"}
        self.backend.send_results.append(
            response("Full answer", session_id="s9", turn=4, sources=sources, metadata=metadata)
        )

        asyncio.run(self.client.send_message("Hi", "chat", False))

        messages = self.client.messages
        self.assertEqual(["user", "assistant"], [m.role for m in messages])
        self.assertEqual("Full answer", messages[1].content)
        self.assertEqual(sources, messages[1].sources)
        self.assertEqual(metadata, messages[1].metadata)
        self.assertEqual("s9", self.client.session.session_id)
        self.assertEqual(4, self.client.session.conversation_turn)
        self.assertEqual("s9", self.store.get(SESSION_ID_KEY))
        self.assertEqual([], self.backend.streamed)
        self.assertEqual(0, self.scheduler.schedule_count)
        self.assertFalse(self.client.is_loading)
        self.assertGreater(self.changes, 0)

    def test_loading_is_set_while_request_is_in_flight(self) -> None:
        observed: list[tuple[bool, bool, int]] = []
        self.backend.on_send = lambda request: observed.append(
            (self.client.is_loading, self.client.is_streaming, len(self.client.messages))
        )
        self.backend.send_results.append(response())

        asyncio.run(self.client.send_message("Hi", streaming_enabled=False))

        self.assertEqual([(True, False, 1)], observed)
        self.assertFalse(self.client.is_loading)

    def test_same_session_touches_turn(self) -> None:
        self.store.set(SESSION_ID_KEY, "s1")
        client = ChatSessionClient(self.backend, "test-key", store=self.store, scheduler=self.scheduler)
        self.backend.send_results.append(response(session_id="s1", turn=7))

        asyncio.run(client.send_message("Hi", streaming_enabled=False))

        self.assertEqual("s1", self.backend.sent[0].session_id)
        self.assertEqual(7, client.session.conversation_turn)

    def test_failure_rolls_back_optimistic_message(self) -> None:
        self.backend.send_results.append(response("first"))
        self.backend.send_results.append(ChatApiError("API Error: 500 Internal Server Error", status_code=500))

        asyncio.run(self.client.send_message("one", streaming_enabled=False))
        asyncio.run(self.client.send_message("two", streaming_enabled=False))

        self.assertEqual(["one", "first"], [m.content for m in self.client.messages])
        self.assertEqual("API Error: 500 Internal Server Error", self.client.error)
        self.assertFalse(self.client.is_loading)

    def test_empty_exception_message_uses_fallback(self) -> None:
        self.backend.send_results.append(RuntimeError())

        asyncio.run(self.client.send_message("one", streaming_enabled=False))

        self.assertEqual("Failed to send message", self.client.error)

    def test_new_send_clears_previous_error(self) -> None:
        self.backend.send_results.append(ChatApiError("boom"))
        self.backend.send_results.append(response())

        asyncio.run(self.client.send_message("one", streaming_enabled=False))
        self.assertEqual("boom", self.client.error)
        asyncio.run(self.client.send_message("two", streaming_enabled=False))

        self.assertIsNone(self.client.error)

    def test_session_expiry_retries_once_without_session_id(self) -> None:
        self.store.set(SESSION_ID_KEY, "stale")
        client = ChatSessionClient(self.backend, "test-key", store=self.store, scheduler=self.scheduler)
        seen_store: list[str | None] = []
        self.backend.send_results.append(SessionExpiredError("Session not found or expired", status_code=404))
        self.backend.send_results.append(response("Recovered", session_id="fresh"))

        def record(request) -> None:
            if request.session_id is None:
                seen_store.append(self.store.get(SESSION_ID_KEY))

        self.backend.on_send = record

        asyncio.run(client.send_message("Hi", streaming_enabled=False))

        self.assertEqual(["stale", None], [r.session_id for r in self.backend.sent])
        self.assertEqual([None], seen_store)
        self.assertIsNone(client.error)
        self.assertEqual("fresh", client.session.session_id)
        self.assertEqual("fresh", self.store.get(SESSION_ID_KEY))
        self.assertEqual(["Hi", "Recovered"], [m.content for m in client.messages])

    def test_second_expiry_is_reported(self) -> None:
        self.backend.send_results.append(SessionExpiredError("Session not found or expired"))
        self.backend.send_results.append(SessionExpiredError("Session not found or expired"))

        asyncio.run(self.client.send_message("Hi", streaming_enabled=False))

        self.assertEqual(2, len(self.backend.sent))
        self.assertEqual("Session not found or expired", self.client.error)
        self.assertEqual([], self.client.messages)

    def test_other_errors_are_not_retried(self) -> None:
        self.backend.send_results.append(ChatApiError("Rate limited", status_code=429))
        self.backend.send_results.append(response())

        asyncio.run(self.client.send_message("Hi", streaming_enabled=False))

        self.assertEqual(1, len(self.backend.sent))
        self.assertEqual("Rate limited", self.client.error)


if __name__ == "__main__":
    unittest.main()
