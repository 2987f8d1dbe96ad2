import asyncio
import unittest

from tests.session.base import FakeBackend, ManualFlushScheduler, response
from vrin_chat.chat_session import MISSING_API_KEY_ERROR, ChatSessionClient
from vrin_chat.errors import ChatApiError
from vrin_chat.kv_store import SESSION_ID_KEY, InMemoryKeyValueStore
from vrin_chat.models import ChatMessage


def _message(role: str, content: str) -> ChatMessage:
    return ChatMessage(id=f"{role}-{content}", role=role, content=content, timestamp=1.0)


class RestoreTests(unittest.TestCase):
    def test_restores_saved_session_id(self) -> None:
        store = InMemoryKeyValueStore({SESSION_ID_KEY: "saved"})

        client = ChatSessionClient(FakeBackend(), "key", store=store, scheduler=ManualFlushScheduler())

        self.assertEqual("saved", client.session.session_id)
        self.assertEqual(0, client.session.conversation_turn)
        self.assertEqual([], client.messages)

    def test_nothing_saved_means_no_session(self) -> None:
        client = ChatSessionClient(FakeBackend(), "key", scheduler=ManualFlushScheduler())
        self.assertIsNone(client.session)

    def test_restore_skipped_without_api_key(self) -> None:
        store = InMemoryKeyValueStore({SESSION_ID_KEY: "saved"})

        client = ChatSessionClient(FakeBackend(), "", store=store, scheduler=ManualFlushScheduler())

        self.assertIsNone(client.session)


class StartSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.store = InMemoryKeyValueStore({SESSION_ID_KEY: "old"})
        self.client = ChatSessionClient(self.backend, "key", store=self.store, scheduler=ManualFlushScheduler())

    def test_start_replaces_session_and_clears_messages(self) -> None:
        self.client.load_messages("old", [_message("user", "q"), _message("assistant", "a")])
        self.backend.start_result = {"session_id": "brand-new"}

        asyncio.run(self.client.start_new_session())

        self.assertEqual("brand-new", self.client.session.session_id)
        self.assertEqual(0, self.client.session.conversation_turn)
        self.assertEqual([], self.client.messages)
        self.assertEqual("brand-new", self.store.get(SESSION_ID_KEY))
        self.assertFalse(self.client.is_loading)
        self.assertIsNone(self.client.error)

    def test_start_failure_leaves_no_session(self) -> None:
        self.backend.start_error = ChatApiError("Failed to start conversation", status_code=503)

        asyncio.run(self.client.start_new_session())

        self.assertIsNone(self.client.session)
        self.assertIsNone(self.store.get(SESSION_ID_KEY))
        self.assertEqual("Failed to start conversation", self.client.error)
        self.assertFalse(self.client.is_loading)

    def test_start_requires_api_key(self) -> None:
        client = ChatSessionClient(self.backend, "", scheduler=ManualFlushScheduler())

        asyncio.run(client.start_new_session())

        self.assertEqual(MISSING_API_KEY_ERROR, client.error)
        self.assertEqual(0, self.backend.start_calls)


class EndSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = FakeBackend()
        self.store = InMemoryKeyValueStore({SESSION_ID_KEY: "active"})
        self.client = ChatSessionClient(self.backend, "key", store=self.store, scheduler=ManualFlushScheduler())

    def test_end_notifies_backend_and_clears_state(self) -> None:
        asyncio.run(self.client.end_session())

        self.assertEqual(["active"], self.backend.ended)
        self.assertIsNone(self.client.session)
        self.assertEqual([], self.client.messages)
        self.assertIsNone(self.store.get(SESSION_ID_KEY))

    def test_end_clears_state_even_when_backend_fails(self) -> None:
        self.backend.end_error = ChatApiError("boom")

        asyncio.run(self.client.end_session())

        self.assertIsNone(self.client.session)
        self.assertIsNone(self.store.get(SESSION_ID_KEY))
        self.assertIsNone(self.client.error)

    def test_end_without_session_is_noop(self) -> None:
        client = ChatSessionClient(self.backend, "key", scheduler=ManualFlushScheduler())

        asyncio.run(client.end_session())

        self.assertEqual([], self.backend.ended)


class LoadMessagesTests(unittest.TestCase):
    def test_turn_counts_user_messages(self) -> None:
        store = InMemoryKeyValueStore()
        client = ChatSessionClient(FakeBackend(), "key", store=store, scheduler=ManualFlushScheduler())
        history = [
            _message("user", "q1"),
            _message("assistant", "a1"),
            _message("user", "q2"),
            _message("assistant", "a2"),
        ]

        client.load_messages("hist", history)

        self.assertEqual("hist", client.session.session_id)
        self.assertEqual(2, client.session.conversation_turn)
        self.assertEqual(history, client.messages)
        self.assertEqual("hist", store.get(SESSION_ID_KEY))

    def test_loaded_session_continues_on_next_send(self) -> None:
        backend = FakeBackend()
        client = ChatSessionClient(backend, "key", scheduler=ManualFlushScheduler())
        client.load_messages("hist", [_message("user", "q1"), _message("assistant", "a1")])
        backend.send_results.append(response("a2", session_id="hist", turn=2))

        asyncio.run(client.send_message("q2", streaming_enabled=False))

        self.assertEqual("hist", backend.sent[0].session_id)
        self.assertEqual(["q1", "a1", "q2", "a2"], [m.content for m in client.messages])


class GuardTests(unittest.TestCase):
    def test_send_requires_api_key(self) -> None:
        backend = FakeBackend()
        client = ChatSessionClient(backend, "", scheduler=ManualFlushScheduler())

        asyncio.run(client.send_message("Hello"))

        self.assertEqual(MISSING_API_KEY_ERROR, client.error)
        self.assertEqual([], client.messages)
        self.assertEqual([], backend.streamed)

    def test_whitespace_message_is_ignored(self) -> None:
        backend = FakeBackend()
        client = ChatSessionClient(backend, "key", scheduler=ManualFlushScheduler())

        asyncio.run(client.send_message("   "))

        self.assertEqual([], client.messages)
        self.assertEqual([], backend.streamed)
        self.assertFalse(client.is_loading)
        self.assertIsNone(client.error)

    def test_clear_error(self) -> None:
        client = ChatSessionClient(FakeBackend(), "", scheduler=ManualFlushScheduler())
        asyncio.run(client.send_message("Hello"))
        self.assertIsNotNone(client.error)

        client.clear_error()

        self.assertIsNone(client.error)

    def test_close_cancels_pending_flush(self) -> None:
        scheduler = ManualFlushScheduler()
        client = ChatSessionClient(FakeBackend(), "key", scheduler=scheduler)

        asyncio.run(client.close())

        self.assertFalse(scheduler.pending)
        self.assertGreaterEqual(scheduler.cancel_count, 1)


if __name__ == "__main__":
    unittest.main()
