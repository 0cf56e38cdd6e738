"""Tests for the conversation store."""
from datetime import datetime, timedelta, timezone

import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import SQLAlchemyError

from cart_assistant.database.models import ConversationTurn
from cart_assistant.memory.conversation_store import ConversationStore
from cart_assistant.utils.exceptions import PersistenceError


@pytest.fixture
def history(session_factory):
    return ConversationStore(session_factory)


class TestTranscript:
    """Append and replay of one session."""

    @pytest.mark.asyncio
    async def test_order_and_decoding(self, history):
        await history.append("s1", "user", "show my cart")
        await history.append_function_call("s1", "view_cart", None)
        await history.append_function_response("s1", "view_cart", {"status": "success", "items": []})
        await history.append("s1", "ai", "Your cart is empty")

        turns = await history.get_history("s1")

        assert [t["sender"] for t in turns] == ["user", "function_call", "function_response", "ai"]
        assert turns[1]["content"] == {"name": "view_cart", "args": {}}
        assert turns[2]["content"] == {
            "name": "view_cart",
            "content": '{"status": "success", "items": []}',
        }
        assert turns[0]["created_at"] is not None

    @pytest.mark.asyncio
    async def test_reads_are_idempotent(self, history):
        await history.append("s1", "user", "hi")
        await history.append("s1", "ai", "hello")

        assert await history.get_history("s1") == await history.get_history("s1")

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, history):
        await history.append("s1", "user", "hi")
        await history.append("s2", "user", "hola")

        assert [t["content"] for t in await history.get_history("s2")] == ["hola"]
        assert await history.get_history("unknown") == []

    @pytest.mark.asyncio
    async def test_unknown_sender(self, history):
        with pytest.raises(ValueError):
            await history.append("s1", "system", "x")

    @pytest.mark.asyncio
    async def test_write_failure_raises_persistence_error(self):
        db = MagicMock()
        db.commit.side_effect = SQLAlchemyError("disk full")
        history = ConversationStore(lambda: db)

        with pytest.raises(PersistenceError):
            await history.append("s1", "user", "hi")

        db.rollback.assert_called_once()
        db.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_caller_session_is_not_closed(self, history, session_factory):
        db = session_factory()
        try:
            turn_id = await history.append("s1", "user", "hi", db=db)
            assert db.get(ConversationTurn, turn_id).content == "hi"
        finally:
            db.close()


class TestUserConversations:
    """History listing for signed-in users."""

    def _seed(self, session_factory):
        start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        rows = [
            ("old", "user", "first question", 0),
            ("old", "function_call", '{"name": "search_products", "args": {"query": "cats"}}', 1),
            ("old", "function_response", '{"name": "search_products", "content": "{}"}', 2),
            ("old", "ai", "first answer", 3),
            ("new", "user", "second question", 60),
            ("new", "ai", "second answer", 61),
        ]
        db = session_factory()
        try:
            for session_id, sender, content, minutes in rows:
                db.add(ConversationTurn(
                    session_id=session_id,
                    user_id=7,
                    sender=sender,
                    content=content,
                    created_at=start + timedelta(minutes=minutes),
                ))
            db.add(ConversationTurn(session_id="other", user_id=8, sender="user", content="not mine"))
            db.commit()
        finally:
            db.close()

    @pytest.mark.asyncio
    async def test_grouped_most_recent_first(self, history, session_factory):
        self._seed(session_factory)

        conversations = await history.get_user_conversations(7)

        assert [c["session_id"] for c in conversations] == ["new", "old"]
        old = conversations[1]
        assert [m["content"] for m in old["messages"]] == [
            "first question",
            "⚙️ search_products",
            "first answer",
        ]
        assert old["started_at"].startswith("2024-05-01T12:00")

    @pytest.mark.asyncio
    async def test_pagination(self, history, session_factory):
        self._seed(session_factory)

        page = await history.get_user_conversations(7, limit=1, offset=1)

        assert [c["session_id"] for c in page] == ["old"]
