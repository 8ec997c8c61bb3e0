"""Tests for conversation windows, history pages and retention."""
import asyncio
import sys
import os
from datetime import datetime, timedelta, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from dalandan_service.conversation import ConversationContext, InMemoryTurnStore
from dalandan_service.models import ChatTurn
from dalandan_service.safety import DISCLAIMER

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def filled_context(count: int, session_id: str = "s1") -> ConversationContext:
    context = ConversationContext(InMemoryTurnStore())

    async def fill():
        for i in range(count):
            role = "user" if i % 2 == 0 else "assistant"
            await context.record(session_id, role, f"turn {i}")

    asyncio.run(fill())
    return context


class TestRecentWindow:
    """Test ConversationContext.recent_window."""

    def test_last_eight_of_twenty_in_order(self):
        context = filled_context(20)
        window = asyncio.run(context.recent_window("s1", limit=8))
        assert [t.content for t in window] == [f"turn {i}" for i in range(12, 20)]

    def test_default_window(self):
        context = filled_context(20)
        assert len(asyncio.run(context.recent_window("s1"))) == 8

    def test_short_session(self):
        context = filled_context(3)
        window = asyncio.run(context.recent_window("s1", limit=8))
        assert [t.content for t in window] == ["turn 0", "turn 1", "turn 2"]

    def test_unknown_session(self):
        context = filled_context(3)
        assert asyncio.run(context.recent_window("other")) == []

    def test_zero_limit(self):
        context = filled_context(3)
        assert asyncio.run(context.recent_window("s1", limit=0)) == []

    def test_sessions_isolated(self):
        context = filled_context(4, "a")
        asyncio.run(context.record("b", "user", "only in b"))
        window = asyncio.run(context.recent_window("b"))
        assert [t.content for t in window] == ["only in b"]


class TestHistory:
    """Test ConversationContext.history."""

    def test_page_is_chronological(self):
        context = filled_context(10)
        page = asyncio.run(context.history("s1", limit=3, offset=2))
        assert [t.content for t in page] == ["turn 5", "turn 6", "turn 7"]

    def test_record_metadata(self):
        context = ConversationContext(InMemoryTurnStore())
        turn = asyncio.run(context.record("s1", "assistant", "hi", {"model": "m", "stream": True}))
        assert turn.metadata == {"model": "m", "stream": True}
        assert turn.role == "assistant"

    def test_long_user_turn_truncated(self):
        context = ConversationContext(InMemoryTurnStore())
        turn = asyncio.run(context.record("s1", "user", "y" * 5000))
        assert turn.content == "y" * 4000

    def test_long_assistant_turn_keeps_disclaimer(self):
        context = ConversationContext(InMemoryTurnStore())
        reply = "x" * 4990 + "\n\n" + DISCLAIMER
        turn = asyncio.run(context.record("s1", "assistant", reply))
        assert len(turn.content) <= 4000
        assert turn.content.startswith("x" * 100)
        assert turn.content.endswith(DISCLAIMER)


class TestPurge:
    """Test purge_session and purge_older_than."""

    def test_purge_session(self):
        context = filled_context(5)
        assert asyncio.run(context.purge_session("s1")) == 5
        assert asyncio.run(context.recent_window("s1")) == []
        assert asyncio.run(context.purge_session("s1")) == 0

    def test_retention_boundary(self):
        store = InMemoryTurnStore()
        context = ConversationContext(store)
        cutoff = NOW - timedelta(days=30)
        ages = {
            "old": cutoff - timedelta(days=5),
            "just-before": cutoff - timedelta(microseconds=1),
            "exact": cutoff,
            "after": cutoff + timedelta(seconds=1),
            "recent": NOW,
        }

        async def run():
            for content, created_at in ages.items():
                await store.append(
                    ChatTurn(session_id="s1", role="user", content=content, created_at=created_at)
                )
            deleted = await context.purge_older_than(30, now=NOW)
            remaining = await context.history("s1")
            return deleted, remaining

        deleted, remaining = asyncio.run(run())
        assert deleted == 2
        assert [t.content for t in remaining] == ["exact", "after", "recent"]

    def test_retention_removes_empty_sessions(self):
        store = InMemoryTurnStore()
        context = ConversationContext(store)

        async def run():
            await store.append(ChatTurn(
                session_id="gone", role="user", content="old",
                created_at=NOW - timedelta(days=40),
            ))
            await context.purge_older_than(30, now=NOW)
            return await store.count()

        assert asyncio.run(run()) == 0

    def test_out_of_order_append_sorted(self):
        store = InMemoryTurnStore()

        async def run():
            await store.append(ChatTurn(session_id="s1", role="user", content="second", created_at=NOW))
            await store.append(ChatTurn(
                session_id="s1", role="user", content="first",
                created_at=NOW - timedelta(minutes=1),
            ))
            return await store.recent("s1", 10)

        assert [t.content for t in asyncio.run(run())] == ["second", "first"]
