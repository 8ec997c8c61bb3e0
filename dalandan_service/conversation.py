"""
Conversation context: bounded windows of prior chat turns per session.

The turn log itself lives in a TurnStore collaborator. ConversationContext
only decides which turns make up a prompt window and which ones a
retention run removes.
"""
import asyncio
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from .models import MAX_TURN_LENGTH, ChatTurn, Role, utcnow
from .safety import DISCLAIMER, ensure_disclaimer
from .structured_logging import StructuredLogger, mask_session_id

logger = StructuredLogger(__name__)

DEFAULT_WINDOW = 8
DEFAULT_HISTORY_LIMIT = 50


class TurnStore(Protocol):
    async def append(self, turn: ChatTurn) -> None: ...

    async def recent(self, session_id: str, limit: int, offset: int = 0) -> list[ChatTurn]:
        """Turns of a session, newest first, skipping ``offset`` newest."""
        ...

    async def delete_session(self, session_id: str) -> int: ...

    async def delete_older_than(self, cutoff: datetime) -> int: ...

    async def count(self) -> int: ...


class InMemoryTurnStore:
    """Process-local TurnStore; turns are kept per session in insertion order."""

    def __init__(self):
        self._turns: dict[str, list[ChatTurn]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def append(self, turn: ChatTurn) -> None:
        async with self._lock:
            turns = self._turns[turn.session_id]
            turns.append(turn)
            # Keep created_at order even if a caller supplies an older timestamp
            if len(turns) > 1 and turns[-2].created_at > turn.created_at:
                turns.sort(key=lambda t: t.created_at)

    async def recent(self, session_id: str, limit: int, offset: int = 0) -> list[ChatTurn]:
        async with self._lock:
            turns = list(self._turns.get(session_id, []))
        newest_first = list(reversed(turns))
        return newest_first[offset:offset + limit]

    async def delete_session(self, session_id: str) -> int:
        async with self._lock:
            return len(self._turns.pop(session_id, []))

    async def delete_older_than(self, cutoff: datetime) -> int:
        deleted = 0
        async with self._lock:
            for session_id in list(self._turns):
                kept = [t for t in self._turns[session_id] if t.created_at >= cutoff]
                deleted += len(self._turns[session_id]) - len(kept)
                if kept:
                    self._turns[session_id] = kept
                else:
                    del self._turns[session_id]
        return deleted

    async def count(self) -> int:
        async with self._lock:
            return sum(len(turns) for turns in self._turns.values())


class ConversationContext:
    """Read windows of, record, and purge chat turns through a TurnStore."""

    def __init__(self, store: TurnStore, default_window: int = DEFAULT_WINDOW):
        self.store = store
        self.default_window = default_window

    async def recent_window(self, session_id: str, limit: Optional[int] = None) -> list[ChatTurn]:
        """The most recent ``limit`` turns of a session, oldest first."""
        limit = self.default_window if limit is None else limit
        if limit <= 0:
            return []
        newest_first = await self.store.recent(session_id, limit)
        return list(reversed(newest_first))

    async def history(
        self,
        session_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0,
    ) -> list[ChatTurn]:
        """A page of history: selected newest first, returned chronologically."""
        page = await self.store.recent(session_id, limit, offset)
        return list(reversed(page))

    async def record(
        self,
        session_id: str,
        role: Role,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ChatTurn:
        if len(content) > MAX_TURN_LENGTH:
            logger.warning(
                "Chat turn truncated",
                session_id=mask_session_id(session_id),
                role=role,
                original_length=len(content),
            )
            if role == "assistant":
                # Assistant turns keep their trailing disclaimer
                keep = MAX_TURN_LENGTH - len(DISCLAIMER) - 2
                content = ensure_disclaimer(content[:keep])
            else:
                content = content[:MAX_TURN_LENGTH]

        turn = ChatTurn(
            session_id=session_id,
            role=role,
            content=content,
            metadata=metadata or {},
        )
        await self.store.append(turn)
        return turn

    async def purge_session(self, session_id: str) -> int:
        deleted = await self.store.delete_session(session_id)
        logger.info(
            "Chat session deleted",
            session_id=mask_session_id(session_id),
            messages_deleted=deleted,
        )
        return deleted

    async def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        """Delete every turn created strictly before ``now - days``."""
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(days=days)
        deleted = await self.store.delete_older_than(cutoff)
        logger.info("Retention run finished", days=days, cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted
