"""Conversation history persistence

Completed turns are appended once and never edited. The orchestrator replays
the most recent turns oldest-first as prior user/assistant messages.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List

from core import get_logger
from database import get_db
from llm.models import ConversationTurn

logger = get_logger(__name__)


class HistoryStore(ABC):
    @abstractmethod
    def get_recent_history(self, user_id, limit: int) -> List[ConversationTurn]:
        """Most recent turns first"""

    @abstractmethod
    def append(self, user_id, turn: ConversationTurn) -> None: ...

    @abstractmethod
    def get_history(self, user_id, page: int = 1, limit: int = 20) -> Dict[str, Any]: ...

    @abstractmethod
    def clear_history(self, user_id) -> int: ...


def _as_utc(value) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.fromisoformat(str(value)).replace(tzinfo=timezone.utc)


def page_payload(rows: List[Dict[str, Any]], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {
        "messages": rows,
        "total": total,
        "page": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }


class PgHistoryStore(HistoryStore):
    """History stored in the chat_history table"""

    def __init__(self, db_provider=None):
        self._db_provider = db_provider or get_db

    @property
    def db(self):
        return self._db_provider()

    def get_recent_history(self, user_id, limit):
        rows = self.db.execute(
            "SELECT message, response, created_at FROM chat_history "
            "WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (user_id, limit),
        ).fetchall()
        return [
            ConversationTurn(
                user_message=r["message"],
                ai_response=r["response"],
                timestamp=_as_utc(r["created_at"]),
            )
            for r in rows
        ]

    def append(self, user_id, turn):
        db = self.db
        try:
            db.execute(
                "INSERT INTO chat_history (user_id, message, response, created_at) VALUES (?, ?, ?, ?)",
                (user_id, turn.user_message, turn.ai_response, turn.timestamp),
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("chat_history_saved", user_id=user_id, response_length=len(turn.ai_response))

    def get_history(self, user_id, page=1, limit=20):
        total = self.db.execute(
            "SELECT COUNT(*) AS total FROM chat_history WHERE user_id = ?", (user_id,)
        ).fetchone()["total"]
        rows = self.db.execute(
            "SELECT id, message AS user_message, response AS ai_response, created_at "
            "FROM chat_history WHERE user_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (user_id, limit, (page - 1) * limit),
        ).fetchall()
        messages = []
        for r in rows:
            item = dict(r)
            item["created_at"] = _as_utc(item["created_at"]).isoformat()
            messages.append(item)
        return page_payload(messages, int(total), page, limit)

    def clear_history(self, user_id):
        db = self.db
        try:
            cur = db.execute("DELETE FROM chat_history WHERE user_id = ?", (user_id,))
            deleted = cur.rowcount
            db.commit()
        except Exception:
            db.rollback()
            raise
        logger.info("chat_history_cleared", user_id=user_id, deleted=deleted)
        return deleted
