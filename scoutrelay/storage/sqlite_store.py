"""
SQLite storage for the scout portal data the relay reads and writes.
Scouts, their referred athletes and commissions are read for context;
coach conversations and messages are written around every relay call;
website leads arrive through the intake webhook.
"""

import sqlite3
import json
import logging
from pathlib import Path
from contextlib import contextmanager
from uuid import uuid4

from scoutrelay.storage.models import Conversation, Message, _now

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS scouts (
    id TEXT PRIMARY KEY,
    full_name TEXT DEFAULT '',
    photo_url TEXT DEFAULT '',
    bio TEXT DEFAULT '',
    location TEXT DEFAULT '',
    is_verified BOOLEAN DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS athletes (
    id TEXT PRIMARY KEY,
    referred_by_scout_id TEXT NOT NULL,
    process_status TEXT DEFAULT 'Lead',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS scout_commissions (
    id TEXT PRIMARY KEY,
    scout_id TEXT NOT NULL,
    amount REAL DEFAULT 0,
    status TEXT DEFAULT 'pending',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS coach_conversations (
    id TEXT PRIMARY KEY,
    scout_id TEXT NOT NULL,
    is_active BOOLEAN DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS coach_messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    scout_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    tokens_used INTEGER DEFAULT NULL,
    latency_ms INTEGER DEFAULT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY (conversation_id) REFERENCES coach_conversations(id)
);

CREATE TABLE IF NOT EXISTS website_leads (
    id TEXT PRIMARY KEY,
    first_name TEXT DEFAULT '',
    last_name TEXT DEFAULT '',
    email TEXT DEFAULT '',
    phone TEXT DEFAULT '',
    sport TEXT DEFAULT '',
    form_source TEXT NOT NULL,
    scout_ref TEXT DEFAULT '',
    raw_fields TEXT DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_athletes_scout
    ON athletes(referred_by_scout_id);
CREATE INDEX IF NOT EXISTS idx_commissions_scout
    ON scout_commissions(scout_id);
CREATE INDEX IF NOT EXISTS idx_conversations_scout_active
    ON coach_conversations(scout_id, is_active);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON coach_messages(conversation_id, created_at);
"""


class SQLiteStore:
    """SQLite-backed data store. One connection per call, safe across threads."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ─ Scout context reads ────────────────────────────────────────────────

    def get_scout(self, scout_id: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM scouts WHERE id = ?", (scout_id,)).fetchone()
        return dict(row) if row else None

    def get_referred_athletes(self, scout_id: str) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, process_status FROM athletes WHERE referred_by_scout_id = ?",
                (scout_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_commissions(self, scout_id: str) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT amount, status FROM scout_commissions WHERE scout_id = ?",
                (scout_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ─ Seeding helpers (portal screens write these in production) ─────────

    def upsert_scout(
        self,
        scout_id: str,
        full_name: str = "",
        photo_url: str = "",
        bio: str = "",
        location: str = "",
        is_verified: bool = False,
        created_at: str | None = None,
    ):
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO scouts
                   (id, full_name, photo_url, bio, location, is_verified, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (scout_id, full_name, photo_url, bio, location, is_verified, created_at or _now()),
            )

    def add_athlete(self, scout_id: str, process_status: str = "Lead") -> str:
        athlete_id = uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO athletes (id, referred_by_scout_id, process_status, created_at)
                   VALUES (?, ?, ?, ?)""",
                (athlete_id, scout_id, process_status, _now()),
            )
        return athlete_id

    def add_commission(self, scout_id: str, amount: float, status: str = "pending") -> str:
        commission_id = uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO scout_commissions (id, scout_id, amount, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (commission_id, scout_id, amount, status, _now()),
            )
        return commission_id

    # ─ Conversations ──────────────────────────────────────────────────────

    def get_active_conversation(self, scout_id: str) -> Conversation | None:
        """Most recent active conversation for the scout, if any."""
        with self._connect() as conn:
            row = conn.execute(
                """SELECT * FROM coach_conversations
                   WHERE scout_id = ? AND is_active = 1
                   ORDER BY created_at DESC, rowid DESC
                   LIMIT 1""",
                (scout_id,),
            ).fetchone()
        if not row:
            return None
        return Conversation(
            id=row["id"],
            scout_id=row["scout_id"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM coach_conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        if not row:
            return None
        return Conversation(
            id=row["id"],
            scout_id=row["scout_id"],
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
        )

    def ensure_active_conversation(self, scout_id: str) -> str:
        """Return the active conversation id, creating one if none exists."""
        existing = self.get_active_conversation(scout_id)
        if existing:
            return existing.id

        conv = Conversation(scout_id=scout_id)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO coach_conversations (id, scout_id, is_active, created_at) VALUES (?, ?, 1, ?)",
                (conv.id, conv.scout_id, conv.created_at),
            )
        logger.debug("Created conversation %s for scout %s", conv.id, scout_id)
        return conv.id

    def start_new_conversation(self, scout_id: str) -> str:
        """
        Deactivate every active conversation for the scout and insert a
        fresh active one. Both writes share one transaction.
        """
        conv = Conversation(scout_id=scout_id)
        with self._connect() as conn:
            conn.execute(
                "UPDATE coach_conversations SET is_active = 0 WHERE scout_id = ? AND is_active = 1",
                (scout_id,),
            )
            conn.execute(
                "INSERT INTO coach_conversations (id, scout_id, is_active, created_at) VALUES (?, ?, 1, ?)",
                (conv.id, conv.scout_id, conv.created_at),
            )
        logger.info("Started new conversation %s for scout %s", conv.id, scout_id)
        return conv.id

    def count_active_conversations(self, scout_id: str) -> int:
        with self._connect() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM coach_conversations WHERE scout_id = ? AND is_active = 1",
                (scout_id,),
            ).fetchone()[0]

    # ─ Messages ───────────────────────────────────────────────────────────

    def append_message(self, msg: Message):
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO coach_messages
                   (id, conversation_id, scout_id, role, content, tokens_used, latency_ms, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (msg.id, msg.conversation_id, msg.scout_id, msg.role, msg.content,
                 msg.tokens_used, msg.latency_ms, msg.created_at),
            )
        logger.debug("Stored message %s (role=%s, conv=%s)", msg.id, msg.role, msg.conversation_id)

    def load_recent_history(self, conversation_id: str, limit: int = 20) -> list[dict]:
        """The most recent `limit` messages as {role, content}, oldest first."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT role, content FROM (
                       SELECT role, content, created_at, rowid AS seq
                       FROM coach_messages
                       WHERE conversation_id = ?
                       ORDER BY created_at DESC, seq DESC
                       LIMIT ?
                   ) ORDER BY created_at ASC, seq ASC""",
                (conversation_id, limit),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_conversation_messages(self, conversation_id: str) -> list[dict]:
        """All messages for a conversation in order."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT id, role, content, tokens_used, latency_ms, created_at
                   FROM coach_messages
                   WHERE conversation_id = ?
                   ORDER BY created_at, rowid""",
                (conversation_id,),
            ).fetchall()
        return [dict(r) for r in rows]

    # ─ Website leads ──────────────────────────────────────────────────────

    def insert_website_lead(
        self,
        first_name: str,
        last_name: str,
        email: str,
        phone: str,
        sport: str,
        form_source: str,
        scout_ref: str = "",
        raw_fields: dict | None = None,
    ) -> str:
        """Insert an inbound website lead and return its id."""
        lead_id = uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO website_leads
                   (id, first_name, last_name, email, phone, sport,
                    form_source, scout_ref, raw_fields, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (lead_id, first_name, last_name, email, phone, sport,
                 form_source, scout_ref, json.dumps(raw_fields or {}, ensure_ascii=False), _now()),
            )
        logger.info("Stored website lead %s (source=%s)", lead_id, form_source)
        return lead_id

    def get_website_lead(self, lead_id: str) -> dict | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM website_leads WHERE id = ?", (lead_id,)).fetchone()
        if not row:
            return None
        lead = dict(row)
        lead["raw_fields"] = json.loads(lead["raw_fields"] or "{}")
        return lead

    def get_stats(self) -> dict:
        """Return counts of stored data plus assistant token usage."""
        with self._connect() as conn:
            conv_count = conn.execute("SELECT COUNT(*) FROM coach_conversations").fetchone()[0]
            active_count = conn.execute(
                "SELECT COUNT(*) FROM coach_conversations WHERE is_active = 1"
            ).fetchone()[0]
            msg_count = conn.execute("SELECT COUNT(*) FROM coach_messages").fetchone()[0]
            user_count = conn.execute(
                "SELECT COUNT(*) FROM coach_messages WHERE role='user'"
            ).fetchone()[0]
            asst_count = conn.execute(
                "SELECT COUNT(*) FROM coach_messages WHERE role='assistant'"
            ).fetchone()[0]
            total_tokens = conn.execute(
                "SELECT COALESCE(SUM(tokens_used), 0) FROM coach_messages"
            ).fetchone()[0]
            avg_latency = conn.execute(
                "SELECT AVG(latency_ms) FROM coach_messages WHERE role='assistant'"
            ).fetchone()[0]
            lead_count = conn.execute("SELECT COUNT(*) FROM website_leads").fetchone()[0]

        return {
            "conversations": conv_count,
            "active_conversations": active_count,
            "messages": msg_count,
            "user_messages": user_count,
            "assistant_messages": asst_count,
            "tokens_used": total_tokens,
            "avg_latency_ms": round(avg_latency or 0, 1),
            "website_leads": lead_count,
        }
