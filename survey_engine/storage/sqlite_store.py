"""SQLite conversation store: sessions, turns, question embeddings and insights"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Optional, Union

import aiosqlite
import numpy as np
from loguru import logger

from survey_engine.core.exceptions import StoreError
from survey_engine.core.models import (
    ConversationPhase,
    ConversationSession,
    Insight,
    InsightEntry,
    InsightType,
    QuestionEmbedding,
    Turn,
)


def _vec_to_bytes(vec: list[float]) -> bytes:
    """Serialize float32 vector to bytes for SQLite storage."""
    return np.asarray(vec, dtype=np.float32).tobytes()


def _bytes_to_vec(data: bytes) -> list[float]:
    """Deserialize bytes back to a float list."""
    return np.frombuffer(data, dtype=np.float32).tolist()


class ConversationStore:
    """
    Durable state of every interview.

    One aiosqlite connection in autocommit mode. Multi-statement writes go
    through transaction(), which issues BEGIN/COMMIT explicitly and rolls
    back on any failure. A store-level lock serialises transactions on the
    shared connection.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._tx_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Establish database connection"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = await aiosqlite.connect(str(self.db_path), isolation_level=None)
        except aiosqlite.Error as e:
            raise StoreError(f"Could not open {self.db_path}: {e}") from e
        self._conn.row_factory = aiosqlite.Row

        await self._setup_schema()
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close database connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Database connection closed")

    def _db(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("Database not connected")
        return self._conn

    async def _execute(self, query: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        try:
            return await self._db().execute(query, tuple(params))
        except aiosqlite.Error as e:
            raise StoreError(str(e)) from e

    async def _fetchall(self, query: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self._execute(query, params)
        return list(await cursor.fetchall())

    async def _fetchone(self, query: str, params: Iterable[Any] = ()) -> Optional[aiosqlite.Row]:
        cursor = await self._execute(query, params)
        return await cursor.fetchone()

    async def _setup_schema(self) -> None:
        """Create tables and indexes"""
        await self._execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                survey_category TEXT NOT NULL,
                current_turn INTEGER NOT NULL DEFAULT 0,
                completion_percentage REAL NOT NULL DEFAULT 0,
                should_continue INTEGER NOT NULL DEFAULT 1,
                phase TEXT NOT NULL,
                feedback_turns INTEGER NOT NULL DEFAULT 0,

                -- Aggregates as JSON
                topics_covered TEXT NOT NULL,
                kpis TEXT NOT NULL,
                stakeholders TEXT NOT NULL,
                pain_points TEXT NOT NULL,

                ai_confidence REAL NOT NULL DEFAULT 0.5,
                stop_reason TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await self._execute("""
            CREATE TABLE IF NOT EXISTS turns (
                session_id TEXT NOT NULL REFERENCES sessions(id),
                turn_number INTEGER NOT NULL,
                question_id TEXT NOT NULL UNIQUE,
                question_text TEXT NOT NULL,
                question_metadata TEXT NOT NULL,
                answer_text TEXT,
                answer_metadata TEXT NOT NULL,
                ai_analysis TEXT NOT NULL,
                created_at TEXT NOT NULL,

                PRIMARY KEY (session_id, turn_number)
            )
        """)

        await self._execute("""
            CREATE TABLE IF NOT EXISTS question_embeddings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                question_text TEXT NOT NULL,
                embedding BLOB NOT NULL,
                similarity_hash TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        await self._execute("""
            CREATE TABLE IF NOT EXISTS insights (
                id TEXT PRIMARY KEY,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                insight_type TEXT NOT NULL,
                value TEXT NOT NULL,
                confidence REAL NOT NULL,
                turn_number INTEGER NOT NULL,
                metadata TEXT NOT NULL
            )
        """)

        await self._execute("""
            CREATE INDEX IF NOT EXISTS idx_embeddings_session
            ON question_embeddings(session_id, id DESC)
        """)

        await self._execute("""
            CREATE INDEX IF NOT EXISTS idx_insights_session_type
            ON insights(session_id, insight_type)
        """)

        logger.debug("Conversation schema initialized")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["ConversationStore"]:
        """
        Run a group of writes atomically.

        Any exception inside the block rolls back; sqlite errors surface as
        StoreError, everything else propagates unchanged.
        """
        async with self._tx_lock:
            await self._execute("BEGIN")
            try:
                yield self
            except BaseException as e:
                await self._db().rollback()
                logger.warning("Transaction rolled back: {error}", error=repr(e))
                if isinstance(e, aiosqlite.Error):
                    raise StoreError(str(e)) from e
                raise
            else:
                try:
                    await self._execute("COMMIT")
                except StoreError:
                    await self._db().rollback()
                    raise

    # ========== SESSIONS ==========

    async def insert_session(self, session: ConversationSession) -> None:
        await self._execute(
            """
            INSERT INTO sessions
            (id, survey_category, current_turn, completion_percentage, should_continue,
             phase, feedback_turns, topics_covered, kpis, stakeholders, pain_points,
             ai_confidence, stop_reason, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._session_params(session) + (session.created_at.isoformat(), session.updated_at.isoformat()),
        )
        logger.debug(f"Inserted session {session.id} ({session.survey_category})")

    async def update_session(self, session: ConversationSession) -> None:
        session.updated_at = datetime.now()
        cursor = await self._execute(
            """
            UPDATE sessions SET
                survey_category = ?, current_turn = ?, completion_percentage = ?,
                should_continue = ?, phase = ?, feedback_turns = ?, topics_covered = ?,
                kpis = ?, stakeholders = ?, pain_points = ?, ai_confidence = ?,
                stop_reason = ?, updated_at = ?
            WHERE id = ?
            """,
            self._session_params(session)[1:] + (session.updated_at.isoformat(), session.id),
        )
        if cursor.rowcount == 0:
            raise StoreError(f"Session {session.id} does not exist")

    async def get_session(self, session_id: str) -> Optional[ConversationSession]:
        row = await self._fetchone("SELECT * FROM sessions WHERE id = ?", (session_id,))
        if not row:
            return None
        return self._row_to_session(row)

    # ========== TURNS ==========

    async def insert_turn(self, turn: Turn) -> None:
        await self._execute(
            """
            INSERT INTO turns
            (session_id, turn_number, question_id, question_text, question_metadata,
             answer_text, answer_metadata, ai_analysis, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                turn.session_id,
                turn.turn_number,
                turn.question_id,
                turn.question_text,
                json.dumps(turn.question_metadata),
                turn.answer_text,
                json.dumps(turn.answer_metadata),
                json.dumps(turn.ai_analysis),
                turn.created_at.isoformat(),
            ),
        )
        logger.debug(f"Inserted turn {turn.turn_number} for session {turn.session_id}")

    async def record_answer(
        self,
        question_id: str,
        answer_text: str,
        answer_metadata: dict[str, Any],
        ai_analysis: dict[str, Any],
    ) -> None:
        """Attach an answer to an unanswered turn"""
        cursor = await self._execute(
            """
            UPDATE turns SET answer_text = ?, answer_metadata = ?, ai_analysis = ?
            WHERE question_id = ? AND answer_text IS NULL
            """,
            (answer_text, json.dumps(answer_metadata), json.dumps(ai_analysis), question_id),
        )
        if cursor.rowcount == 0:
            raise StoreError(f"No unanswered turn for question {question_id}")

    async def get_turns(self, session_id: str, answered_only: bool = False) -> list[Turn]:
        """All turns of a session in turn order"""
        query = "SELECT * FROM turns WHERE session_id = ?"
        if answered_only:
            query += " AND answer_text IS NOT NULL"
        query += " ORDER BY turn_number ASC"
        rows = await self._fetchall(query, (session_id,))
        return [self._row_to_turn(row) for row in rows]

    async def get_turn_by_question_id(self, question_id: str) -> Optional[Turn]:
        row = await self._fetchone("SELECT * FROM turns WHERE question_id = ?", (question_id,))
        if not row:
            return None
        return self._row_to_turn(row)

    async def get_pending_turn(self, session_id: str) -> Optional[Turn]:
        """Most recent stored turn still waiting for an answer"""
        row = await self._fetchone(
            """
            SELECT * FROM turns
            WHERE session_id = ? AND answer_text IS NULL
            ORDER BY turn_number DESC LIMIT 1
            """,
            (session_id,),
        )
        if not row:
            return None
        return self._row_to_turn(row)

    async def next_turn_number(self, session_id: str) -> int:
        row = await self._fetchone(
            "SELECT COALESCE(MAX(turn_number), 0) AS last FROM turns WHERE session_id = ?",
            (session_id,),
        )
        return int(row["last"]) + 1

    async def get_recent_intents(self, session_id: str, limit: int = 5) -> list[str]:
        """Intents of the last `limit` intent-tagged turns, newest first"""
        rows = await self._fetchall(
            """
            SELECT json_extract(question_metadata, '$.intent') AS intent FROM turns
            WHERE session_id = ?
            AND json_extract(question_metadata, '$.intent') IS NOT NULL
            ORDER BY turn_number DESC LIMIT ?
            """,
            (session_id, limit),
        )
        return [row["intent"] for row in rows]

    async def get_last_turn_intents(self, session_id: str, limit: int = 2) -> list[Optional[str]]:
        """Intents of the last `limit` turns, newest first; None for untagged turns"""
        rows = await self._fetchall(
            """
            SELECT json_extract(question_metadata, '$.intent') AS intent FROM turns
            WHERE session_id = ?
            ORDER BY turn_number DESC LIMIT ?
            """,
            (session_id, limit),
        )
        return [row["intent"] for row in rows]

    # ========== EMBEDDINGS ==========

    async def insert_question_embedding(self, embedding: QuestionEmbedding) -> None:
        await self._execute(
            """
            INSERT INTO question_embeddings
            (session_id, question_text, embedding, similarity_hash, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                embedding.session_id,
                embedding.question_text,
                _vec_to_bytes(embedding.embedding_vector),
                embedding.similarity_hash,
                embedding.created_at.isoformat(),
            ),
        )

    async def get_recent_embeddings(self, session_id: str, limit: int = 5) -> list[QuestionEmbedding]:
        """Last `limit` stored question embeddings, newest first"""
        rows = await self._fetchall(
            """
            SELECT * FROM question_embeddings
            WHERE session_id = ?
            ORDER BY id DESC LIMIT ?
            """,
            (session_id, limit),
        )
        return [
            QuestionEmbedding(
                session_id=row["session_id"],
                question_text=row["question_text"],
                embedding_vector=_bytes_to_vec(row["embedding"]),
                similarity_hash=row["similarity_hash"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    # ========== INSIGHTS ==========

    async def insert_insights(self, insights: list[Insight]) -> None:
        for insight in insights:
            await self._execute(
                """
                INSERT INTO insights
                (id, session_id, insight_type, value, confidence, turn_number, metadata)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    insight.id,
                    insight.session_id,
                    insight.insight_type.value,
                    insight.value,
                    insight.confidence,
                    insight.turn_number,
                    json.dumps(insight.metadata),
                ),
            )
        if insights:
            logger.debug(f"Inserted {len(insights)} insights for session {insights[0].session_id}")

    async def get_insights(
        self,
        session_id: str,
        insight_type: Optional[InsightType] = None,
    ) -> list[Insight]:
        if insight_type:
            rows = await self._fetchall(
                """
                SELECT * FROM insights
                WHERE session_id = ? AND insight_type = ?
                ORDER BY turn_number ASC, confidence DESC
                """,
                (session_id, insight_type.value),
            )
        else:
            rows = await self._fetchall(
                "SELECT * FROM insights WHERE session_id = ? ORDER BY turn_number ASC, confidence DESC",
                (session_id,),
            )
        return [
            Insight(
                id=row["id"],
                session_id=row["session_id"],
                insight_type=InsightType(row["insight_type"]),
                value=row["value"],
                confidence=row["confidence"],
                turn_number=row["turn_number"],
                metadata=json.loads(row["metadata"]),
            )
            for row in rows
        ]

    # ========== ROW MAPPING ==========

    @staticmethod
    def _session_params(session: ConversationSession) -> tuple:
        return (
            session.id,
            session.survey_category,
            session.current_turn,
            session.completion_percentage,
            int(session.should_continue),
            session.phase.value,
            session.feedback_turns,
            json.dumps(session.topics_covered),
            json.dumps([e.model_dump() for e in session.kpis]),
            json.dumps([e.model_dump() for e in session.stakeholders]),
            json.dumps([e.model_dump() for e in session.pain_points]),
            session.ai_confidence,
            session.stop_reason,
        )

    @staticmethod
    def _row_to_session(row: aiosqlite.Row) -> ConversationSession:
        def entries(raw: str) -> list[InsightEntry]:
            return [InsightEntry(**item) for item in json.loads(raw)]

        return ConversationSession(
            id=row["id"],
            survey_category=row["survey_category"],
            current_turn=row["current_turn"],
            completion_percentage=row["completion_percentage"],
            should_continue=bool(row["should_continue"]),
            phase=ConversationPhase(row["phase"]),
            feedback_turns=row["feedback_turns"],
            topics_covered=json.loads(row["topics_covered"]),
            kpis=entries(row["kpis"]),
            stakeholders=entries(row["stakeholders"]),
            pain_points=entries(row["pain_points"]),
            ai_confidence=row["ai_confidence"],
            stop_reason=row["stop_reason"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_turn(row: aiosqlite.Row) -> Turn:
        return Turn(
            session_id=row["session_id"],
            turn_number=row["turn_number"],
            question_id=row["question_id"],
            question_text=row["question_text"],
            question_metadata=json.loads(row["question_metadata"]),
            answer_text=row["answer_text"],
            answer_metadata=json.loads(row["answer_metadata"]),
            ai_analysis=json.loads(row["ai_analysis"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
