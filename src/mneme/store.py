"""SQLite storage for categories, embeddings and profiles."""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Sequence

import numpy as np

from .errors import CategoryNotFoundError, StoreError
from .models import (
    Category,
    CategoryEmbedding,
    CategoryKind,
    ConversationSummary,
    Fact,
    UserProfile,
    parse_timestamp,
    utcnow,
)
from .rules import GENERAL_CATEGORY_NAME

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    name        TEXT NOT NULL,
    kind        TEXT NOT NULL CHECK (kind IN ('general', 'primary', 'sub')),
    fact_count  INTEGER NOT NULL DEFAULT 0,
    facts       TEXT NOT NULL DEFAULT '[]',
    themes      TEXT NOT NULL DEFAULT '[]',
    parent_id   TEXT REFERENCES categories(id),
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    UNIQUE(user_id, name)
);
CREATE INDEX IF NOT EXISTS idx_categories_user ON categories(user_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_one_general
    ON categories(user_id) WHERE kind = 'general';

CREATE TABLE IF NOT EXISTS category_embeddings (
    category_id TEXT NOT NULL UNIQUE REFERENCES categories(id),
    vector      BLOB NOT NULL,
    dimensions  INTEGER NOT NULL,
    content     TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_profile (
    user_id     TEXT PRIMARY KEY,
    name        TEXT,
    preferences TEXT NOT NULL DEFAULT '{}',
    facts       TEXT NOT NULL DEFAULT '{}',
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversation_summaries (
    conversation_id TEXT PRIMARY KEY,
    summary         TEXT NOT NULL,
    topics          TEXT NOT NULL DEFAULT '[]',
    updated_at      TEXT NOT NULL
);
"""

CATEGORY_COLUMNS = "id, user_id, name, kind, fact_count, facts, themes, parent_id, created_at, updated_at"


class MemoryStore:
    """Persistent storage for the memory subsystem using SQLite.

    Categories keep their facts in a JSON column; embeddings are float32
    blobs searched with numpy cosine similarity. Categories are never
    deleted.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def _errors(self, action: str) -> Iterator[None]:
        """Translate sqlite failures into StoreError."""
        try:
            yield
        except sqlite3.Error as e:
            if self._conn is not None and self._conn.in_transaction:
                self._conn.rollback()
            logger.error("Store failure while %s: %s", action, e)
            raise StoreError(f"Failed {action}: {e}") from e

    def init_db(self) -> None:
        """Create the tables if they don't exist."""
        with self._errors("initializing schema"):
            conn = self._get_connection()
            conn.executescript(SCHEMA)
            conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # Categories

    def create_category(
        self,
        user_id: str,
        name: str,
        kind: CategoryKind,
        themes: Sequence[str] = (),
        parent_id: str | None = None,
    ) -> Category:
        """Insert a new empty category.

        Raises:
            StoreError: If the insert violates a constraint (duplicate name,
                second general category) or the database fails.
        """
        now = utcnow()
        category = Category(
            id=uuid.uuid4().hex,
            user_id=user_id,
            name=name,
            kind=kind,
            themes=list(themes),
            created_at=now,
            updated_at=now,
            parent_id=parent_id,
        )
        with self._errors(f"creating category {name!r}"):
            conn = self._get_connection()
            conn.execute(
                f"INSERT INTO categories ({CATEGORY_COLUMNS}) VALUES (?, ?, ?, ?, 0, '[]', ?, ?, ?, ?)",
                (
                    category.id,
                    user_id,
                    name,
                    kind.value,
                    json.dumps(category.themes),
                    parent_id,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            conn.commit()
        return category

    def get_category(self, category_id: str) -> Category:
        """Get a category by id.

        Raises:
            CategoryNotFoundError: If no category has this id.
        """
        with self._errors("reading category"):
            row = self._get_connection().execute(
                f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = ?",
                (category_id,),
            ).fetchone()
        if row is None:
            raise CategoryNotFoundError(category_id)
        return self._row_to_category(row)

    def list_categories(self, user_id: str, min_facts: int = 0) -> list[Category]:
        """List a user's categories, oldest first.

        Args:
            user_id: Owner of the categories.
            min_facts: Only return categories with at least this many facts.
        """
        with self._errors("listing categories"):
            rows = self._get_connection().execute(
                f"SELECT {CATEGORY_COLUMNS} FROM categories "
                "WHERE user_id = ? AND fact_count >= ? ORDER BY created_at, rowid",
                (user_id, min_facts),
            ).fetchall()
        return [self._row_to_category(row) for row in rows]

    def find_category_by_name(self, user_id: str, name: str) -> Category | None:
        """Get a category by its exact display name."""
        with self._errors("finding category"):
            row = self._get_connection().execute(
                f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE user_id = ? AND name = ?",
                (user_id, name),
            ).fetchone()
        return self._row_to_category(row) if row else None

    def find_categories_matching(self, user_id: str, fragments: Sequence[str]) -> list[Category]:
        """Find categories whose name contains any fragment (case-insensitive).

        Results are ordered by fact count, largest first.
        """
        if not fragments:
            return []
        clauses = " OR ".join("LOWER(name) LIKE ?" for _ in fragments)
        params = [user_id, *(f"%{f.lower()}%" for f in fragments)]
        with self._errors("matching categories"):
            rows = self._get_connection().execute(
                f"SELECT {CATEGORY_COLUMNS} FROM categories "
                f"WHERE user_id = ? AND ({clauses}) ORDER BY fact_count DESC, created_at",
                params,
            ).fetchall()
        return [self._row_to_category(row) for row in rows]

    def get_general_category(self, user_id: str) -> Category | None:
        """Get the user's general (fallback) category, if created."""
        with self._errors("reading general category"):
            row = self._get_connection().execute(
                f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE user_id = ? AND kind = 'general'",
                (user_id,),
            ).fetchone()
        return self._row_to_category(row) if row else None

    def ensure_general_category(self, user_id: str) -> Category:
        """Create the general category unless it already exists.

        Idempotent: the partial unique index guarantees exactly one general
        category per user even if two callers race.
        """
        existing = self.get_general_category(user_id)
        if existing:
            return existing

        now = utcnow().isoformat()
        with self._errors("creating general category"):
            conn = self._get_connection()
            conn.execute(
                f"INSERT INTO categories ({CATEGORY_COLUMNS}) "
                "VALUES (?, ?, ?, 'general', 0, '[]', '[]', NULL, ?, ?) "
                "ON CONFLICT DO NOTHING",
                (uuid.uuid4().hex, user_id, GENERAL_CATEGORY_NAME, now, now),
            )
            conn.commit()

        general = self.get_general_category(user_id)
        if general is None:
            raise StoreError(f"General category missing for user {user_id}")
        return general

    def append_fact(self, category_id: str, fact: Fact) -> Category:
        """Append a fact to a category and update its count.

        The read and the write happen inside one IMMEDIATE transaction, so
        writers sharing this database file cannot interleave. Writers using
        separate stores over a replicated backend remain last-writer-wins.

        Returns:
            The updated category.

        Raises:
            CategoryNotFoundError: If the category does not exist.
        """
        conn = self._get_connection()
        with self._errors("appending fact"):
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute(
                    f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = ?",
                    (category_id,),
                ).fetchone()
                if row is None:
                    raise CategoryNotFoundError(category_id)

                category = self._row_to_category(row)
                category.facts.append(fact)
                category.updated_at = utcnow()

                conn.execute(
                    "UPDATE categories SET facts = ?, fact_count = ?, updated_at = ? WHERE id = ?",
                    (
                        json.dumps([f.to_dict() for f in category.facts]),
                        len(category.facts),
                        category.updated_at.isoformat(),
                        category_id,
                    ),
                )
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        return category

    # Embeddings

    def get_embedding(self, category_id: str) -> CategoryEmbedding | None:
        """Get the embedding row of a category, if any."""
        with self._errors("reading embedding"):
            row = self._get_connection().execute(
                "SELECT category_id, vector, content, created_at FROM category_embeddings "
                "WHERE category_id = ?",
                (category_id,),
            ).fetchone()
        return self._row_to_embedding(row) if row else None

    def upsert_embedding(self, embedding: CategoryEmbedding) -> None:
        """Insert or replace the single embedding row of a category."""
        vector = np.asarray(embedding.vector, dtype=np.float32)
        with self._errors("storing embedding"):
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO category_embeddings (category_id, vector, dimensions, content, created_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(category_id) DO UPDATE SET
                    vector = excluded.vector,
                    dimensions = excluded.dimensions,
                    content = excluded.content,
                    created_at = excluded.created_at
                """,
                (
                    embedding.category_id,
                    vector.tobytes(),
                    int(vector.shape[0]),
                    embedding.content,
                    embedding.created_at.isoformat(),
                ),
            )
            conn.commit()

    def list_embeddings(self, user_id: str) -> list[CategoryEmbedding]:
        """All embeddings belonging to a user's categories."""
        with self._errors("listing embeddings"):
            rows = self._get_connection().execute(
                """
                SELECT e.category_id, e.vector, e.content, e.created_at
                FROM category_embeddings e
                JOIN categories c ON c.id = e.category_id
                WHERE c.user_id = ?
                """,
                (user_id,),
            ).fetchall()
        return [self._row_to_embedding(row) for row in rows]

    def search_embeddings(
        self,
        user_id: str,
        vector: Sequence[float],
        k: int,
        min_similarity: float = -1.0,
    ) -> list[tuple[CategoryEmbedding, float]]:
        """Top-K cosine similarity search over a user's category embeddings.

        Args:
            user_id: Owner whose categories are searched.
            vector: Query vector.
            k: Maximum number of results.
            min_similarity: Results below this similarity are dropped.

        Returns:
            (embedding, similarity) pairs, most similar first.
        """
        query = np.asarray(vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        if k < 1 or query_norm == 0.0:
            return []

        candidates = [
            e for e in self.list_embeddings(user_id) if len(e.vector) == query.shape[0]
        ]
        if not candidates:
            return []

        matrix = np.asarray([e.vector for e in candidates], dtype=np.float32)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0.0] = 1.0
        similarities = matrix @ query / (norms * query_norm)

        order = np.argsort(-similarities)[:k]
        return [
            (candidates[i], float(similarities[i]))
            for i in order
            if similarities[i] >= min_similarity
        ]

    # Profiles

    def get_profile(self, user_id: str) -> UserProfile | None:
        """Get the denormalized profile of a user."""
        with self._errors("reading profile"):
            row = self._get_connection().execute(
                "SELECT user_id, name, preferences, facts, updated_at FROM user_profile WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return UserProfile(
            user_id=row["user_id"],
            name=row["name"],
            preferences=json.loads(row["preferences"]),
            facts=json.loads(row["facts"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def upsert_profile(self, profile: UserProfile) -> UserProfile:
        """Insert or replace a user's profile, stamping updated_at."""
        profile.updated_at = utcnow()
        with self._errors("storing profile"):
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO user_profile (user_id, name, preferences, facts, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    name = excluded.name,
                    preferences = excluded.preferences,
                    facts = excluded.facts,
                    updated_at = excluded.updated_at
                """,
                (
                    profile.user_id,
                    profile.name,
                    json.dumps(profile.preferences),
                    json.dumps(profile.facts),
                    profile.updated_at.isoformat(),
                ),
            )
            conn.commit()
        return profile

    # Conversation summaries

    def get_conversation_summary(self, conversation_id: str) -> ConversationSummary | None:
        """Get the stored summary of a conversation."""
        with self._errors("reading conversation summary"):
            row = self._get_connection().execute(
                "SELECT conversation_id, summary, topics, updated_at FROM conversation_summaries "
                "WHERE conversation_id = ?",
                (conversation_id,),
            ).fetchone()
        if row is None:
            return None
        return ConversationSummary(
            conversation_id=row["conversation_id"],
            summary=row["summary"],
            topics=json.loads(row["topics"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )

    def save_conversation_summary(self, summary: ConversationSummary) -> None:
        """Insert or replace a conversation summary."""
        summary.updated_at = utcnow()
        with self._errors("storing conversation summary"):
            conn = self._get_connection()
            conn.execute(
                """
                INSERT INTO conversation_summaries (conversation_id, summary, topics, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(conversation_id) DO UPDATE SET
                    summary = excluded.summary,
                    topics = excluded.topics,
                    updated_at = excluded.updated_at
                """,
                (
                    summary.conversation_id,
                    summary.summary,
                    json.dumps(summary.topics),
                    summary.updated_at.isoformat(),
                ),
            )
            conn.commit()

    # Row conversion

    def _row_to_category(self, row: sqlite3.Row) -> Category:
        """Convert a database row to a Category."""
        try:
            facts = [Fact.from_dict(item) for item in json.loads(row["facts"])]
            themes = json.loads(row["themes"])
        except (ValueError, KeyError) as e:
            raise StoreError(f"Corrupt facts in category {row['id']}: {e}") from e
        return Category(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            kind=CategoryKind(row["kind"]),
            facts=facts,
            themes=themes,
            created_at=parse_timestamp(row["created_at"]) or utcnow(),
            updated_at=parse_timestamp(row["updated_at"]) or utcnow(),
            parent_id=row["parent_id"],
        )

    def _row_to_embedding(self, row: sqlite3.Row) -> CategoryEmbedding:
        """Convert a database row to a CategoryEmbedding."""
        vector = np.frombuffer(row["vector"], dtype=np.float32)
        created_at: datetime = parse_timestamp(row["created_at"]) or utcnow()
        return CategoryEmbedding(
            category_id=row["category_id"],
            vector=vector.tolist(),
            content=row["content"],
            created_at=created_at,
        )
