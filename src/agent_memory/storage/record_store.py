"""
Vector record store: SQLite rows plus an HNSW nearest-neighbor index.

Records are `{id, vector, text, filepath}`. Rows live in SQLite via
aiosqlite; vectors are mirrored into an hnswlib cosine index that is rebuilt
from the table on open. There is no upsert: adding a record with fresh ids
always appends.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, AsyncIterator, Sequence

import aiosqlite
import hnswlib
import numpy as np
import structlog

from agent_memory.errors import NotInitializedError

if TYPE_CHECKING:
    from agent_memory.config import Config

logger = structlog.get_logger(__name__)

# Placeholder row written when the table is first created
SENTINEL_ID = "0"
SENTINEL_FILEPATH = "init"
SENTINEL_TEXT = "init"


@dataclass
class Record:
    """A stored chunk and its embedding."""

    id: str
    vector: np.ndarray
    text: str
    filepath: str
    distance: float | None = None

    @property
    def is_sentinel(self) -> bool:
        return self.filepath == SENTINEL_FILEPATH

    def to_dict(self, include_vector: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "filepath": self.filepath,
        }
        if include_vector:
            data["vector"] = self.vector.tolist()
        if self.distance is not None:
            data["distance"] = self.distance
        return data


def escape_literal(value: str) -> str:
    """Escape a value for use inside a single-quoted SQL string literal."""
    return value.replace("'", "''")


def eq_predicate(column: str, value: str) -> str:
    """Build a `column = 'value'` predicate with the value escaped."""
    return f"{column} = '{escape_literal(value)}'"


def _to_blob(vector: np.ndarray) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def _from_blob(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()


class RecordStore:
    """
    Persisted record collection with add / query / search / delete.

    Features:
    - Fixed vector dimension per store instance
    - Sentinel row forces table creation and is never indexed for search
    - Deletion by SQL predicate over id / filepath
    - HNSW search with exact fallback
    """

    def __init__(self, config: "Config") -> None:
        """
        Initialize record store.

        Args:
            config: agent-memory configuration.
        """
        self.config = config
        self.db_path = config.db_path
        self.table = config.storage.table_name
        self.dimension = config.embedding.dimension

        self.m = config.storage.hnsw_m
        self.ef_construction = config.storage.hnsw_ef_construction
        self.ef_search = config.storage.hnsw_ef_search
        self.initial_capacity = config.storage.initial_capacity

        self._db: aiosqlite.Connection | None = None
        self._index: hnswlib.Index | None = None
        self._label_to_id: dict[int, str] = {}
        self._id_to_label: dict[str, int] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._next_label = 0

    async def initialize(self) -> None:
        """Open the database, create the table if needed and load the index."""
        logger.info("Initializing record store", db_path=str(self.db_path))

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path, isolation_level=None)
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA synchronous=NORMAL")

        if not await self._table_exists():
            await self._create_table()

        await self._build_index()

        logger.info(
            "Record store initialized",
            table=self.table,
            num_vectors=len(self._label_to_id),
        )

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None
        self._index = None
        logger.info("Record store closed")

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise NotInitializedError("Record store not initialized")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for transactions."""
        db = self._conn()
        await db.execute("BEGIN")
        try:
            yield db
            await db.execute("COMMIT")
        except Exception:
            await db.execute("ROLLBACK")
            raise

    async def _table_exists(self) -> bool:
        async with self._conn().execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self.table,),
        ) as cursor:
            return await cursor.fetchone() is not None

    async def _create_table(self) -> None:
        """Create the records table seeded with the sentinel row."""
        async with self.transaction() as conn:
            await conn.execute(
                f"""
                CREATE TABLE {self.table} (
                    id TEXT PRIMARY KEY,
                    filepath TEXT NOT NULL,
                    text TEXT NOT NULL,
                    vector BLOB NOT NULL
                )
                """
            )
            await conn.execute(
                f"CREATE INDEX idx_{self.table}_filepath ON {self.table}(filepath)"
            )
            await conn.execute(
                f"INSERT INTO {self.table} (id, filepath, text, vector) VALUES (?, ?, ?, ?)",
                (
                    SENTINEL_ID,
                    SENTINEL_FILEPATH,
                    SENTINEL_TEXT,
                    _to_blob(np.zeros(self.dimension, dtype=np.float32)),
                ),
            )
        logger.info("Created record table", table=self.table)

    async def _build_index(self) -> None:
        """Rebuild the HNSW index from every non-sentinel row."""
        records = [r for r in await self.query() if not r.is_sentinel]

        capacity = max(self.initial_capacity, len(records) * 2)
        self._index = hnswlib.Index(space="cosine", dim=self.dimension)
        self._index.init_index(
            max_elements=capacity,
            ef_construction=self.ef_construction,
            M=self.m,
        )
        self._index.set_ef(self.ef_search)

        self._label_to_id = {}
        self._id_to_label = {}
        self._vectors = {}
        self._next_label = 0

        self._index_records(records)

    def _index_records(self, records: Sequence[Record]) -> None:
        if not records or self._index is None:
            return

        needed = self._index.get_current_count() + len(records)
        if needed > self._index.get_max_elements():
            self._index.resize_index(max(needed, self._index.get_max_elements() * 2))

        labels = []
        for record in records:
            label = self._next_label
            self._next_label += 1
            self._label_to_id[label] = record.id
            self._id_to_label[record.id] = label
            self._vectors[record.id] = record.vector
            labels.append(label)

        self._index.add_items(
            np.vstack([r.vector for r in records]).astype(np.float32),
            np.array(labels),
        )

    def _unindex(self, record_ids: Sequence[str]) -> None:
        for record_id in record_ids:
            label = self._id_to_label.pop(record_id, None)
            self._vectors.pop(record_id, None)
            if label is None:
                continue
            del self._label_to_id[label]
            if self._index is not None:
                self._index.mark_deleted(label)

    def _check_vector(self, vector: np.ndarray) -> np.ndarray:
        array = np.asarray(vector, dtype=np.float32).reshape(-1)
        if array.shape[0] != self.dimension:
            raise ValueError(
                f"Vector has dimension {array.shape[0]}, store expects {self.dimension}"
            )
        return array

    async def add(self, records: Sequence[Record]) -> int:
        """
        Append records in one transaction.

        Args:
            records: Records with unique ids and D-length vectors.

        Returns:
            Number of records written.
        """
        if not records:
            return 0

        prepared = [
            Record(
                id=r.id,
                vector=self._check_vector(r.vector),
                text=r.text,
                filepath=r.filepath,
            )
            for r in records
        ]

        async with self.transaction() as conn:
            await conn.executemany(
                f"INSERT INTO {self.table} (id, filepath, text, vector) VALUES (?, ?, ?, ?)",
                [(r.id, r.filepath, r.text, _to_blob(r.vector)) for r in prepared],
            )

        self._index_records([r for r in prepared if not r.is_sentinel])
        return len(prepared)

    async def query(self, predicate: str | None = None) -> list[Record]:
        """
        Return records in insertion order, optionally filtered.

        Args:
            predicate: SQL boolean expression over id / filepath.
        """
        sql = f"SELECT id, filepath, text, vector FROM {self.table}"
        if predicate:
            sql += f" WHERE {predicate}"
        sql += " ORDER BY rowid"

        async with self._conn().execute(sql) as cursor:
            rows = await cursor.fetchall()

        return [
            Record(id=row[0], filepath=row[1], text=row[2], vector=_from_blob(row[3]))
            for row in rows
        ]

    async def count(self, predicate: str | None = None) -> int:
        """Count rows, optionally filtered."""
        sql = f"SELECT COUNT(*) FROM {self.table}"
        if predicate:
            sql += f" WHERE {predicate}"
        async with self._conn().execute(sql) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0

    async def delete(self, predicate: str) -> int:
        """
        Delete every record matching a predicate.

        Args:
            predicate: SQL boolean expression over id / filepath.

        Returns:
            Number of deleted records.
        """
        if not predicate.strip():
            raise ValueError("Refusing to delete with an empty predicate")

        async with self.transaction() as conn:
            async with conn.execute(
                f"SELECT id FROM {self.table} WHERE {predicate}"
            ) as cursor:
                ids = [row[0] for row in await cursor.fetchall()]
            await conn.execute(f"DELETE FROM {self.table} WHERE {predicate}")

        self._unindex(ids)
        return len(ids)

    async def search(self, vector: np.ndarray, limit: int = 10) -> list[Record]:
        """
        Nearest-neighbor search by cosine distance.

        Args:
            vector: Query vector.
            limit: Maximum number of results.

        Returns:
            Records ordered from most to least similar, with distance set.
        """
        self._conn()
        query = self._check_vector(vector)

        live = len(self._label_to_id)
        if limit <= 0 or live == 0:
            return []

        k = min(limit, live)
        try:
            ranked = self._knn(query, k)
        except RuntimeError as e:
            logger.debug("HNSW query failed, using exact search", error=str(e))
            ranked = self._exact_knn(query, k)

        if not ranked:
            return []

        placeholders = ",".join("?" * len(ranked))
        async with self._conn().execute(
            f"SELECT id, filepath, text, vector FROM {self.table} WHERE id IN ({placeholders})",
            [record_id for record_id, _ in ranked],
        ) as cursor:
            rows = {row[0]: row for row in await cursor.fetchall()}

        results = []
        for record_id, distance in ranked:
            row = rows.get(record_id)
            if row is None:
                continue
            results.append(
                Record(
                    id=row[0],
                    filepath=row[1],
                    text=row[2],
                    vector=_from_blob(row[3]),
                    distance=distance,
                )
            )
        return results

    def _knn(self, query: np.ndarray, k: int) -> list[tuple[str, float]]:
        if self._index is None:
            raise NotInitializedError("Record store not initialized")

        self._index.set_ef(max(self.ef_search, k))
        labels, distances = self._index.knn_query(query.reshape(1, -1), k=k)

        ranked = []
        for label, distance in zip(labels[0], distances[0]):
            record_id = self._label_to_id.get(int(label))
            if record_id is not None:
                ranked.append((record_id, float(distance)))
        return ranked

    def _exact_knn(self, query: np.ndarray, k: int) -> list[tuple[str, float]]:
        ids = list(self._vectors)
        matrix = np.vstack([self._vectors[i] for i in ids])

        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = 1
        q_norm = np.linalg.norm(query) or 1.0
        distances = 1.0 - (matrix @ query) / (norms * q_norm)

        order = np.argsort(distances, kind="stable")[:k]
        return [(ids[i], float(distances[i])) for i in order]

    async def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        stats: dict[str, Any] = {
            "table": self.table,
            "dimension": self.dimension,
            "num_vectors": len(self._label_to_id),
        }
        if self._db:
            stats["total_rows"] = await self.count()
        if self._index is not None:
            stats["capacity"] = self._index.get_max_elements()
        return stats
