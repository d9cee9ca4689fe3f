"""
Knowledge store on LanceDB.

Each collection is one table with a fixed vector dimension. Provides:
    - Upsert of entries keyed by id (overwrite on collision)
    - Exact cosine search with a relevance floor and result limit
    - Collection administration (list, count, ids, drop)
"""

from __future__ import annotations

import logging
import math
import re
import threading
from typing import Any, Sequence

import lancedb
import pyarrow as pa
import pyarrow.compute as pc

from lkb.config import Settings
from lkb.errors import (
    CollectionNotFound,
    EmbeddingFailure,
    ProviderError,
    StoreUnavailable,
)
from lkb.llm import EmbeddingProvider
from lkb.schemas import IndexedEntry, SearchResult

logger = logging.getLogger(__name__)

_COLLECTION_NAME = re.compile(r"^[A-Za-z0-9_.\-]+$")

# table_names() pages; ask for everything in one page
_MAX_TABLES = 100_000


def validate_collection_name(collection: str) -> str:
    if not _COLLECTION_NAME.match(collection):
        raise ValueError(f"Invalid collection name: {collection!r}")
    return collection


def entry_schema(dimension: int) -> pa.Schema:
    """Arrow schema for a collection of ``dimension``-sized vectors."""
    return pa.schema(
        [
            pa.field("id", pa.string(), nullable=False),
            pa.field("text", pa.string(), nullable=False),
            pa.field("vector", pa.list_(pa.float32(), dimension), nullable=False),
            pa.field("ordinal", pa.int64(), nullable=False),
        ]
    )


class KnowledgeStore:
    """
    Stores knowledge entries and searches them by semantic similarity.

    Usage:
        store = KnowledgeStore("./data/knowledge", embedder=llm)
        store.add("knowledge", "index1", "Delta -  Difference between ...")
        results = store.search("knowledge", "what is delta?", limit=3, min_relevance_score=0.7)
    """

    def __init__(
        self,
        uri: str,
        embedder: EmbeddingProvider,
        dimension: int = 1536,
        overfetch: int = 4,
        api_key: str | None = None,
    ):
        """
        Initialize the store.

        Args:
            uri: LanceDB URI (local directory or ``db://`` remote database)
            embedder: Embedding provider bound to this store
            dimension: Vector size for new collections
            overfetch: Candidate multiplier applied to ``limit`` before filtering
            api_key: Remote database API key
        """
        self.uri = uri
        self.embedder = embedder
        self.dimension = dimension
        self.overfetch = max(1, overfetch)
        self.api_key = api_key

        # Lazy connect
        self._db: lancedb.DBConnection | None = None
        self._tables: dict[str, Any] = {}
        self._next_ordinal: dict[str, int] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        embedder: EmbeddingProvider,
        config: dict[str, Any] | None = None,
    ) -> KnowledgeStore:
        config = config or {}
        return cls(
            uri=settings.store_uri,
            embedder=embedder,
            dimension=config.get("embeddings", {}).get("dimension", 1536),
            overfetch=config.get("store", {}).get("overfetch", 4),
            api_key=settings.store_api_key,
        )

    @property
    def db(self) -> lancedb.DBConnection:
        """Get or create database connection."""
        if self._db is None:
            try:
                if self.api_key:
                    self._db = lancedb.connect(self.uri, api_key=self.api_key)
                else:
                    self._db = lancedb.connect(self.uri)
            except Exception as e:
                raise StoreUnavailable(f"Cannot connect to knowledge store: {self.uri}", detail=str(e)) from e
        return self._db

    # ============================================================
    # Collections
    # ============================================================

    def collections(self) -> list[str]:
        """List all collection names."""
        try:
            return sorted(self.db.table_names(limit=_MAX_TABLES))
        except OSError as e:
            raise StoreUnavailable("Cannot list collections", detail=str(e)) from e

    def exists(self, collection: str) -> bool:
        return collection in self._tables or collection in self.collections()

    def _table(self, collection: str, create: bool = False) -> Any:
        validate_collection_name(collection)
        with self._lock:
            table = self._tables.get(collection)
            if table is not None:
                return table

            try:
                if collection in self.collections():
                    table = self.db.open_table(collection)
                elif create:
                    logger.info(f"Creating collection {collection} (dimension {self.dimension})")
                    table = self.db.create_table(
                        collection, schema=entry_schema(self.dimension), exist_ok=True
                    )
                else:
                    raise CollectionNotFound(collection)
            except OSError as e:
                raise StoreUnavailable(f"Cannot open collection {collection}", detail=str(e)) from e

            self._tables[collection] = table
            return table

    def dimension_of(self, collection: str) -> int:
        """Vector size fixed for a collection."""
        return self._table(collection).schema.field("vector").type.list_size

    def count(self, collection: str) -> int:
        return self._table(collection).count_rows()

    def ids(self, collection: str) -> list[str]:
        """All entry ids in ``collection`` in insertion order."""
        rows = self._table(collection).to_arrow().select(["id", "ordinal"]).to_pylist()
        return [row["id"] for row in sorted(rows, key=lambda r: r["ordinal"])]

    def get(self, collection: str, entry_id: str) -> IndexedEntry | None:
        """Look up one entry by id, vector included."""
        escaped = entry_id.replace("'", "''")
        rows = (
            self._table(collection)
            .search()
            .where(f"id = '{escaped}'", prefilter=True)
            .limit(1)
            .to_list()
        )
        if not rows:
            return None
        row = rows[0]
        return IndexedEntry(
            id=row["id"],
            text=row["text"],
            vector=[float(x) for x in row["vector"]],
            ordinal=row["ordinal"],
        )

    def drop(self, collection: str) -> None:
        """Delete a collection and all its entries."""
        validate_collection_name(collection)
        with self._lock:
            if collection in self.collections():
                logger.info(f"Dropping collection {collection}")
                self.db.drop_table(collection)
            self._tables.pop(collection, None)
            self._next_ordinal.pop(collection, None)

    # ============================================================
    # Writes
    # ============================================================

    def _embed(self, text: str) -> list[float]:
        try:
            return self.embedder.embed(text)
        except ProviderError as e:
            raise EmbeddingFailure(f"Embedding failed: {e.message}", detail=e.detail) from e

    def _check_dimensions(self, collection: str, vectors: Sequence[Sequence[float]]) -> None:
        # A collection that does not exist yet will be created with self.dimension
        expected = self.dimension_of(collection) if self.exists(collection) else self.dimension
        for vector in vectors:
            if len(vector) != expected:
                raise EmbeddingFailure(
                    f"Vector has {len(vector)} dimensions, collection {collection} expects {expected}"
                )

    def _reserve_ordinals(self, collection: str, table: Any, n: int) -> int:
        if collection not in self._next_ordinal:
            current = pc.max(table.to_arrow().column("ordinal")).as_py()
            self._next_ordinal[collection] = 0 if current is None else current + 1
        start = self._next_ordinal[collection]
        self._next_ordinal[collection] = start + n
        return start

    def add(self, collection: str, entry_id: str, text: str) -> None:
        """
        Embed ``text`` and store it under ``entry_id``.

        Overwrites an existing entry with the same id.

        Raises:
            EmbeddingFailure: vectorization failed
            StoreUnavailable: backend unreachable
        """
        vector = self._embed(text)
        self.upsert(collection, [(entry_id, text, vector)])

    def upsert(
        self,
        collection: str,
        entries: Sequence[tuple[str, str, Sequence[float]]],
    ) -> int:
        """
        Write already-embedded entries as one atomic batch.

        Args:
            collection: Target collection (created if absent)
            entries: ``(id, text, vector)`` tuples

        Returns:
            Number of entries written
        """
        if not entries:
            return 0

        ids = [entry_id for entry_id, _, _ in entries]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate ids in batch for {collection}")

        with self._lock:
            self._check_dimensions(collection, [vector for _, _, vector in entries])
            table = self._table(collection, create=True)

            start = self._reserve_ordinals(collection, table, len(entries))
            rows = [
                {
                    "id": entry_id,
                    "text": text,
                    "vector": [float(x) for x in vector],
                    "ordinal": start + i,
                }
                for i, (entry_id, text, vector) in enumerate(entries)
            ]
            data = pa.Table.from_pylist(rows, schema=table.schema)

            try:
                (
                    table.merge_insert("id")
                    .when_matched_update_all()
                    .when_not_matched_insert_all()
                    .execute(data)
                )
            except OSError as e:
                raise StoreUnavailable(f"Write to {collection} failed", detail=str(e)) from e

        logger.debug(f"Upserted {len(rows)} entries into {collection}")
        return len(rows)

    # ============================================================
    # Search
    # ============================================================

    def search(
        self,
        collection: str,
        query_text: str,
        limit: int,
        min_relevance_score: float,
    ) -> list[SearchResult]:
        """
        Search a collection by semantic similarity to ``query_text``.

        Raises:
            CollectionNotFound: the collection was never written to
            EmbeddingFailure: the query could not be embedded
        """
        self._table(collection)
        vector = self._embed(query_text)
        return self.search_vector(collection, vector, limit, min_relevance_score)

    def search_vector(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int,
        min_relevance_score: float,
    ) -> list[SearchResult]:
        """
        Search a collection by cosine similarity to ``vector``.

        Args:
            collection: Collection to search
            vector: Query embedding
            limit: Maximum number of results (positive)
            min_relevance_score: Relevance floor in [0, 1]

        Returns:
            Results with score >= floor, by descending score then insertion order
        """
        if limit < 1:
            raise ValueError(f"limit must be positive, got {limit}")
        if not 0.0 <= min_relevance_score <= 1.0:
            raise ValueError(f"min_relevance_score must be in [0, 1], got {min_relevance_score}")

        table = self._table(collection)
        self._check_dimensions(collection, [vector])

        try:
            rows = (
                table.search([float(x) for x in vector], vector_column_name="vector")
                .distance_type("cosine")
                .select(["id", "text", "ordinal"])
                .limit(limit * self.overfetch)
                .to_list()
            )
        except OSError as e:
            raise StoreUnavailable(f"Search in {collection} failed", detail=str(e)) from e

        results = []
        for row in rows:
            score = relevance_from_distance(row.get("_distance"))
            if score < min_relevance_score:
                continue
            entry = IndexedEntry(id=row["id"], text=row["text"], ordinal=row["ordinal"])
            results.append(SearchResult(entry=entry, relevance_score=score))

        results.sort(key=lambda r: (-r.relevance_score, r.entry.ordinal))
        return results[:limit]


def relevance_from_distance(distance: float | None) -> float:
    """Convert a cosine distance into a relevance score in [0, 1]."""
    if distance is None or not math.isfinite(distance):
        return 0.0
    return min(1.0, max(0.0, 1.0 - float(distance)))
