"""
asyncpg_repository.py — Production PostgreSQL repository implementation.

Implements the TaxonomyRepository interface on an asyncpg connection pool.
Natural-key uniqueness is enforced by the schema; upserts use
INSERT ... ON CONFLICT so concurrent imports converge on the same row.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

import asyncpg

from archive_taxonomy.config import Settings
from archive_taxonomy.errors import TransactionFailure, UniqueViolation
from archive_taxonomy.models import (
    Brand, Category, Department, Document, FileAsset, MachineModel,
    Tag, TechnicalMetadata, Topic,
)
from archive_taxonomy.repository import TaxonomyRepository, WriteScope

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Schema ───────────────────────────────────────────────────────────────────

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS departments (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS categories (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS topics (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    slug TEXT NOT NULL,
    category_id UUID NOT NULL REFERENCES categories(id),
    UNIQUE (category_id, slug)
);
CREATE TABLE IF NOT EXISTS brands (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS machine_models (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL UNIQUE,
    brand_id UUID REFERENCES brands(id)
);
CREATE TABLE IF NOT EXISTS tags (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);
CREATE TABLE IF NOT EXISTS file_assets (
    id UUID PRIMARY KEY,
    hash TEXT NOT NULL UNIQUE,
    original_name TEXT NOT NULL,
    storage_path TEXT NOT NULL,
    bucket TEXT NOT NULL,
    mime TEXT NOT NULL,
    size BIGINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE TABLE IF NOT EXISTS documents (
    id UUID PRIMARY KEY,
    title TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    original_file_path TEXT,
    department_id UUID REFERENCES departments(id),
    category_id UUID NOT NULL REFERENCES categories(id),
    topic_id UUID NOT NULL REFERENCES topics(id),
    file_asset_id UUID REFERENCES file_assets(id),
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS idx_documents_title_topic ON documents (title, topic_id);
CREATE TABLE IF NOT EXISTS technical_metadata (
    id UUID PRIMARY KEY,
    document_id UUID NOT NULL UNIQUE REFERENCES documents(id),
    category_id UUID NOT NULL REFERENCES categories(id),
    topic_id UUID NOT NULL REFERENCES topics(id),
    brand_id UUID REFERENCES brands(id),
    machine_model_ids UUID[] NOT NULL DEFAULT '{}',
    tag_ids UUID[] NOT NULL DEFAULT '{}',
    steps TEXT[] NOT NULL DEFAULT '{}',
    source TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS document_machine_models (
    document_id UUID NOT NULL REFERENCES documents(id),
    machine_model_id UUID NOT NULL REFERENCES machine_models(id),
    PRIMARY KEY (document_id, machine_model_id)
);
CREATE TABLE IF NOT EXISTS document_tags (
    document_id UUID NOT NULL REFERENCES documents(id),
    tag_id UUID NOT NULL REFERENCES tags(id),
    PRIMARY KEY (document_id, tag_id)
);
"""

# Child tables first.
CLEAN_ORDER = (
    "document_machine_models",
    "document_tags",
    "technical_metadata",
    "documents",
    "topics",
    "file_assets",
)


def row_count(status: str) -> int:
    """Parse the row count out of a command tag such as 'DELETE 12'."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError):
        return 0


# ── Connection Pool Manager ──────────────────────────────────────────────────

class DatabasePool:
    """Manages asyncpg connection pool lifecycle."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 5):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        self._pool = await asyncpg.create_pool(
            self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=30,
        )
        logger.info(
            "Database pool initialized (min=%d, max=%d)", self.min_size, self.max_size
        )

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self, timeout: Optional[float] = None):
        async with self.pool.acquire(timeout=timeout) as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self, timeout: Optional[float] = None):
        async with self.pool.acquire(timeout=timeout) as conn:
            async with conn.transaction():
                yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            logger.info("Database pool closed")


# ── Write Scope (one transaction) ────────────────────────────────────────────

class PgWriteScope(WriteScope):
    """WriteScope bound to a connection that is inside a transaction."""

    def __init__(self, conn: asyncpg.Connection):
        self.conn = conn

    async def upsert_file_asset(self, asset: FileAsset) -> FileAsset:
        row = await self.conn.fetchrow(
            """
            INSERT INTO file_assets (id, hash, original_name, storage_path, bucket,
                                     mime, size, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (hash) DO UPDATE SET hash = EXCLUDED.hash
            RETURNING *
            """,
            asset.id, asset.hash, asset.original_name, asset.storage_path,
            asset.bucket, asset.mime, asset.size, asset.created_at,
        )
        return FileAsset(**dict(row))

    async def upsert_tag(self, name: str) -> Tag:
        return await _upsert_named(self.conn, "tags", Tag, name)

    async def save_document(self, doc: Document) -> Document:
        row = await self.conn.fetchrow(
            """
            INSERT INTO documents (id, title, content, original_file_path, department_id,
                                   category_id, topic_id, file_asset_id, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            ON CONFLICT (id) DO UPDATE SET
                title = EXCLUDED.title,
                content = EXCLUDED.content,
                original_file_path = EXCLUDED.original_file_path,
                department_id = EXCLUDED.department_id,
                category_id = EXCLUDED.category_id,
                topic_id = EXCLUDED.topic_id,
                file_asset_id = EXCLUDED.file_asset_id,
                updated_at = EXCLUDED.updated_at
            RETURNING *
            """,
            doc.id, doc.title, doc.content, doc.original_file_path, doc.department_id,
            doc.category_id, doc.topic_id, doc.file_asset_id, doc.created_at,
            datetime.now(timezone.utc),
        )
        return Document(**dict(row))

    async def upsert_technical_metadata(self, meta: TechnicalMetadata) -> TechnicalMetadata:
        row = await self.conn.fetchrow(
            """
            INSERT INTO technical_metadata (id, document_id, category_id, topic_id, brand_id,
                                            machine_model_ids, tag_ids, steps, source)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            ON CONFLICT (document_id) DO UPDATE SET
                category_id = EXCLUDED.category_id,
                topic_id = EXCLUDED.topic_id,
                brand_id = EXCLUDED.brand_id,
                machine_model_ids = EXCLUDED.machine_model_ids,
                tag_ids = EXCLUDED.tag_ids,
                steps = EXCLUDED.steps,
                source = EXCLUDED.source
            RETURNING *
            """,
            meta.id, meta.document_id, meta.category_id, meta.topic_id, meta.brand_id,
            meta.machine_model_ids, meta.tag_ids, meta.steps, meta.source.value,
        )
        return TechnicalMetadata(**dict(row))

    async def sync_document_models(self, document_id: UUID, model_ids: list[UUID]) -> None:
        await self.conn.execute(
            "DELETE FROM document_machine_models WHERE document_id = $1", document_id)
        if model_ids:
            await self.conn.executemany(
                """
                INSERT INTO document_machine_models (document_id, machine_model_id)
                VALUES ($1, $2) ON CONFLICT DO NOTHING
                """,
                [(document_id, m) for m in model_ids],
            )

    async def sync_document_tags(self, document_id: UUID, tag_ids: list[UUID]) -> None:
        await self.conn.execute(
            "DELETE FROM document_tags WHERE document_id = $1", document_id)
        if tag_ids:
            await self.conn.executemany(
                """
                INSERT INTO document_tags (document_id, tag_id)
                VALUES ($1, $2) ON CONFLICT DO NOTHING
                """,
                [(document_id, t) for t in tag_ids],
            )


async def _upsert_named(conn: asyncpg.Connection, table: str, model: type, name: str) -> Any:
    # The no-op UPDATE makes RETURNING yield the existing row on conflict.
    row = await conn.fetchrow(
        f"""
        INSERT INTO {table} (id, name) VALUES ($1, $2)
        ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
        RETURNING id, name
        """,
        model(name=name).id, name,
    )
    return model(**dict(row))


# ── Taxonomy Repository ──────────────────────────────────────────────────────

class AsyncPGTaxonomyRepository(TaxonomyRepository):
    """Production repository implementing the TaxonomyRepository interface."""

    def __init__(self, db: DatabasePool):
        self.db = db

    @classmethod
    async def connect(cls, settings: Settings) -> "AsyncPGTaxonomyRepository":
        db = DatabasePool(settings.asyncpg_dsn, settings.db_pool_min, settings.db_pool_max)
        await db.initialize()
        repo = cls(db)
        await repo.initialize_schema()
        return repo

    async def initialize_schema(self) -> None:
        async with self.db.acquire() as conn:
            await conn.execute(SCHEMA_DDL)

    async def close(self) -> None:
        await self.db.close()

    # ── Taxonomy ─────────────────────────────────────────────────────────

    async def upsert_department(self, name: str) -> Department:
        async with self.db.acquire() as conn:
            return await _upsert_named(conn, "departments", Department, name)

    async def upsert_category(self, name: str) -> Category:
        async with self.db.acquire() as conn:
            return await _upsert_named(conn, "categories", Category, name)

    async def upsert_brand(self, name: str) -> Brand:
        async with self.db.acquire() as conn:
            return await _upsert_named(conn, "brands", Brand, name)

    async def get_brand(self, brand_id: UUID) -> Optional[Brand]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow("SELECT id, name FROM brands WHERE id = $1", brand_id)
            return Brand(**dict(row)) if row else None

    async def get_topic(self, category_id: UUID, slug: str) -> Optional[Topic]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM topics WHERE category_id = $1 AND slug = $2",
                category_id, slug,
            )
            return Topic(**dict(row)) if row else None

    async def create_topic(self, topic: Topic) -> Topic:
        async with self.db.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO topics (id, name, slug, category_id)
                    VALUES ($1, $2, $3, $4) RETURNING *
                    """,
                    topic.id, topic.name, topic.slug, topic.category_id,
                )
            except asyncpg.UniqueViolationError as e:
                raise UniqueViolation("Topic", f"{topic.category_id}/{topic.slug}") from e
            return Topic(**dict(row))

    async def get_machine_model(self, name: str) -> Optional[MachineModel]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM machine_models WHERE name = $1", name)
            return MachineModel(**dict(row)) if row else None

    async def create_machine_model(self, model: MachineModel) -> MachineModel:
        async with self.db.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    """
                    INSERT INTO machine_models (id, name, brand_id)
                    VALUES ($1, $2, $3) RETURNING *
                    """,
                    model.id, model.name, model.brand_id,
                )
            except asyncpg.UniqueViolationError as e:
                raise UniqueViolation("MachineModel", model.name) from e
            return MachineModel(**dict(row))

    async def set_machine_model_brand(self, model_id: UUID, brand_id: UUID) -> MachineModel:
        async with self.db.acquire() as conn:
            # Only fills a missing brand; a concurrent writer's brand is kept.
            row = await conn.fetchrow(
                """
                UPDATE machine_models SET brand_id = COALESCE(brand_id, $2)
                WHERE id = $1 RETURNING *
                """,
                model_id, brand_id,
            )
            if row is None:
                raise KeyError(f"MachineModel {model_id} not found")
            return MachineModel(**dict(row))

    # ── Documents ────────────────────────────────────────────────────────

    async def get_file_asset_by_hash(self, file_hash: str) -> Optional[FileAsset]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM file_assets WHERE hash = $1", file_hash)
            return FileAsset(**dict(row)) if row else None

    async def find_document(self, title: str, topic_id: UUID) -> Optional[Document]:
        async with self.db.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM documents WHERE title = $1 AND topic_id = $2 LIMIT 1",
                title, topic_id,
            )
            return Document(**dict(row)) if row else None

    async def run_transaction(
        self,
        work: Callable[[WriteScope], Awaitable[T]],
        *,
        max_wait: float = 5.0,
        timeout: float = 30.0,
    ) -> T:
        try:
            async with self.db.transaction(timeout=max_wait) as conn:
                return await asyncio.wait_for(work(PgWriteScope(conn)), timeout)
        except asyncio.TimeoutError as e:
            raise TransactionFailure(
                f"Transaction timed out (max_wait={max_wait}s, timeout={timeout}s)") from e
        except Exception as e:
            raise TransactionFailure(f"Transaction failed: {e}") from e

    # ── Maintenance ──────────────────────────────────────────────────────

    async def clean(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        async with self.db.transaction() as conn:
            for table in CLEAN_ORDER:
                counts[table] = row_count(await conn.execute(f"DELETE FROM {table}"))
        logger.info("Cleaned tables: %s", counts)
        return counts

    # ── Health Check ─────────────────────────────────────────────────────

    async def health_check(self) -> dict:
        try:
            async with self.db.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
                pool = self.db.pool
                return {
                    "status": "healthy",
                    "postgres_version": version,
                    "pool_size": pool.get_size(),
                    "pool_free": pool.get_idle_size(),
                }
        except Exception as e:
            return {"status": "unhealthy", "error": str(e)}
