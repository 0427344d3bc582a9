"""
Archive Taxonomy — Persistence Interface

Generic transactional entity store used by classification and ingestion.
Natural keys: Department/Category/Brand/MachineModel/Tag by name, Topic by
(category_id, slug), FileAsset by hash, TechnicalMetadata by document_id.
"""
from __future__ import annotations
import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import UUID

from archive_taxonomy.errors import TransactionFailure, UniqueViolation
from archive_taxonomy.models import (
    Brand, Category, Department, Document, FileAsset, MachineModel,
    Tag, TechnicalMetadata, Topic,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

# ============================================================
# Database Abstraction Layer (Repository Pattern)
# ============================================================

class WriteScope:
    """
    Writes that must land together for one imported file.
    Handed to the callable passed to TaxonomyRepository.run_transaction().
    """

    async def upsert_file_asset(self, asset: FileAsset) -> FileAsset:
        raise NotImplementedError

    async def upsert_tag(self, name: str) -> Tag:
        raise NotImplementedError

    async def save_document(self, doc: Document) -> Document:
        raise NotImplementedError

    async def upsert_technical_metadata(self, meta: TechnicalMetadata) -> TechnicalMetadata:
        raise NotImplementedError

    async def sync_document_models(self, document_id: UUID, model_ids: list[UUID]) -> None:
        """Delete every Document↔MachineModel row, then recreate model_ids."""
        raise NotImplementedError

    async def sync_document_tags(self, document_id: UUID, tag_ids: list[UUID]) -> None:
        """Delete every Document↔Tag row, then recreate tag_ids."""
        raise NotImplementedError


class TaxonomyRepository:
    """
    Abstract DB access. In production, backed by asyncpg.
    Here we define the interface; implementations are swappable.

    create_* methods raise UniqueViolation on a natural-key collision so the
    caller can re-fetch; upsert_* methods are insert-or-return-existing.
    """

    # --- Taxonomy ---

    async def upsert_department(self, name: str) -> Department:
        raise NotImplementedError

    async def upsert_category(self, name: str) -> Category:
        raise NotImplementedError

    async def upsert_brand(self, name: str) -> Brand:
        raise NotImplementedError

    async def get_brand(self, brand_id: UUID) -> Optional[Brand]:
        raise NotImplementedError

    async def get_topic(self, category_id: UUID, slug: str) -> Optional[Topic]:
        raise NotImplementedError

    async def create_topic(self, topic: Topic) -> Topic:
        raise NotImplementedError

    async def get_machine_model(self, name: str) -> Optional[MachineModel]:
        raise NotImplementedError

    async def create_machine_model(self, model: MachineModel) -> MachineModel:
        raise NotImplementedError

    async def set_machine_model_brand(self, model_id: UUID, brand_id: UUID) -> MachineModel:
        raise NotImplementedError

    # --- Documents ---

    async def get_file_asset_by_hash(self, file_hash: str) -> Optional[FileAsset]:
        raise NotImplementedError

    async def find_document(self, title: str, topic_id: UUID) -> Optional[Document]:
        raise NotImplementedError

    async def run_transaction(
        self,
        work: Callable[[WriteScope], Awaitable[T]],
        *,
        max_wait: float = 5.0,
        timeout: float = 30.0,
    ) -> T:
        """
        Run work inside one transaction.

        Raises:
            TransactionFailure: acquire exceeded max_wait, work exceeded
                timeout, or work raised. Nothing is committed.
        """
        raise NotImplementedError

    # --- Maintenance ---

    async def clean(self) -> dict[str, int]:
        """Wipe documents, metadata, join rows, topics and file assets."""
        raise NotImplementedError

    async def close(self) -> None:
        return None

    async def health_check(self) -> dict:
        return {"status": "healthy", "backend": type(self).__name__}


# ============================================================
# In-Memory Repository (for testing / local dev)
# ============================================================

class InMemoryRepository(TaxonomyRepository, WriteScope):
    """In-memory implementation for testing without a database."""

    def __init__(self):
        self.departments: dict[str, Department] = {}
        self.categories: dict[str, Category] = {}
        self.brands: dict[str, Brand] = {}
        self.topics: dict[tuple[UUID, str], Topic] = {}
        self.machine_models: dict[str, MachineModel] = {}
        self.tags: dict[str, Tag] = {}
        self.file_assets: dict[str, FileAsset] = {}
        self.documents: dict[UUID, Document] = {}
        self.technical_metadata: dict[UUID, TechnicalMetadata] = {}
        self.document_models: dict[UUID, list[UUID]] = {}
        self.document_tags: dict[UUID, list[UUID]] = {}
        self._tx_lock = asyncio.Lock()

    # --- Taxonomy ---

    async def upsert_department(self, name: str) -> Department:
        return self.departments.setdefault(name, Department(name=name))

    async def upsert_category(self, name: str) -> Category:
        return self.categories.setdefault(name, Category(name=name))

    async def upsert_brand(self, name: str) -> Brand:
        return self.brands.setdefault(name, Brand(name=name))

    async def get_brand(self, brand_id: UUID) -> Optional[Brand]:
        return next((b for b in self.brands.values() if b.id == brand_id), None)

    async def get_topic(self, category_id: UUID, slug: str) -> Optional[Topic]:
        return self.topics.get((category_id, slug))

    async def create_topic(self, topic: Topic) -> Topic:
        key = (topic.category_id, topic.slug)
        if key in self.topics:
            raise UniqueViolation('Topic', f'{topic.category_id}/{topic.slug}')
        self.topics[key] = topic
        return topic

    async def get_machine_model(self, name: str) -> Optional[MachineModel]:
        return self.machine_models.get(name)

    async def create_machine_model(self, model: MachineModel) -> MachineModel:
        if model.name in self.machine_models:
            raise UniqueViolation('MachineModel', model.name)
        self.machine_models[model.name] = model
        return model

    async def set_machine_model_brand(self, model_id: UUID, brand_id: UUID) -> MachineModel:
        for name, model in self.machine_models.items():
            if model.id == model_id:
                updated = model.model_copy(update={'brand_id': brand_id})
                self.machine_models[name] = updated
                return updated
        raise KeyError(f"MachineModel {model_id} not found")

    # --- Documents ---

    async def get_file_asset_by_hash(self, file_hash: str) -> Optional[FileAsset]:
        return self.file_assets.get(file_hash)

    async def find_document(self, title: str, topic_id: UUID) -> Optional[Document]:
        return next(
            (d for d in self.documents.values()
             if d.title == title and d.topic_id == topic_id),
            None,
        )

    async def run_transaction(
        self,
        work: Callable[[WriteScope], Awaitable[T]],
        *,
        max_wait: float = 5.0,
        timeout: float = 30.0,
    ) -> T:
        try:
            await asyncio.wait_for(self._tx_lock.acquire(), max_wait)
        except asyncio.TimeoutError as e:
            raise TransactionFailure(f"Could not start transaction within {max_wait}s") from e

        snapshot = self._snapshot()
        try:
            return await asyncio.wait_for(work(self), timeout)
        except asyncio.TimeoutError as e:
            self._restore(snapshot)
            raise TransactionFailure(f"Transaction exceeded {timeout}s") from e
        except Exception as e:
            self._restore(snapshot)
            raise TransactionFailure(f"Transaction failed: {e}") from e
        finally:
            self._tx_lock.release()

    # --- WriteScope ---

    async def upsert_file_asset(self, asset: FileAsset) -> FileAsset:
        return self.file_assets.setdefault(asset.hash, asset)

    async def upsert_tag(self, name: str) -> Tag:
        return self.tags.setdefault(name, Tag(name=name))

    async def save_document(self, doc: Document) -> Document:
        self.documents[doc.id] = doc
        return doc

    async def upsert_technical_metadata(self, meta: TechnicalMetadata) -> TechnicalMetadata:
        existing = self.technical_metadata.get(meta.document_id)
        if existing:
            meta = meta.model_copy(update={'id': existing.id})
        self.technical_metadata[meta.document_id] = meta
        return meta

    async def sync_document_models(self, document_id: UUID, model_ids: list[UUID]) -> None:
        self.document_models.pop(document_id, None)
        self.document_models[document_id] = list(dict.fromkeys(model_ids))

    async def sync_document_tags(self, document_id: UUID, tag_ids: list[UUID]) -> None:
        self.document_tags.pop(document_id, None)
        self.document_tags[document_id] = list(dict.fromkeys(tag_ids))

    # --- Maintenance ---

    async def clean(self) -> dict[str, int]:
        counts = {
            'document_models': sum(len(v) for v in self.document_models.values()),
            'document_tags': sum(len(v) for v in self.document_tags.values()),
            'technical_metadata': len(self.technical_metadata),
            'documents': len(self.documents),
            'topics': len(self.topics),
            'file_assets': len(self.file_assets),
        }
        self.document_models.clear()
        self.document_tags.clear()
        self.technical_metadata.clear()
        self.documents.clear()
        self.topics.clear()
        self.file_assets.clear()
        return counts

    # --- Helpers ---

    _STATE = (
        'departments', 'categories', 'brands', 'topics', 'machine_models',
        'tags', 'file_assets', 'documents', 'technical_metadata',
        'document_models', 'document_tags',
    )

    def _snapshot(self) -> dict[str, Any]:
        return {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}

    def _restore(self, snapshot: dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)
