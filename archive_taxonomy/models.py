"""
Archive Taxonomy — Core Pydantic Models
"""
from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_validator

from archive_taxonomy.extraction import extract_brand


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================
# Enums
# ============================================================

class ClassificationSource(str, Enum):
    AI = "AI"
    REGEX = "Regex"
    HYBRID = "Hybrid"
    HEURISTIC = "Heuristic"

class ImportMode(str, Enum):
    FAST = "fast"
    FULL = "full"

class ImportStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    ERROR = "error"

# ============================================================
# Taxonomy Entities
# ============================================================

class Department(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str

class Category(BaseModel):
    """Phân mục: second path level."""
    id: UUID = Field(default_factory=uuid4)
    name: str

class Topic(BaseModel):
    """Loại: unique per (category_id, slug)."""
    id: UUID = Field(default_factory=uuid4)
    name: str
    slug: str
    category_id: UUID

class Brand(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str

class MachineModel(BaseModel):
    """A product series (e.g. "MPC"), never a specific unit."""
    id: UUID = Field(default_factory=uuid4)
    name: str
    brand_id: Optional[UUID] = None

class Tag(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    name: str

# ============================================================
# Document Models
# ============================================================

class FileAsset(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    hash: str
    original_name: str
    storage_path: str
    bucket: str
    mime: str
    size: int
    created_at: datetime = Field(default_factory=_utcnow)

class Document(BaseModel):
    id: UUID = Field(default_factory=uuid4)
    title: str
    content: str = ""
    original_file_path: Optional[str] = None
    department_id: Optional[UUID] = None
    category_id: UUID
    topic_id: UUID
    file_asset_id: Optional[UUID] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

class TechnicalMetadata(BaseModel):
    """1:1 extension of Document holding the taxonomy links."""
    id: UUID = Field(default_factory=uuid4)
    document_id: UUID
    category_id: UUID
    topic_id: UUID
    brand_id: Optional[UUID] = None
    machine_model_ids: list[UUID] = Field(default_factory=list)
    tag_ids: list[UUID] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    source: ClassificationSource = ClassificationSource.HEURISTIC

# ============================================================
# Classification Models
# ============================================================

class ClassificationHint(BaseModel):
    """
    Untrusted payload returned by the external model.

    Every field is validated on the way in; anything with the wrong shape is
    nulled out (or emptied) instead of rejecting the whole hint.
    """
    brand: Optional[str] = None
    models: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    topic: Optional[str] = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("brand", mode="before")
    @classmethod
    def _whitelisted_brand(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str):
            return None
        return extract_brand(v)

    @field_validator("category", "topic", mode="before")
    @classmethod
    def _optional_label(cls, v: Any) -> Optional[str]:
        if not isinstance(v, str) or not v.strip():
            return None
        return v.strip()

    @field_validator("models", "tags", mode="before")
    @classmethod
    def _string_list(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [s.strip() for s in v if isinstance(s, str) and s.strip()]

class ClassificationResult(BaseModel):
    department: Department
    category: Category
    topic: Topic
    brand: Optional[Brand] = None
    models: list[MachineModel] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    source: ClassificationSource = ClassificationSource.HEURISTIC
    # Series left unlinked because another brand owns the name.
    conflicts: list[str] = Field(default_factory=list)

# ============================================================
# Import Models
# ============================================================

class ImportResult(BaseModel):
    status: ImportStatus
    file_path: Optional[str] = None
    document_id: Optional[UUID] = None
    message: Optional[str] = None
    classification: Optional[ClassificationResult] = None

class ParsedContent(BaseModel):
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

class StoredObject(BaseModel):
    key: str
    bucket: str
    url: str
