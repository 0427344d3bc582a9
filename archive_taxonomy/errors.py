"""
errors.py — Exception hierarchy for classification and ingestion.

Only InvalidPathStructure and TransactionFailure are expected to cross the
import boundary; everything else is recovered where it is raised.
"""

from __future__ import annotations

from typing import Any, Optional


class ArchiveTaxonomyError(Exception):
    """Base exception for the archive taxonomy pipeline."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class InvalidPathStructure(ArchiveTaxonomyError):
    """Path is too shallow to yield Department / Category / Topic."""

    def __init__(self, path_segments: list[str], reason: Optional[str] = None):
        joined = "/".join(path_segments)
        message = reason or (
            "Invalid path structure. Expected at least Dept/Category/Topic, "
            f"got: {joined!r}"
        )
        super().__init__(message, {"path_segments": list(path_segments)})
        self.path_segments = list(path_segments)


class ClassificationUpstreamFailure(ArchiveTaxonomyError):
    """The external model failed in a way that is not worth retrying."""

    pass


class RateLimited(ArchiveTaxonomyError):
    """The external model answered with HTTP 429 (or said so in its message)."""

    pass


class UniqueViolation(ArchiveTaxonomyError):
    """A create collided with an existing natural key."""

    def __init__(self, entity: str, key: str):
        super().__init__(f"{entity} with key {key!r} already exists",
                         {"entity": entity, "key": key})
        self.entity = entity
        self.key = key


class NameConflict(ArchiveTaxonomyError):
    """A globally unique series name is already owned by another brand."""

    def __init__(self, series: str, requested_brand: str, owner_brand: Any):
        super().__init__(
            f"Series {series!r} requested for brand {requested_brand!r} "
            f"already belongs to brand {owner_brand}",
            {"series": series, "requested_brand": requested_brand,
             "owner_brand": str(owner_brand)},
        )
        self.series = series
        self.requested_brand = requested_brand
        self.owner_brand = owner_brand


class TransactionFailure(ArchiveTaxonomyError):
    """The per-file write timed out or failed; the file is not retried."""

    pass
