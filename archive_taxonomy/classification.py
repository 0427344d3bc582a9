"""
Archive Taxonomy — Classification Orchestrator

Maps (path segments, filename) onto the taxonomy:
  Department / Category / Topic / [Brand] / [Model hint] / extra tags...

Later steps only fill gaps left by earlier ones. The deterministic series
scan always runs on the filename, AI or not.
"""
from __future__ import annotations
import logging
from typing import Optional

from archive_taxonomy.ai_classifier import AIClassifier
from archive_taxonomy.config import Settings, get_settings
from archive_taxonomy.errors import InvalidPathStructure, NameConflict, UniqueViolation
from archive_taxonomy.extraction import (
    KNOWN_SERIES, expand_model_names, extract_brand, extract_series_and_models,
)
from archive_taxonomy.models import (
    Brand, Category, ClassificationHint, ClassificationResult,
    ClassificationSource, MachineModel, Topic,
)
from archive_taxonomy.repository import TaxonomyRepository
from archive_taxonomy.vietnamese import slugify

logger = logging.getLogger(__name__)

_SERIES_UPPER = {s.upper() for s in KNOWN_SERIES}


def topic_slug(category: str, topic: str) -> str:
    """Slug is unique per category, so the category name is folded in."""
    return slugify(f'{category}-{topic}')


def filter_tags(candidates: list[str]) -> list[str]:
    """Drop blanks and exact (case-insensitive) series labels, dedup in order."""
    kept = []
    for tag in candidates:
        tag = (tag or '').strip()
        if not tag or tag.upper() in _SERIES_UPPER:
            continue
        kept.append(tag)
    return list(dict.fromkeys(kept))


class ClassificationOrchestrator:
    """
    Resolves taxonomy entities for one file, creating them lazily.

    Uniqueness races are handled by attempt-create then re-fetch, never by
    checking existence first and trusting it.
    """

    def __init__(
        self,
        repo: TaxonomyRepository,
        ai_classifier: Optional[AIClassifier] = None,
        settings: Optional[Settings] = None,
    ):
        self.repo = repo
        self.ai_classifier = ai_classifier
        self.settings = settings or get_settings()
        if ai_classifier is None:
            logger.warning("AI classification disabled: no GEMINI_API_KEY configured")

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    async def classify(
        self,
        path_segments: list[str],
        file_name: str,
        use_ai: bool = False,
    ) -> ClassificationResult:
        """
        Classify one file from its folder path and name.

        Raises:
            InvalidPathStructure: fewer than three path segments, or a blank
                Department/Category/Topic that no AI hint could fill.
        """
        if len(path_segments) < 3:
            raise InvalidPathStructure(path_segments)

        dept_name, cat_name, topic_name = (s.strip() for s in path_segments[:3])
        brand_hint = path_segments[3] if len(path_segments) > 3 else None
        model_hint = path_segments[4] if len(path_segments) > 4 else None
        tag_candidates = list(path_segments[5:])

        source = ClassificationSource.HEURISTIC
        brand_name: Optional[str] = None
        specific_models: list[str] = []

        # --- Step 1: AI hint ---
        hint: Optional[ClassificationHint] = None
        if use_ai and self.ai_classifier is not None:
            hint = await self.ai_classifier.analyze(file_name, path_segments)
        if hint is not None:
            source = ClassificationSource.AI
            brand_name = hint.brand
            specific_models.extend(hint.models)
            tag_candidates.extend(hint.tags)
            if not cat_name and hint.category:
                cat_name = hint.category
            if not topic_name and hint.topic:
                topic_name = hint.topic

        if not dept_name or not cat_name or not topic_name:
            raise InvalidPathStructure(
                path_segments,
                "Department, Category and Topic must be non-empty, got: "
                f"{'/'.join(path_segments)!r}",
            )

        # --- Step 2: brand fallback chain ---
        scan = extract_series_and_models(file_name)
        if not brand_name and brand_hint:
            brand_name = extract_brand(brand_hint)
        if not brand_name:
            brand_name = scan.brand

        # --- Step 3: deterministic series scan ---
        if scan.series_list:
            if source == ClassificationSource.HEURISTIC:
                source = ClassificationSource.REGEX
            elif source == ClassificationSource.AI:
                source = ClassificationSource.HYBRID

        # --- Step 4: specific models are tags ---
        specific_models.extend(scan.models)
        if model_hint:
            specific_models.extend(expand_model_names(model_hint))
        tag_candidates.extend(specific_models)

        # --- Steps 5-6: Department / Category / Topic ---
        department = await self.repo.upsert_department(dept_name)
        category = await self.repo.upsert_category(cat_name)
        topic = await self._resolve_topic(category, topic_name)

        # --- Steps 7-8: Brand and series ---
        brand: Optional[Brand] = None
        models: list[MachineModel] = []
        conflicts: list[str] = []
        if brand_name:
            brand_name = extract_brand(brand_name) or brand_name
            brand = await self.repo.upsert_brand(brand_name)
            for series in scan.series_list:
                try:
                    models.append(await self._resolve_series(series, brand))
                except NameConflict as e:
                    logger.warning("Series conflict: %s", e.message)
                    conflicts.append(series)
                    if self.settings.link_conflicting_series:
                        existing = await self.repo.get_machine_model(series)
                        if existing:
                            models.append(existing)

        # --- Step 9: tags ---
        tags = filter_tags(tag_candidates)

        logger.debug(
            "Classified %r: %s/%s/%s brand=%s series=%s tags=%s source=%s",
            file_name, department.name, category.name, topic.name,
            brand.name if brand else None, [m.name for m in models], tags, source.value,
        )
        return ClassificationResult(
            department=department,
            category=category,
            topic=topic,
            brand=brand,
            models=models,
            tags=tags,
            source=source,
            conflicts=conflicts,
        )

    # ----------------------------------------------------------
    # Entity resolution
    # ----------------------------------------------------------

    async def _resolve_topic(self, category: Category, name: str) -> Topic:
        slug = topic_slug(category.name, name)
        topic = await self.repo.get_topic(category.id, slug)
        if topic:
            return topic
        try:
            return await self.repo.create_topic(
                Topic(name=name, slug=slug, category_id=category.id))
        except UniqueViolation:
            # Another import created it between the lookup and the insert.
            topic = await self.repo.get_topic(category.id, slug)
            if topic is None:
                raise
            return topic

    async def _resolve_series(self, series: str, brand: Brand) -> MachineModel:
        """
        Find or create the MachineModel for a series under brand.

        Raises:
            NameConflict: the series name already belongs to another brand.
        """
        model = await self.repo.get_machine_model(series)
        if model is None:
            try:
                return await self.repo.create_machine_model(
                    MachineModel(name=series, brand_id=brand.id))
            except UniqueViolation:
                model = await self.repo.get_machine_model(series)
                if model is None:
                    raise

        if model.brand_id is None:
            return await self.repo.set_machine_model_brand(model.id, brand.id)
        if model.brand_id != brand.id:
            owner = await self.repo.get_brand(model.brand_id)
            raise NameConflict(series, brand.name, owner.name if owner else model.brand_id)
        return model
