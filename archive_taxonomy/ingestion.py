"""
Archive Taxonomy — Import Orchestrator

Walks a department folder depth-first and, per file:
  bytes → SHA-256 → classification → duplicate check → parse → upload → one transaction

Files are processed strictly one at a time. A failed file is reported in the
run summary and never aborts the walk.
"""
from __future__ import annotations
import asyncio
import hashlib
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from archive_taxonomy.ai_classifier import AIClassifier
from archive_taxonomy.asyncpg_repository import AsyncPGTaxonomyRepository
from archive_taxonomy.classification import ClassificationOrchestrator
from archive_taxonomy.config import Settings, get_settings
from archive_taxonomy.errors import InvalidPathStructure, TransactionFailure
from archive_taxonomy.models import (
    ClassificationResult, ClassificationSource, Document, FileAsset,
    ImportMode, ImportResult, ImportStatus, ParsedContent, TechnicalMetadata,
)
from archive_taxonomy.parsers import (
    DOCX_MIME, PDF_MIME, XLSX_MIME, ParserRegistry, default_registry,
)
from archive_taxonomy.repository import InMemoryRepository, TaxonomyRepository, WriteScope
from archive_taxonomy.storage import BlobStorage, LocalBlobStorage
from archive_taxonomy.vietnamese import slugify

logger = logging.getLogger(__name__)

# ============================================================
# File Helpers
# ============================================================

MIME_BY_EXTENSION = {
    '.docx': DOCX_MIME,
    '.xlsx': XLSX_MIME,
    '.pdf': PDF_MIME,
}
DEFAULT_MIME = 'application/octet-stream'

_LEADING_ORDINAL = re.compile(r'^\d+\.\s*')


def guess_mime(file_name: str) -> str:
    return MIME_BY_EXTENSION.get(Path(file_name).suffix.lower(), DEFAULT_MIME)


def clean_title(file_name: str) -> str:
    """'01. Service Manual MPC 3003.pdf' -> 'Service Manual MPC 3003'"""
    stem = Path(file_name).stem
    return _LEADING_ORDINAL.sub('', stem).strip()


def storage_key(file_name: str, now_ms: Optional[int] = None) -> str:
    """import/<epoch-ms>-<slug><ext>"""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    path = Path(file_name)
    slug = slugify(path.stem) or 'file'
    return f'import/{now_ms}-{slug}{path.suffix.lower()}'


def should_skip_file(name: str) -> bool:
    return name.startswith('.') or name.startswith('~') or name == 'Thumbs.db'


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()

# ============================================================
# Run Summary
# ============================================================

@dataclass
class RunStats:
    """Aggregated outcome of one import run."""
    processed: int = 0
    success: int = 0
    skipped: int = 0
    errors: int = 0
    ai_classified: int = 0
    hybrid_classified: int = 0
    regex_classified: int = 0
    heuristic_classified: int = 0
    duration_seconds: float = 0.0
    error_messages: list[str] = field(default_factory=list)
    _started: float = field(default_factory=time.monotonic, repr=False)

    def record(self, result: ImportResult) -> None:
        self.processed += 1
        if result.status == ImportStatus.SUCCESS:
            self.success += 1
            source = result.classification.source if result.classification else None
            if source == ClassificationSource.AI:
                self.ai_classified += 1
            elif source == ClassificationSource.HYBRID:
                self.hybrid_classified += 1
            elif source == ClassificationSource.REGEX:
                self.regex_classified += 1
            else:
                self.heuristic_classified += 1
        elif result.status == ImportStatus.SKIPPED:
            self.skipped += 1
        else:
            self.errors += 1
            self.error_messages.append(f"{result.file_path}: {result.message}")

    def finish(self) -> None:
        self.duration_seconds = time.monotonic() - self._started

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop('_started', None)
        return data

    def report(self) -> str:
        ai_share = self.ai_classified / (self.success or 1) * 100
        return "\n".join([
            "IMPORT PERFORMANCE REPORT",
            f"  Duration:       {self.duration_seconds:.2f}s",
            f"  Total files:    {self.processed}",
            f"  Success:        {self.success}",
            f"  Skipped:        {self.skipped}",
            f"  Failed:         {self.errors}",
            "CLASSIFICATION SOURCES",
            f"  AI:             {self.ai_classified} ({ai_share:.1f}%)",
            f"  Hybrid:         {self.hybrid_classified}",
            f"  Regex only:     {self.regex_classified}",
            f"  Folder only:    {self.heuristic_classified}",
        ])

# ============================================================
# Main Import Orchestrator
# ============================================================

class ImportOrchestrator:
    """
    Drives the per-file pipeline:
      hash → classify → dedup → parse → upload → transactional write
    """

    def __init__(
        self,
        repo: TaxonomyRepository,
        classifier: ClassificationOrchestrator,
        storage: BlobStorage,
        parsers: Optional[ParserRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.repo = repo
        self.classifier = classifier
        self.storage = storage
        self.parsers = parsers or default_registry()
        self.settings = settings or get_settings()

    async def close(self) -> None:
        if self.classifier.ai_classifier is not None:
            await self.classifier.ai_classifier.close()
        await self.repo.close()

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    async def process_file(
        self,
        file_path: str | Path,
        path_stack: list[str],
        data: Optional[bytes] = None,
        mode: ImportMode = ImportMode.FULL,
    ) -> ImportResult:
        """
        Import one file. Never raises for per-file problems: classification
        and transaction failures come back as an 'error' ImportResult.
        """
        file_path = Path(file_path)
        file_name = file_path.name
        if data is None:
            data = await asyncio.to_thread(file_path.read_bytes)

        # --- Step 1: Content hash ---
        file_hash = sha256_hex(data)
        existing_asset = await self.repo.get_file_asset_by_hash(file_hash)

        # --- Step 2: Classification ---
        try:
            classification = await self.classifier.classify(
                path_stack, file_name, use_ai=mode == ImportMode.FULL)
        except InvalidPathStructure as e:
            return ImportResult(status=ImportStatus.ERROR, file_path=str(file_path),
                                message=f"Classification failed: {e.message}")

        # --- Step 3: Duplicate check (hash AND title+topic) ---
        title = clean_title(file_name)
        existing_doc = await self.repo.find_document(title, classification.topic.id)
        if existing_doc and existing_asset:
            return ImportResult(status=ImportStatus.SKIPPED, file_path=str(file_path),
                                document_id=existing_doc.id,
                                message="Exact duplicate found (File + Metadata)",
                                classification=classification)

        # --- Step 4: Parse ---
        mime = guess_mime(file_name)
        parsed = await self._parse(data, file_name, mime)

        # --- Step 5: Upload new assets ---
        if existing_asset:
            storage_path, bucket = existing_asset.storage_path, existing_asset.bucket
        else:
            stored = await self.storage.upload_file(storage_key(file_name), data, mime)
            storage_path, bucket = stored.key, stored.bucket

        asset = FileAsset(
            hash=file_hash,
            original_name=file_name,
            storage_path=storage_path,
            bucket=bucket,
            mime=mime,
            size=len(data),
        )

        # --- Step 6: Transactional save ---
        async def write(scope: WriteScope) -> Document:
            return await self._save(scope, asset, title, parsed, file_path,
                                    classification, existing_doc)

        try:
            doc = await self.repo.run_transaction(
                write,
                max_wait=self.settings.tx_max_wait_seconds,
                timeout=self.settings.tx_timeout_seconds,
            )
        except TransactionFailure as e:
            return ImportResult(status=ImportStatus.ERROR, file_path=str(file_path),
                                message=f"DB Transaction failed: {e.message}",
                                classification=classification)

        return ImportResult(status=ImportStatus.SUCCESS, file_path=str(file_path),
                            document_id=doc.id, classification=classification)

    async def import_directory(
        self, root: str | Path, mode: ImportMode = ImportMode.FAST
    ) -> RunStats:
        """
        Import every file under root. The root folder's name is the
        Department; nested folder names follow in the path stack.
        """
        root = Path(str(root).strip().strip('"'))
        if not root.is_dir():
            raise FileNotFoundError(f"Path not found: {root}")

        stats = RunStats()
        department = root.name
        logger.info(f"Importing from {root} [mode={mode.value}], department scope: {department}")

        await self._walk(root, [department], mode, stats)

        stats.finish()
        logger.info(stats.report())
        return stats

    # ----------------------------------------------------------
    # Internal Pipeline
    # ----------------------------------------------------------

    async def _walk(
        self, folder: Path, path_stack: list[str], mode: ImportMode, stats: RunStats
    ) -> None:
        for entry in sorted(folder.iterdir(), key=lambda p: p.name):
            if entry.is_dir():
                await self._walk(entry, [*path_stack, entry.name.strip()], mode, stats)
                continue
            if not entry.is_file() or should_skip_file(entry.name):
                continue

            logger.info(f"Processing: {entry.name}")
            try:
                result = await self.process_file(entry, path_stack, mode=mode)
            except Exception as e:
                logger.exception(f"Failed to import {entry}")
                result = ImportResult(status=ImportStatus.ERROR, file_path=str(entry),
                                      message=str(e))
            stats.record(result)

            if result.status == ImportStatus.SUCCESS:
                logger.info(f"  Imported: [ID: {result.document_id}]")
            elif result.status == ImportStatus.SKIPPED:
                logger.info(f"  Skipped: {result.message}")
            else:
                logger.error(f"  Error: {result.message}")

    async def _parse(self, data: bytes, file_name: str, mime: str) -> ParsedContent:
        fallback = ParsedContent(content=f"File: {file_name}")
        parser = self.parsers.get_parser(mime)
        if parser is None:
            return fallback
        try:
            return await parser.parse(data, file_name, mime)
        except Exception as e:
            logger.warning(f"Parser failed for {file_name}, falling back to default: {e}")
            return fallback

    async def _save(
        self,
        scope: WriteScope,
        asset: FileAsset,
        title: str,
        parsed: ParsedContent,
        file_path: Path,
        classification: ClassificationResult,
        existing_doc: Optional[Document],
    ) -> Document:
        asset = await scope.upsert_file_asset(asset)

        tag_ids = []
        for name in classification.tags:
            tag_ids.append((await scope.upsert_tag(name)).id)
        model_ids = [m.id for m in classification.models]

        doc = Document(
            title=title,
            content=parsed.content or '',
            original_file_path=str(file_path),
            department_id=classification.department.id,
            category_id=classification.category.id,
            topic_id=classification.topic.id,
            file_asset_id=asset.id,
        )
        if existing_doc:
            doc = doc.model_copy(update={
                'id': existing_doc.id,
                'created_at': existing_doc.created_at,
                'updated_at': datetime.now(timezone.utc),
            })
        doc = await scope.save_document(doc)

        await scope.upsert_technical_metadata(TechnicalMetadata(
            document_id=doc.id,
            category_id=classification.category.id,
            topic_id=classification.topic.id,
            brand_id=classification.brand.id if classification.brand else None,
            machine_model_ids=model_ids,
            tag_ids=tag_ids,
            source=classification.source,
        ))
        # Full resync: join rows always mirror the fresh classification.
        await scope.sync_document_models(doc.id, model_ids)
        await scope.sync_document_tags(doc.id, tag_ids)
        return doc

# ============================================================
# Wiring
# ============================================================

async def open_repository(settings: Settings) -> TaxonomyRepository:
    if settings.repository_backend == 'memory':
        return InMemoryRepository()
    return await AsyncPGTaxonomyRepository.connect(settings)


async def build_import_orchestrator(
    repo: TaxonomyRepository, settings: Optional[Settings] = None
) -> ImportOrchestrator:
    """Assemble the orchestrator from settings; probes storage once."""
    settings = settings or get_settings()
    ai = AIClassifier.from_settings(settings) if settings.ai_enabled else None
    classifier = ClassificationOrchestrator(repo, ai_classifier=ai, settings=settings)
    storage = LocalBlobStorage.from_settings(settings)
    await storage.ensure_available()
    return ImportOrchestrator(repo, classifier, storage, settings=settings)
