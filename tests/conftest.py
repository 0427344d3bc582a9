import pytest

from archive_taxonomy.classification import ClassificationOrchestrator
from archive_taxonomy.config import Settings
from archive_taxonomy.ingestion import ImportOrchestrator
from archive_taxonomy.models import ClassificationHint, ParsedContent
from archive_taxonomy.parsers import PDF_MIME, Parser, ParserRegistry
from archive_taxonomy.repository import InMemoryRepository
from archive_taxonomy.storage import LocalBlobStorage


class FakeAI:
    """Stands in for AIClassifier; returns a canned hint and records calls."""

    def __init__(self, hint=None):
        self.hint = hint
        self.calls = []

    async def analyze(self, file_name, path_segments):
        self.calls.append((file_name, list(path_segments)))
        return self.hint

    async def close(self):
        pass


class EchoPdfParser(Parser):
    supported_mime_types = (PDF_MIME,)

    async def parse(self, data, name, mime):
        return ParsedContent(content=data.decode("utf-8", errors="replace"),
                             metadata={"parser": "echo"})


class BrokenPdfParser(Parser):
    supported_mime_types = (PDF_MIME,)

    async def parse(self, data, name, mime):
        raise ValueError("corrupt PDF")


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        repository_backend="memory",
        gemini_api_key=None,
        storage_dir=str(tmp_path / "assets"),
    )


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def classifier(repo, settings):
    return ClassificationOrchestrator(repo, settings=settings)


@pytest.fixture
def storage(settings):
    return LocalBlobStorage.from_settings(settings)


@pytest.fixture
def importer(repo, classifier, storage, settings):
    return ImportOrchestrator(
        repo, classifier, storage,
        parsers=ParserRegistry([EchoPdfParser()]),
        settings=settings,
    )


@pytest.fixture
def ricoh_hint():
    return ClassificationHint(brand="Ricoh", models=["MPC 3054"], tags=["Service"])


@pytest.fixture
def archive_tree(tmp_path):
    """
    IT/
      Tài liệu/Hướng dẫn sử dụng/Ricoh/01. Service Manual MPC 3003-3503-4503.pdf
      Tài liệu/Hướng dẫn sử dụng/Ricoh/.DS_Store
      Tài liệu/Hướng dẫn sử dụng/Ricoh/~$lock.docx
      Tài liệu/Hướng dẫn sử dụng/Thumbs.db
      Tài liệu/Driver/Canon iR 2520-2525 driver.zip
      stray.pdf
    """
    root = tmp_path / "IT"
    ricoh = root / "Tài liệu" / "Hướng dẫn sử dụng" / "Ricoh"
    ricoh.mkdir(parents=True)
    (ricoh / "01. Service Manual MPC 3003-3503-4503.pdf").write_bytes(b"ricoh service manual")
    (ricoh / ".DS_Store").write_bytes(b"junk")
    (ricoh / "~$lock.docx").write_bytes(b"junk")
    (root / "Tài liệu" / "Hướng dẫn sử dụng" / "Thumbs.db").write_bytes(b"junk")
    driver = root / "Tài liệu" / "Driver"
    driver.mkdir(parents=True)
    (driver / "Canon iR 2520-2525 driver.zip").write_bytes(b"canon driver")
    (root / "stray.pdf").write_bytes(b"no category")
    return root
