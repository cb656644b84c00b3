"""
Pytest configuration and fixtures for ContentBridge tests.
"""

import sys
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from contentbridge.core.config import ContentBridgeConfig  # noqa: E402
from contentbridge.core.models import ContentRecord, RecordPage  # noqa: E402
from contentbridge.core.state import MemoryWatermarkStore  # noqa: E402
from contentbridge.destination.memory import InMemoryDestination  # noqa: E402
from contentbridge.export.service import ExportService  # noqa: E402
from contentbridge.export.source import InMemorySource  # noqa: E402

BASE_DATE = datetime(2024, 1, 1, 9, 0, 0)


def build_record_dict(record_id: int, **overrides: Any) -> dict[str, Any]:
    """Wire-format record with unique slug and timestamp per id."""
    date = BASE_DATE + timedelta(hours=record_id)
    data: dict[str, Any] = {
        "ID": record_id,
        "post_type": "post",
        "post_title": f"Post {record_id}",
        "post_name": f"post-{record_id}",
        "post_content": f"<p>Body {record_id}</p>",
        "post_excerpt": "",
        "post_status": "publish",
        "post_date": date.strftime("%Y-%m-%d %H:%M:%S"),
        "post_date_gmt": date.strftime("%Y-%m-%d %H:%M:%S"),
        "post_author": 1,
        "menu_order": 0,
        "comment_status": "open",
        "ping_status": "closed",
        "meta": {},
        "taxonomies": {},
        "acf": [],
        "featured_image": None,
        "author": None,
    }
    data.update(overrides)
    return data


class RecordingFetcher:
    """Page fetcher over an export service that records every request."""

    def __init__(self, service: ExportService, fail_after: int | None = None) -> None:
        self.service = service
        self.calls: list[tuple[int, int]] = []
        self.fail_after = fail_after

    def fetch_page(self, post_type: str, status: str, cursor: int, limit: int) -> RecordPage:
        from contentbridge.sync.client import ExportTransportError

        if self.fail_after is not None and len(self.calls) >= self.fail_after:
            raise ExportTransportError("Remote request timed out after 30s")
        self.calls.append((cursor, limit))
        return self.service.fetch_page(post_type, status, cursor, limit)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_config(temp_dir: Path) -> ContentBridgeConfig:
    """Configuration with every path inside the temp directory."""
    config = ContentBridgeConfig(
        state_file=temp_dir / "watermarks.json",
        session_directory=temp_dir / "sessions",
    )
    config.logging.log_directory = temp_dir / "logs"
    config.logging.file_enabled = False
    config.logging.console_enabled = False
    config.destination.store_file = temp_dir / "destination.json"
    config.destination.media_directory = temp_dir / "media"
    config.ensure_directories()
    return config


@pytest.fixture
def make_record() -> Callable[..., ContentRecord]:
    def factory(record_id: int, **overrides: Any) -> ContentRecord:
        return ContentRecord.from_dict(build_record_dict(record_id, **overrides))

    return factory


@pytest.fixture
def destination(temp_dir: Path) -> InMemoryDestination:
    return InMemoryDestination(media_directory=temp_dir / "media")


@pytest.fixture
def watermarks() -> MemoryWatermarkStore:
    return MemoryWatermarkStore()


@pytest.fixture
def source(make_record: Callable[..., ContentRecord]) -> InMemorySource:
    """Twelve published posts with ids 1..12."""
    return InMemorySource(records=[make_record(i) for i in range(1, 13)])


@pytest.fixture
def export_service(source: InMemorySource) -> ExportService:
    return ExportService(source, token="secret-token")


@pytest.fixture
def fetcher(export_service: ExportService) -> RecordingFetcher:
    return RecordingFetcher(export_service)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")
