"""
Shared Test Fixtures for the Tweet Curator Application

This module provides common fixtures used across all test modules.
Fixtures include mocks for database connections, logging, HTTP responses,
in-memory implementations of the store and service protocols, and data
factories for test objects.
"""

import pytest
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Iterable, Tuple, Sequence
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.app_config import AppConfig
from data.models import CandidatePost, ItemStatus, MediaItem, PublishResult, QueueItem, QuotedPost, ScrapedItem
from services.ai_service import ClassificationResult
from services.run_control import RunControl
from utils.exceptions import FetchError


NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def mock_db_connection():
    """
    Mock pyodbc database connection and cursor.

    This fixture provides a mock database connection that simulates
    pyodbc behavior without requiring an actual database connection.

    Usage:
        def test_database(mock_db_connection):
            conn, cursor = mock_db_connection
            cursor.fetchall.return_value = [('row1',), ('row2',)]
            # ... test code

    Returns:
        tuple: A tuple of (mock_connection, mock_cursor).
    """
    mock_cursor = MagicMock()
    mock_cursor.description = None
    mock_cursor.fetchall.return_value = []
    mock_cursor.fetchone.return_value = None
    mock_cursor.rowcount = 0

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_cursor
    mock_conn.commit.return_value = None
    mock_conn.rollback.return_value = None
    mock_conn.close.return_value = None

    with patch('pyodbc.connect', return_value=mock_conn):
        yield mock_conn, mock_cursor


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log messages for assertion in tests.

    Returns:
        list: A list that will contain captured log records.
    """
    import logging

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    app_logger = logging.getLogger("curator")
    original_level = app_logger.level
    app_logger.setLevel(logging.DEBUG)
    app_logger.addHandler(handler)

    yield handler.records

    app_logger.removeHandler(handler)
    app_logger.setLevel(original_level)


# =============================================================================
# HTTP Response Fixtures
# =============================================================================

@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(status_code=200, json_data={'key': 'value'})

    Returns:
        callable: Factory function to create mock responses.
    """
    def _create_response(status_code: int = 200, json_data: Optional[Any] = None,
                         content: bytes = b'', text: str = '',
                         headers: Optional[Dict[str, str]] = None) -> MagicMock:
        response = MagicMock()
        response.status_code = status_code
        response.content = content
        response.text = text
        response.headers = headers or {}
        if json_data is not None:
            response.json.return_value = json_data
        else:
            response.json.side_effect = ValueError("No JSON")
        if status_code >= 400:
            import requests
            response.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status_code}")
        else:
            response.raise_for_status.return_value = None
        return response

    return _create_response


# =============================================================================
# Time Fixtures
# =============================================================================

class FakeClock:
    """Monotonic clock advanced by its own sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def run_control(fake_clock):
    """RunControl whose waits return instantly."""
    return RunControl(sleep=fake_clock.sleep, clock=fake_clock)


# =============================================================================
# Data Factories
# =============================================================================

@pytest.fixture
def candidate_post_factory():
    """
    Factory fixture for creating CandidatePost objects.

    Usage:
        def test_pipeline(candidate_post_factory):
            post = candidate_post_factory(post_id="42", text="New model released")
    """
    counter = {'n': 0}

    def _create(post_id: Optional[str] = None, text: Optional[str] = None,
                author_username: str = "researcher", created_at: Optional[datetime] = None,
                media: Optional[List[MediaItem]] = None,
                quoted: Optional[QuotedPost] = None) -> CandidatePost:
        counter['n'] += 1
        post_id = post_id or str(1000 + counter['n'])
        return CandidatePost(
            post_id=post_id,
            text=text if text is not None else f"Distinct announcement number {counter['n']} about topic{counter['n']} alpha{counter['n']} beta{counter['n']}",
            created_at=created_at or NOW - timedelta(hours=1),
            author_username=author_username,
            author_name=author_username.title(),
            url=f"https://x.com/{author_username}/status/{post_id}",
            media=media or [],
            quoted=quoted,
        )

    return _create


@pytest.fixture
def scraped_item_factory():
    """Factory fixture for creating ScrapedItem objects."""
    counter = {'n': 0}

    def _create(status: ItemStatus = ItemStatus.PENDING, processed_content: Optional[str] = None,
                relevance_score: float = 8, post_id: Optional[str] = None,
                media: Optional[List[MediaItem]] = None, scraped_at: Optional[datetime] = None) -> ScrapedItem:
        counter['n'] += 1
        n = counter['n']
        return ScrapedItem(
            post_id=post_id or f"p{n}",
            author_username="author",
            original_content=f"original text {n}",
            processed_content=processed_content or f"processed text {n}",
            original_url=f"https://x.com/author/status/p{n}",
            relevance_score=relevance_score,
            status=status,
            media=media or [],
            scraped_at=scraped_at,
        )

    return _create


@pytest.fixture
def app_config():
    """Runtime config with similarity checks on and auto-queue off."""
    return AppConfig()


# =============================================================================
# Dependency Injection Fixtures
# =============================================================================

class InMemoryStore:
    """In-memory implementation of the ItemStore protocol for testing.

    Usage:
        def test_with_di(memory_store):
            pipeline = IngestionPipeline(store=memory_store, ...)
            # ... test code
            assert memory_store.items
    """

    def __init__(self, clock=lambda: NOW):
        """Initialize the store with empty tables."""
        self.items: Dict[int, ScrapedItem] = {}
        self.queue: Dict[int, QueueItem] = {}
        self.config: Optional[Dict[str, Any]] = None
        self.insert_calls = []
        self.shift_calls = []
        self.fail_inserts = False
        self._clock = clock
        self._next_item_id = 1
        self._next_queue_id = 1

    # ----- scraped items -------------------------------------------------

    def find_item_by_post_id(self, post_id: str) -> Optional[ScrapedItem]:
        return next((i for i in self.items.values() if i.post_id == post_id), None)

    def get_item(self, item_id: int) -> Optional[ScrapedItem]:
        return self.items.get(item_id)

    def list_items(self, statuses: Optional[Iterable[ItemStatus]] = None) -> List[ScrapedItem]:
        wanted = None if statuses is None else {ItemStatus(s) for s in statuses}
        return [i for i in self.items.values() if wanted is None or i.status in wanted]

    def insert_item(self, item: ScrapedItem) -> ScrapedItem:
        if self.fail_inserts:
            from utils.exceptions import QueryError
            raise QueryError("insert failed")
        self.insert_calls.append(item)
        item.id = self._next_item_id
        item.scraped_at = item.scraped_at or self._clock()
        self._next_item_id += 1
        self.items[item.id] = item
        return item

    def update_item_status(self, item_id: int, status: ItemStatus, reason: Optional[str] = None) -> bool:
        item = self.items[item_id]
        item.status = ItemStatus(status)
        if reason and item.status == ItemStatus.REJECTED:
            item.rejection_reason = reason
        elif reason and item.status == ItemStatus.APPROVED:
            item.approval_reason = reason
        return True

    def update_item_content(self, item_id: int, content: str) -> bool:
        self.items[item_id].processed_content = content
        return True

    def delete_items(self, item_ids: Sequence[int]) -> int:
        self.delete_queue_items_for(item_ids)
        removed = [i for i in item_ids if self.items.pop(i, None) is not None]
        return len(removed)

    def delete_older_than(self, statuses: Iterable[ItemStatus], days: float) -> int:
        cutoff = self._clock() - timedelta(days=days)
        wanted = {ItemStatus(s) for s in statuses}
        old = [i.id for i in self.items.values() if i.status in wanted and i.scraped_at < cutoff]
        for item_id in old:
            del self.items[item_id]
        return len(old)

    def get_content_by_status(self, statuses: Iterable[ItemStatus],
                              since_days: Optional[float] = None) -> List[str]:
        wanted = {ItemStatus(s) for s in statuses}
        cutoff = self._clock() - timedelta(days=since_days) if since_days is not None else None
        content = []
        for item in self.items.values():
            if item.status not in wanted:
                continue
            if cutoff is not None and item.scraped_at < cutoff:
                continue
            text = item.processed_content or item.original_content
            if text not in content:
                content.append(text)
        return content

    # ----- publish queue -------------------------------------------------

    def get_queue(self) -> List[QueueItem]:
        ordered = sorted(self.queue.values(), key=lambda q: (q.position, q.id))
        for q in ordered:
            q.item = self.items.get(q.scraped_item_id)
        return ordered

    def get_queue_item(self, queue_id: int) -> Optional[QueueItem]:
        q = self.queue.get(queue_id)
        if q is not None:
            q.item = self.items.get(q.scraped_item_id)
        return q

    def count_queue(self) -> int:
        return len(self.queue)

    def shift_queue_positions(self, offset: int = 1) -> bool:
        self.shift_calls.append(offset)
        for q in self.queue.values():
            q.position += offset
        return True

    def insert_queue_item(self, queue_item: QueueItem) -> QueueItem:
        queue_item.id = self._next_queue_id
        self._next_queue_id += 1
        self.queue[queue_item.id] = queue_item
        return queue_item

    def update_queue_positions(self, positions: Iterable[Tuple[int, int]]) -> bool:
        for queue_id, position in positions:
            self.queue[queue_id].position = position
        return True

    def update_queue_item(self, queue_id: int, custom_text: Optional[str] = None,
                          scheduled_at: Any = None, clear_schedule: bool = False) -> bool:
        q = self.queue[queue_id]
        if custom_text is not None:
            q.custom_text = custom_text
        if clear_schedule:
            q.scheduled_at = None
        elif scheduled_at is not None:
            q.scheduled_at = scheduled_at
        return True

    def delete_queue_item(self, queue_id: int) -> bool:
        return self.queue.pop(queue_id, None) is not None

    def delete_queue_items_for(self, item_ids: Sequence[int]) -> int:
        doomed = [qid for qid, q in self.queue.items() if q.scraped_item_id in set(item_ids)]
        for qid in doomed:
            del self.queue[qid]
        return len(doomed)

    # ----- runtime configuration ----------------------------------------

    def load_config(self) -> Optional[Dict[str, Any]]:
        return dict(self.config) if self.config is not None else None

    def save_config(self, config: Dict[str, Any]) -> bool:
        self.config = dict(config)
        return True

    # ----- helpers -------------------------------------------------------

    def add_item(self, item: ScrapedItem) -> ScrapedItem:
        """Insert bypassing the call tracking, for test setup."""
        item.id = self._next_item_id
        item.scraped_at = item.scraped_at or self._clock()
        self._next_item_id += 1
        self.items[item.id] = item
        return item

    def positions(self) -> Dict[int, int]:
        """scraped_item_id -> queue position."""
        return {q.scraped_item_id: q.position for q in self.queue.values()}


@pytest.fixture
def memory_store():
    """Provide an in-memory ItemStore implementation for DI testing."""
    return InMemoryStore()


class FakeFetcher:
    """Fetcher returning a fixed list of posts."""

    def __init__(self, posts: Optional[List[CandidatePost]] = None, error: Optional[Exception] = None):
        self.posts = posts or []
        self.error = error
        self.calls = []

    def fetch_recent_posts(self, count: int) -> List[CandidatePost]:
        self.calls.append(count)
        if self.error:
            raise self.error
        return list(self.posts[:count])


class FakeClassifier:
    """Classifier with scripted results, keyed by a substring of the post text."""

    def __init__(self, default: Optional[ClassificationResult] = None):
        self.default = default
        self.scripted: Dict[str, Any] = {}
        self.calls = []

    def script(self, needle: str, result: Any) -> None:
        """Return ``result`` (or raise it, if it is an exception) for texts containing ``needle``."""
        self.scripted[needle] = result

    def classify(self, text: str, config: AppConfig) -> ClassificationResult:
        self.calls.append(text)
        for needle, result in self.scripted.items():
            if needle in text:
                if isinstance(result, Exception):
                    raise result
                return result
        if self.default is not None:
            return self.default
        return ClassificationResult(relevance=8, paraphrase=text, model_used="test-model")

    def reprocess(self, original_text: str, instruction: Optional[str] = None,
                  target_language: str = 'es', model: Optional[str] = None) -> str:
        self.calls.append(original_text)
        return f"rewritten: {original_text}"


class FakePublisher:
    """Publisher recording posts."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.published = []

    def publish(self, text: str, media_urls: Optional[List[str]] = None) -> PublishResult:
        self.published.append((text, media_urls))
        if not self.succeed:
            return PublishResult(success=False, error="platform down")
        return PublishResult(success=True, id=f"tweet-{len(self.published)}")

    def upload_media(self, buffer: bytes, filename: str = "media.jpg") -> Optional[str]:
        return "media-1"


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def fake_classifier():
    return FakeClassifier()


@pytest.fixture
def fake_publisher():
    return FakePublisher()


@pytest.fixture
def fetch_error_fetcher():
    return FakeFetcher(error=FetchError("timeline unavailable"))
