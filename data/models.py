"""
Data Models for the Tweet Curator Application

This module contains data classes used throughout the application: the posts
produced by the fetcher, the curated items persisted by the pipeline and the
publish queue entries.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ItemStatus(str, Enum):
    """Curation status of a scraped item."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


# Allowed status changes. Published is terminal.
ALLOWED_TRANSITIONS = {
    ItemStatus.PENDING: {ItemStatus.APPROVED, ItemStatus.REJECTED},
    ItemStatus.APPROVED: {ItemStatus.REJECTED, ItemStatus.PUBLISHED},
    ItemStatus.REJECTED: {ItemStatus.APPROVED},
    ItemStatus.PUBLISHED: set(),
}


def can_transition(current: ItemStatus, new: ItemStatus) -> bool:
    """Whether an item in ``current`` status may move to ``new``."""
    return ItemStatus(new) in ALLOWED_TRANSITIONS[ItemStatus(current)]


@dataclass
class MediaItem:
    """A photo, video or gif attached to a post."""
    kind: str                          # 'photo', 'video' or 'gif'
    url: str
    thumbnail_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "url": self.url, "thumbnailUrl": self.thumbnail_url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaItem":
        kind = (data.get("type") or data.get("kind") or "photo").lower()
        return cls(kind=kind, url=data["url"],
                   thumbnail_url=data.get("thumbnailUrl") or data.get("thumbnail_url"))


@dataclass
class QuotedPost:
    """The post quoted by a candidate post."""
    post_id: str
    text: str
    author_username: str
    author_name: Optional[str] = None
    url: Optional[str] = None


@dataclass
class CandidatePost:
    """A freshly fetched, not-yet-persisted post from the source timeline."""
    post_id: str                       # Stable source identifier
    text: str
    created_at: datetime
    author_username: str
    url: str                           # Source permalink
    author_name: Optional[str] = None
    author_avatar_url: Optional[str] = None
    media: List[MediaItem] = field(default_factory=list)
    quoted: Optional[QuotedPost] = None

    @property
    def author_handle(self) -> str:
        return f"@{self.author_username}"

    def full_text(self) -> str:
        """Text sent to the classifier: the post plus an annotation for the quoted post."""
        text = self.text
        if self.quoted:
            text += f'\n\n[QUOTED POST from @{self.quoted.author_username}]: "{self.quoted.text}"'
            if self.quoted.url:
                text += f" {self.quoted.url}"
        return text

    def source_text(self) -> str:
        """All original text whose URLs must survive the rewrite."""
        if not self.quoted:
            return self.text
        return f"{self.text} {self.quoted.text} {self.quoted.url or ''}".strip()


@dataclass
class ScrapedItem:
    """The persisted, status-bearing curated record derived from a candidate post."""
    post_id: str
    author_username: str
    original_content: str
    processed_content: str
    original_url: str
    relevance_score: float
    status: ItemStatus = ItemStatus.PENDING
    author_name: Optional[str] = None
    author_avatar: Optional[str] = None
    ai_summary: Optional[str] = None
    ai_model: Optional[str] = None
    rejection_reason: Optional[str] = None
    approval_reason: Optional[str] = None
    is_breaking_news: bool = False
    media: List[MediaItem] = field(default_factory=list)
    scraped_at: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def media_urls(self) -> List[str]:
        return [m.url for m in self.media]


@dataclass
class QueueItem:
    """An ordered, publish-pending wrapper around an approved scraped item."""
    scraped_item_id: int
    custom_text: str
    position: int
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None
    item: Optional[ScrapedItem] = None


@dataclass
class PublishResult:
    """Outcome of a publish call."""
    success: bool
    id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "id": self.id, "error": self.error}
