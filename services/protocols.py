"""
Service Protocol Definitions

This module defines typing.Protocol interfaces for the collaborators of the
ingestion pipeline and the publish service. These protocols enable loose
coupling, dependency injection, and easier testing.

Protocols defined:
- Fetcher: Interface for reading candidate posts from the source timeline
- Publisher: Interface for posting curated content to a social platform
- Classifier: Interface for AI-powered scoring and rewriting
"""

from typing import Protocol, Optional, List, Any

from data.models import CandidatePost, PublishResult


class Fetcher(Protocol):
    """Protocol defining the interface for the post source.

    Implementations should return posts in timeline order with author
    identity, text, creation time, permalink, media and quoted-post data.
    """

    def fetch_recent_posts(self, count: int) -> List[CandidatePost]:
        """Fetch up to ``count`` recent posts.

        Args:
            count: Number of posts wanted; fewer may be returned.

        Returns:
            List of CandidatePost objects.

        Raises:
            FetchError: If the source could not be read.
        """
        ...


class Publisher(Protocol):
    """Protocol defining the interface for social media publishing.

    The caller guarantees the text fits the platform limit; implementations
    do not validate content.
    """

    def publish(self, text: str, media_urls: Optional[List[str]] = None) -> PublishResult:
        """Post text with optional media.

        Args:
            text: The post text.
            media_urls: Media to download and attach.

        Returns:
            PublishResult with the platform post id on success, or the error.
        """
        ...

    def upload_media(self, buffer: bytes, filename: str = "media.jpg") -> Optional[str]:
        """Upload media and return its platform id, or None on failure."""
        ...


class Classifier(Protocol):
    """Protocol defining the interface for AI-powered classification."""

    def classify(self, text: str, config: Any) -> Any:
        """Score and rewrite a post; returns a ClassificationResult."""
        ...

    def reprocess(self, original_text: str, instruction: Optional[str] = None,
                  target_language: str = 'es', model: Optional[str] = None) -> str:
        """Rewrite a post following a human instruction."""
        ...
