"""
Twitter Service Module

This module handles integration with Twitter/X API.
It reads the authenticated user's home timeline as candidate posts and
publishes curated content with optional media.
"""

import io
import random
import time
from typing import Any, Callable, Dict, List, Optional

import requests
import tweepy

from config import settings
from data.models import CandidatePost, MediaItem, PublishResult, QuotedPost
from utils.exceptions import AuthenticationError, FetchError, MediaUploadError
from utils.logger import get_logger

logger = get_logger(__name__)

TWEET_FIELDS = ['created_at', 'author_id', 'attachments', 'referenced_tweets', 'entities']
USER_FIELDS = ['username', 'name', 'profile_image_url']
MEDIA_FIELDS = ['type', 'url', 'preview_image_url', 'variants']
EXPANSIONS = ['author_id', 'attachments.media_keys', 'referenced_tweets.id',
              'referenced_tweets.id.author_id']

MEDIA_KINDS = {'photo': 'photo', 'video': 'video', 'animated_gif': 'gif'}


def status_url(username: str, post_id: Any) -> str:
    return f"https://x.com/{username}/status/{post_id}"


def _get(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a tweepy model or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _best_video_url(media: Any) -> Optional[str]:
    variants = _get(media, 'variants') or []
    mp4 = [v for v in variants if _get(v, 'content_type') == 'video/mp4' and _get(v, 'url')]
    if not mp4:
        return None
    best = max(mp4, key=lambda v: _get(v, 'bit_rate', 0) or 0)
    return _get(best, 'url')


def to_media_item(media: Any) -> Optional[MediaItem]:
    """Normalise a tweepy Media object to a MediaItem (photo, video or gif)."""
    kind = MEDIA_KINDS.get(_get(media, 'type'), 'photo')
    preview = _get(media, 'preview_image_url')
    if kind == 'photo':
        url = _get(media, 'url') or preview
        thumbnail = None
    else:
        url = _best_video_url(media) or preview or _get(media, 'url')
        thumbnail = preview
    if not url:
        return None
    return MediaItem(kind=kind, url=url, thumbnail_url=thumbnail)


class TwitterService:
    """Service for Twitter/X integration."""

    def __init__(self, sleep: Callable[[float], None] = time.sleep):
        """Initialize the Twitter service with API authentication."""
        self.api_key = settings.TWITTER_API_KEY
        self.api_key_secret = settings.TWITTER_API_KEY_SECRET
        self.access_token = settings.TWITTER_ACCESS_TOKEN
        self.access_token_secret = settings.TWITTER_ACCESS_TOKEN_SECRET
        self.bearer_token = settings.TWITTER_BEARER_TOKEN
        self.client = None
        self.api = None
        self._sleep = sleep

        # Set up Twitter clients
        self._setup_twitter()

    def _setup_twitter(self) -> bool:
        """
        Set up Twitter API authentication using Tweepy.

        The v2 Client reads the timeline and posts; the v1.1 API is only
        used for media uploads.

        Returns:
            bool: True if the clients were created, False otherwise.
        """
        try:
            if not all([self.api_key, self.api_key_secret, self.access_token, self.access_token_secret]):
                logger.error("Twitter OAuth 1.0a credentials are missing; "
                             "the home timeline and posting both require them.")
                return False

            self.client = tweepy.Client(
                bearer_token=self.bearer_token,
                consumer_key=self.api_key,
                consumer_secret=self.api_key_secret,
                access_token=self.access_token,
                access_token_secret=self.access_token_secret,
            )
            auth = tweepy.OAuth1UserHandler(
                self.api_key,
                self.api_key_secret,
                self.access_token,
                self.access_token_secret
            )
            self.api = tweepy.API(auth)
            logger.info("Twitter clients initialized with OAuth 1.0a")
            return True

        except Exception as e:
            logger.error(f"Failed to set up Twitter clients: {e}")
            self.client = None
            self.api = None
            return False

    # =========================================================================
    # Fetcher
    # =========================================================================

    def fetch_recent_posts(self, count: int) -> List[CandidatePost]:
        """
        Read up to ``count`` posts from the home timeline.

        Pages through the timeline with a randomized pause between pages.

        Args:
            count: Number of posts wanted.

        Returns:
            List[CandidatePost]: Posts in timeline order, at most ``count``.

        Raises:
            FetchError: If the timeline could not be read.
        """
        if not self.client:
            raise FetchError("Twitter client not initialized")

        posts: List[CandidatePost] = []
        pagination_token = None
        try:
            while len(posts) < count:
                if pagination_token:
                    self._sleep(random.uniform(settings.TIMELINE_PAGE_DELAY_MIN_SECONDS,
                                               settings.TIMELINE_PAGE_DELAY_MAX_SECONDS))
                max_results = max(1, min(settings.TWITTER_API_MAX_RESULTS, count - len(posts)))
                response = self.client.get_home_timeline(
                    max_results=max_results,
                    pagination_token=pagination_token,
                    expansions=EXPANSIONS,
                    tweet_fields=TWEET_FIELDS,
                    user_fields=USER_FIELDS,
                    media_fields=MEDIA_FIELDS,
                    user_auth=True,
                )
                if not response.data:
                    break

                posts.extend(self._parse_page(response))

                pagination_token = (response.meta or {}).get('next_token')
                if not pagination_token:
                    break
        except tweepy.TweepyException as e:
            raise FetchError(f"Error fetching home timeline: {e}") from e
        except requests.RequestException as e:
            raise FetchError(f"Network error fetching home timeline: {e}") from e

        posts = posts[:count]
        logger.info(f"Fetched {len(posts)} posts from the home timeline")
        return posts

    def _parse_page(self, response: Any) -> List[CandidatePost]:
        includes = response.includes or {}
        users: Dict[str, Any] = {str(u.id): u for u in includes.get('users', [])}
        media: Dict[str, Any] = {m.media_key: m for m in includes.get('media', [])}
        referenced: Dict[str, Any] = {str(t.id): t for t in includes.get('tweets', [])}

        posts = []
        for tweet in response.data:
            author = users.get(str(tweet.author_id))
            username = author.username if author else 'unknown'

            media_keys = (_get(tweet, 'attachments') or {}).get('media_keys', [])
            items = [to_media_item(media[k]) for k in media_keys if k in media]

            quoted = None
            for ref in _get(tweet, 'referenced_tweets') or []:
                if _get(ref, 'type') != 'quoted':
                    continue
                quoted_tweet = referenced.get(str(_get(ref, 'id')))
                if quoted_tweet is None:
                    continue
                quoted_author = users.get(str(_get(quoted_tweet, 'author_id')))
                quoted_username = quoted_author.username if quoted_author else 'unknown'
                quoted = QuotedPost(
                    post_id=str(quoted_tweet.id),
                    text=quoted_tweet.text or '',
                    author_username=quoted_username,
                    author_name=quoted_author.name if quoted_author else quoted_username,
                    url=status_url(quoted_username, quoted_tweet.id),
                )
                break

            posts.append(CandidatePost(
                post_id=str(tweet.id),
                text=tweet.text or '',
                created_at=tweet.created_at,
                author_username=username,
                author_name=author.name if author else username,
                author_avatar_url=_get(author, 'profile_image_url') if author else None,
                url=status_url(username, tweet.id),
                media=[m for m in items if m],
                quoted=quoted,
            ))
        return posts

    # =========================================================================
    # Publisher
    # =========================================================================

    def download_media(self, url: str) -> bytes:
        """
        Download a media file.

        Raises:
            MediaUploadError: If the download failed.
        """
        try:
            response = requests.get(url, timeout=settings.TWITTER_IMAGE_TIMEOUT)
            response.raise_for_status()
            return response.content
        except requests.RequestException as e:
            raise MediaUploadError(f"Failed to download media {url[:50]}: {e}") from e

    def upload_media(self, buffer: bytes, filename: str = "media.jpg") -> Optional[str]:
        """
        Upload media through the v1.1 API.

        Args:
            buffer: The media bytes.
            filename: Name hinting the media type.

        Returns:
            Optional[str]: The media id, or None on failure.
        """
        if not self.api:
            logger.error("Twitter media API not initialized")
            return None
        try:
            media = self.api.media_upload(filename=filename, file=io.BytesIO(buffer))
            return str(media.media_id_string if getattr(media, 'media_id_string', None) else media.media_id)
        except Exception as e:
            logger.warning(f"Failed to upload media: {e}")
            return None

    def publish(self, text: str, media_urls: Optional[List[str]] = None) -> PublishResult:
        """
        Post a tweet with optional media.

        Media that fails to download or upload is skipped; the tweet is still
        posted with whatever media succeeded.

        Args:
            text: The tweet text (the caller guarantees the length).
            media_urls: Media to attach.

        Returns:
            PublishResult: The new tweet id on success, or the error.
        """
        if not self.client:
            return PublishResult(success=False, error=str(AuthenticationError("Twitter client not initialized")))

        media_ids = []
        for url in media_urls or []:
            try:
                buffer = self.download_media(url)
                filename = url.rsplit('/', 1)[-1].split('?')[0] or "media.jpg"
                media_id = self.upload_media(buffer, filename)
                if media_id:
                    media_ids.append(media_id)
            except MediaUploadError as e:
                logger.warning(str(e))

        try:
            response = self.client.create_tweet(text=text, media_ids=media_ids or None, user_auth=True)
            data = response.data if response is not None else None
            tweet_id = str(data['id']) if data and 'id' in data else None
            if not tweet_id:
                logger.error("Failed to post tweet: No valid response from Twitter API")
                return PublishResult(success=False, error="No valid response from Twitter API")
            logger.info(f"Successfully posted tweet {tweet_id}")
            return PublishResult(success=True, id=tweet_id)
        except Exception as e:
            logger.error(f"Error posting tweet: {e}")
            return PublishResult(success=False, error=str(e))
