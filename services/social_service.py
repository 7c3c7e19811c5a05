"""
Social Service Module

This module handles cross-posting to the AT Protocol (BlueSky). Posts that
were published on X are mirrored here when ENABLE_BLUESKY is set.
"""

from typing import List, Optional

import requests
from atproto import Client, models

from config import settings
from data.models import PublishResult
from utils.helpers import extract_urls
from utils.logger import get_logger

logger = get_logger(__name__)

BLUESKY_CHARACTER_LIMIT = 300
MAX_IMAGES = 4


class SocialService:
    """Service for social media integrations with the AT Protocol (BlueSky)."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize the social service with AT Protocol client."""
        self.at_client = client or Client()
        self.logged_in = self._setup_at_protocol()

    def _setup_at_protocol(self) -> bool:
        """
        Set up AT Protocol authentication.

        Returns:
            bool: True if authentication was successful, False otherwise.
        """
        try:
            username = settings.AT_PROTOCOL_USERNAME
            password = settings.AT_PROTOCOL_PASSWORD

            if not username or not password:
                logger.error("Missing AT Protocol credentials")
                return False

            self.at_client.login(username, password)
            logger.info(f"Successfully logged in to AT Protocol as {username}")
            return True

        except Exception as e:
            logger.error(f"Failed to authenticate with AT Protocol: {e}")
            return False

    def upload_media(self, buffer: bytes, filename: str = "media.jpg") -> Optional[models.AppBskyEmbedImages.Image]:
        """Upload an image blob; returns the embed image or None on failure."""
        try:
            upload = self.at_client.upload_blob(buffer)
            return models.AppBskyEmbedImages.Image(alt=filename, image=upload.blob)
        except Exception as e:
            logger.warning(f"Failed to upload image: {e}")
            return None

    def _build_embed(self, text: str, media_urls: Optional[List[str]]):
        images = []
        for url in (media_urls or [])[:MAX_IMAGES]:
            try:
                response = requests.get(url, timeout=settings.BLUESKY_IMAGE_TIMEOUT)
                response.raise_for_status()
            except requests.RequestException as e:
                logger.warning(f"Failed to download image {url[:50]}: {e}")
                continue
            image = self.upload_media(response.content, url.rsplit('/', 1)[-1])
            if image:
                images.append(image)
        if images:
            return models.AppBskyEmbedImages.Main(images=images)

        urls = extract_urls(text)
        if urls:
            return models.AppBskyEmbedExternal.Main(
                external=models.AppBskyEmbedExternal.External(
                    title=urls[0],
                    description=text[:100] + "..." if len(text) > 100 else text,
                    uri=urls[0],
                )
            )
        return None

    def publish(self, text: str, media_urls: Optional[List[str]] = None) -> PublishResult:
        """
        Post content to the AT Protocol feed.

        Images are attached when media is given; otherwise the first link in
        the text becomes an external embed.

        Args:
            text: The text to post
            media_urls: Images to attach (optional)

        Returns:
            PublishResult: The post URI on success, or the error.
        """
        if not self.logged_in:
            return PublishResult(success=False, error="Not logged in to AT Protocol")
        try:
            embed = self._build_embed(text, media_urls)
            response = self.at_client.send_post(text=text[:BLUESKY_CHARACTER_LIMIT], embed=embed)
            uri = getattr(response, 'uri', None)
            logger.info(f"Successfully posted to AT Protocol: {uri}")
            return PublishResult(success=True, id=uri)

        except Exception as e:
            logger.error(f"Error posting to AT Protocol: {e}")
            return PublishResult(success=False, error=str(e))
