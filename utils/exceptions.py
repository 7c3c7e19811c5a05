"""
Custom Exception Classes for the Tweet Curator Application

This module defines custom exceptions for better error handling and
categorization of failures across the scrape, triage and publish flows.
"""

from typing import Optional


class CuratorError(Exception):
    """Base exception for all Tweet Curator application errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(CuratorError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Fetch Errors
# =============================================================================

class FetchError(CuratorError):
    """Raised when posts cannot be fetched from the source timeline."""
    pass


# =============================================================================
# AI Service Errors
# =============================================================================

class AIServiceError(CuratorError):
    """Base exception for AI service errors."""
    pass


class ClassificationError(AIServiceError):
    """Raised when every candidate model failed to classify a post."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class ProviderRateLimitError(AIServiceError):
    """Raised by a provider client when the backend answered with a rate limit."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


# =============================================================================
# Social Media Errors
# =============================================================================

class SocialMediaError(CuratorError):
    """Base exception for social media platform errors."""
    pass


class AuthenticationError(SocialMediaError):
    """Raised when authentication with a social media platform fails."""
    pass


class PostingError(SocialMediaError):
    """Raised when posting to a social media platform fails."""
    pass


class MediaUploadError(SocialMediaError):
    """Raised when media upload fails."""
    pass


# =============================================================================
# Curation Errors
# =============================================================================

class CurationError(CuratorError):
    """Base exception for human curation actions."""
    pass


class InvalidTransitionError(CurationError):
    """Raised when a status change is not allowed for the item."""
    pass


class ContentTooLongError(CurationError):
    """Raised when text exceeds the platform character limit."""
    pass


class ItemNotFoundError(CurationError):
    """Raised when a scraped item or queue item does not exist."""
    pass


class RunInProgressError(CuratorError):
    """Raised when a scrape run is requested while another one is active."""
    pass


# =============================================================================
# Database Errors
# =============================================================================

class StoreError(CuratorError):
    """Base exception for database-related errors."""
    pass


class ConnectionError(StoreError):
    """Raised when database connection fails."""
    pass


class QueryError(StoreError):
    """Raised when a database query fails."""
    pass
