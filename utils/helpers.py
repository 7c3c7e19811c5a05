"""
Helper Utility Module

This module provides text helpers used throughout the Tweet Curator application:
URL extraction, URL preservation and the 280-character smart truncation.
"""

import re
from typing import List
from datetime import datetime, timedelta, timezone

URL_PATTERN = re.compile(r'https?://\S+')

# Prefix length used to decide whether a URL already appears in rewritten text
URL_MATCH_PREFIX = 30


def extract_urls(text: str) -> List[str]:
    """
    Extract all http(s) URLs from a text, in order of appearance.

    Args:
        text: The text to scan

    Returns:
        List[str]: The URLs found (possibly empty)
    """
    if not text:
        return []
    return URL_PATTERN.findall(text)


def ensure_urls_included(processed: str, original: str) -> str:
    """
    Append URLs from the original text that the rewritten text dropped.

    A URL counts as present when any URL of the rewritten text contains its
    first 30 characters (link shorteners and trailing slashes vary). Missing
    URLs are appended space-separated in source order; fitting the result in
    one post is left to smart_truncate, which drops trailing URLs first.

    Args:
        processed: The model-rewritten text
        original: The source text (post plus quoted post)

    Returns:
        str: The rewritten text followed by every missing URL
    """
    original_urls = extract_urls(original)
    if not original_urls:
        return processed

    processed_urls = extract_urls(processed)
    missing = [
        url for url in original_urls
        if not any(url[:URL_MATCH_PREFIX] in p for p in processed_urls)
    ]
    return ' '.join([processed, *missing]) if processed else ' '.join(missing)


def _truncate_words(text: str, budget: int) -> str:
    """Cut prose to ``budget`` characters on a word boundary, ending with an ellipsis."""
    if len(text) <= budget:
        return text
    if budget <= 3:
        return text[:budget]

    cut = text[:budget - 3]
    last_space = cut.rfind(' ')
    # Only fall back to a mid-word cut when the last word boundary is too far back
    if last_space > (budget - 3) * 0.7:
        cut = cut[:last_space]
    cut = cut.rstrip().rstrip('.,;:!?').rstrip()
    return cut + '...'


def smart_truncate(text: str, max_length: int = 280, min_prose_length: int = 50) -> str:
    """
    Truncate text to ``max_length`` while keeping URLs whole and words intact.

    URLs are pulled out of the text and re-appended after the truncated prose.
    When the URLs would leave fewer than ``min_prose_length`` characters for
    prose, URLs are dropped from the end until the prose has room. A URL is
    never cut in half.

    Args:
        text: The text to truncate
        max_length: Maximum length of the result
        min_prose_length: Minimum prose budget to keep alongside URLs

    Returns:
        str: Text no longer than ``max_length``
    """
    if not text or len(text) <= max_length:
        return text

    urls = extract_urls(text)
    prose = text
    for url in urls:
        prose = prose.replace(url, '', 1)
    prose = ' '.join(prose.split())

    kept = list(urls)
    while kept and max_length - len(' '.join(kept)) - 1 < min_prose_length:
        kept.pop()

    if not kept:
        return _truncate_words(prose, max_length)

    urls_text = ' '.join(kept)
    budget = max_length - len(urls_text) - 1
    truncated = _truncate_words(prose, budget)
    if not truncated:
        return urls_text
    return f"{truncated} {urls_text}"


def truncate_text(text: str, max_length: int = 100, add_ellipsis: bool = True) -> str:
    """
    Truncate text to a maximum length.

    Args:
        text: The text to truncate
        max_length: Maximum length
        add_ellipsis: Whether to add an ellipsis if text is truncated

    Returns:
        str: Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    truncated = text[:max_length].rstrip()
    if add_ellipsis:
        truncated += "..."

    return truncated


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def days_ago(days: float, now: datetime = None) -> datetime:
    """
    Get the cutoff datetime ``days`` before ``now``.

    Args:
        days: Number of days to go back
        now: Reference time, defaults to the current UTC time

    Returns:
        datetime: The cutoff
    """
    return (now or utc_now()) - timedelta(days=days)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
