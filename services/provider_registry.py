"""
Provider Registry Module

Tracks which LLM backends are usable right now. A backend that answered with a
rate limit is put in cooldown until the time it asked for (or a default) has
passed, and model selection skips it until then.
"""

import re
import time
from typing import Callable, Dict, Iterable, Optional

from config import settings
from utils.logger import get_logger

logger = get_logger(__name__)

RETRY_HINT_PATTERN = re.compile(r'try again in (?:(\d+)m(?!s))?(?:([\d.]+)s)?', re.IGNORECASE)


def parse_retry_after(message: Optional[str], default: float = settings.DEFAULT_RETRY_AFTER_SECONDS) -> float:
    """
    Extract the wait time from a rate-limit error message.

    Understands hints such as ``"Please try again in 7m12.5s"``,
    ``"try again in 3m"`` and ``"try again in 20.4s"``.

    Args:
        message: The provider's error message.
        default: Seconds to use when the message carries no hint.

    Returns:
        float: Seconds to wait before the provider may be used again.
    """
    if not message:
        return default
    match = RETRY_HINT_PATTERN.search(message)
    if not match or not (match.group(1) or match.group(2)):
        return default

    minutes = int(match.group(1)) if match.group(1) else 0
    try:
        seconds = float(match.group(2)) if match.group(2) else 0.0
    except ValueError:
        return default
    return minutes * 60 + seconds


class ProviderRegistry:
    """Cooldown state for every LLM provider, with model selection on top of it."""

    def __init__(self, clock: Callable[[], float] = time.time):
        """
        Args:
            clock: Returns the current time in seconds; injectable for tests.
        """
        self._clock = clock
        self._blocked_until: Dict[str, float] = {}
        self._retry_after: Dict[str, float] = {}

    def is_available(self, provider: str) -> bool:
        """True iff the provider has no cooldown or its cooldown has elapsed."""
        blocked_until = self._blocked_until.get(provider)
        return blocked_until is None or self._clock() >= blocked_until

    def mark_rate_limited(self, provider: str, retry_after_seconds: Optional[float] = None,
                          message: Optional[str] = None) -> float:
        """
        Put a provider in cooldown.

        Args:
            provider: Provider name.
            retry_after_seconds: Explicit wait, e.g. from a Retry-After header.
            message: Error message to parse for a retry hint when no explicit wait is given.

        Returns:
            float: The cooldown applied, in seconds.
        """
        if retry_after_seconds is None:
            retry_after_seconds = parse_retry_after(message)
        self._blocked_until[provider] = self._clock() + retry_after_seconds
        self._retry_after[provider] = retry_after_seconds
        logger.warning(f"Provider {provider} rate limited, cooling down for {retry_after_seconds:.0f}s")
        return retry_after_seconds

    def is_model_available(self, model: str) -> bool:
        return self.is_available(settings.get_model_provider(model))

    def candidate_models(self, preferred: Optional[str],
                         fallbacks: Optional[Iterable[str]] = None) -> list:
        """Preferred model followed by the fallbacks, without duplicates, in order."""
        if fallbacks is None:
            fallbacks = settings.FALLBACK_MODELS
        ordered = []
        for model in [preferred, *fallbacks]:
            if model and model not in ordered:
                ordered.append(model)
        return ordered

    def pick_model(self, preferred: Optional[str],
                   fallbacks: Optional[Iterable[str]] = None) -> Optional[str]:
        """
        Choose the model to call.

        Args:
            preferred: The configured model.
            fallbacks: Ordered fallback models, defaults to settings.FALLBACK_MODELS.

        Returns:
            Optional[str]: The first model whose provider is available, or None
            if every provider is cooling down.
        """
        for model in self.candidate_models(preferred, fallbacks):
            if self.is_model_available(model):
                if model != preferred:
                    logger.info(f"Using fallback model {model} instead of {preferred}")
                return model
        return None

    def status(self) -> Dict[str, Dict[str, Optional[float]]]:
        """Cooldown state of every known provider, for diagnostics."""
        now = self._clock()
        report = {}
        for provider in settings.PROVIDERS:
            blocked_until = self._blocked_until.get(provider)
            remaining = max(0.0, blocked_until - now) if blocked_until else 0.0
            report[provider] = {
                "available": self.is_available(provider),
                "blocked_until": blocked_until,
                "retry_after_seconds": self._retry_after.get(provider),
                "remaining_seconds": remaining,
            }
        return report
