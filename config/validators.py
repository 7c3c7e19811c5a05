"""
Environment Validation for the Tweet Curator Application

Checks the values loaded by config/settings.py before any command that talks
to the database, the LLM providers or the social platforms. Every problem is
collected so a single run reports the whole list.
"""

from typing import List

from utils.exceptions import ConfigurationError
from utils.logger import get_logger

logger = get_logger(__name__)

PROVIDER_KEY_NAMES = ("GROQ_API_KEY", "GOOGLE_AI_API_KEY", "OPENROUTER_API_KEY")
DATABASE_KEY_NAMES = ("DB_SERVER", "DB_NAME", "DB_USER", "DB_PASSWORD")
TWITTER_KEY_NAMES = (
    "TWITTER_API_KEY", "TWITTER_API_KEY_SECRET",
    "TWITTER_ACCESS_TOKEN", "TWITTER_ACCESS_TOKEN_SECRET",
)


def _missing(settings, names) -> List[str]:
    return [name for name in names if not getattr(settings, name, None)]


def _check_providers(settings, errors: List[str]) -> None:
    missing = _missing(settings, PROVIDER_KEY_NAMES)
    if len(missing) == len(PROVIDER_KEY_NAMES):
        errors.append(f"No LLM provider configured. Set one of {', '.join(PROVIDER_KEY_NAMES)}.")
        return
    for name in missing:
        logger.warning(f"{name} is not set; models of that provider will be skipped")


def _check_database(settings, errors: List[str]) -> None:
    for name in _missing(settings, DATABASE_KEY_NAMES):
        errors.append(f"Missing database setting: {name}")
    if not settings.DB_CONNECTION_STRING:
        errors.append("No database connection string could be built from the DB_* settings")


def _check_platforms(settings, errors: List[str]) -> None:
    missing = _missing(settings, TWITTER_KEY_NAMES)
    if missing:
        errors.append(f"X (Twitter) OAuth 1.0a credentials missing: {', '.join(missing)}")

    if settings.ENABLE_BLUESKY and _missing(settings, ("AT_PROTOCOL_USERNAME", "AT_PROTOCOL_PASSWORD")):
        errors.append("ENABLE_BLUESKY is set but AT_PROTOCOL_USERNAME/AT_PROTOCOL_PASSWORD are not")


def _check_pipeline(settings, errors: List[str]) -> None:
    limit = settings.TWITTER_CHARACTER_LIMIT
    bounds = [
        ("TWITTER_CHARACTER_LIMIT", limit, 50, 500),
        ("DEFAULT_SCRAPE_COUNT", settings.DEFAULT_SCRAPE_COUNT, 1, 500),
        ("SIMILARITY_THRESHOLD", settings.SIMILARITY_THRESHOLD, 0.0, 1.0),
        ("PUBLISHED_LOOKBACK_DAYS", settings.PUBLISHED_LOOKBACK_DAYS, 1, 365),
        ("MIN_PROSE_LENGTH", settings.MIN_PROSE_LENGTH, 0, limit),
    ]
    for name, value, low, high in bounds:
        if not low <= value <= high:
            errors.append(f"{name}={value} is outside [{low}, {high}]")

    if settings.ITEM_DELAY_MIN_SECONDS > settings.ITEM_DELAY_MAX_SECONDS:
        errors.append("ITEM_DELAY_MIN_SECONDS must not exceed ITEM_DELAY_MAX_SECONDS")

    for name in ("LLM_REQUEST_TIMEOUT", "ABORT_POLL_INTERVAL", "TWITTER_IMAGE_TIMEOUT", "BLUESKY_IMAGE_TIMEOUT"):
        value = getattr(settings, name)
        if value <= 0:
            errors.append(f"{name} must be positive, got {value}")


def validate_settings():
    """
    Validate the environment settings.

    Raises:
        ConfigurationError: Listing every missing or out-of-range setting.
    """
    # Deferred so tests can patch module attributes
    from config import settings

    errors: List[str] = []
    for check in (_check_providers, _check_database, _check_platforms, _check_pipeline):
        check(settings, errors)

    if errors:
        raise ConfigurationError("Invalid configuration:\n" + "\n".join(f"  - {e}" for e in errors))
    return True


def get_config_summary() -> dict:
    """Non-secret view of the settings for the startup log."""
    from config import settings

    server = settings.DB_SERVER or ""
    return {
        "providers": {name.split("_")[0].lower(): bool(getattr(settings, name, None))
                      for name in PROVIDER_KEY_NAMES},
        "platforms": {
            "twitter": not _missing(settings, TWITTER_KEY_NAMES),
            "bluesky": settings.ENABLE_BLUESKY,
        },
        "database": {
            "server": server if len(server) <= 20 else server[:20] + "...",
            "database": settings.DB_NAME,
        },
        "pipeline": {
            "char_limit": settings.TWITTER_CHARACTER_LIMIT,
            "default_count": settings.DEFAULT_SCRAPE_COUNT,
            "similarity_threshold": settings.SIMILARITY_THRESHOLD,
            "fallback_models": list(settings.FALLBACK_MODELS),
        },
    }
