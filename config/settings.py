"""
Configuration Settings for Tweet Curator

This module centralizes all environment configuration for the Tweet Curator
application: API keys, database settings, the model catalogue and the
application constants used by the scrape-and-triage pipeline.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# LLM Provider Keys
GOOGLE_AI_API_KEY = os.getenv("GOOGLE_AI_API_KEY") or os.getenv("GEMINI_API_KEY")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# Twitter API Authentication
TWITTER_API_KEY = os.getenv("TWITTER_API_KEY")
TWITTER_API_KEY_SECRET = os.getenv("TWITTER_API_KEY_SECRET")
TWITTER_ACCESS_TOKEN = os.getenv("TWITTER_ACCESS_TOKEN")
TWITTER_ACCESS_TOKEN_SECRET = os.getenv("TWITTER_ACCESS_TOKEN_SECRET")
TWITTER_BEARER_TOKEN = os.getenv("TWITTER_BEARER_TOKEN")

# AT Protocol (BlueSky) cross-posting
AT_PROTOCOL_USERNAME = os.getenv("AT_PROTOCOL_USERNAME")
AT_PROTOCOL_PASSWORD = os.getenv("AT_PROTOCOL_PASSWORD")
ENABLE_BLUESKY = _env_flag("ENABLE_BLUESKY", False)

# Database Settings
DB_SERVER = os.getenv("server", "")
DB_NAME = os.getenv("db", "")
DB_USER = os.getenv("user", "")
DB_PASSWORD = os.getenv("pwd", "")

# Build connection string safely (validation happens in validate_settings())
DB_CONNECTION_STRING = (
    f"DRIVER={{ODBC Driver 18 for SQL Server}}; "
    f"SERVER={DB_SERVER}; "
    f"DATABASE={DB_NAME}; "
    f"UID={DB_USER}; "
    f"PWD={DB_PASSWORD}; "
    f"TrustServerCertificate=yes; MARS_Connection=yes;"
) if all([DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD]) else ""

# File used by `main.py abort` to signal a run living in another process
ABORT_FLAG_FILE = os.getenv("ABORT_FLAG_FILE", os.path.join(APP_ROOT, ".scrape_abort"))

# =============================================================================
# AI Model Settings
# =============================================================================

PROVIDER_GROQ = "groq"
PROVIDER_GEMINI = "gemini"
PROVIDER_OPENROUTER = "openrouter"
PROVIDERS = [PROVIDER_GROQ, PROVIDER_GEMINI, PROVIDER_OPENROUTER]

# Selectable models: id -> (provider, display name, description)
AI_MODELS = {
    # Groq
    'llama-3.3-70b-versatile': (PROVIDER_GROQ, 'Llama 3.3 70B', 'Best quality, slower'),
    'llama-3.1-8b-instant': (PROVIDER_GROQ, 'Llama 3.1 8B', 'Fast, good quality'),
    'gemma2-9b-it': (PROVIDER_GROQ, 'Gemma 2 9B', 'Google via Groq'),
    'mixtral-8x7b-32768': (PROVIDER_GROQ, 'Mixtral 8x7B', 'Mistral, long context'),
    # Gemini
    'gemini-2.0-flash-exp': (PROVIDER_GEMINI, 'Gemini 2.0 Flash', 'Latest model, experimental'),
    'gemini-1.5-flash': (PROVIDER_GEMINI, 'Gemini 1.5 Flash', 'Fast and efficient'),
    'gemini-1.5-pro': (PROVIDER_GEMINI, 'Gemini 1.5 Pro', 'Highest capacity'),
    # OpenRouter (free tier)
    'google/gemma-2-9b-it:free': (PROVIDER_OPENROUTER, 'Gemma 2 9B', 'Google, free'),
    'meta-llama/llama-3.2-3b-instruct:free': (PROVIDER_OPENROUTER, 'Llama 3.2 3B', 'Meta, fast'),
    'qwen/qwen-2-7b-instruct:free': (PROVIDER_OPENROUTER, 'Qwen 2 7B', 'Alibaba, free'),
    'microsoft/phi-3-mini-128k-instruct:free': (PROVIDER_OPENROUTER, 'Phi-3 Mini', 'Microsoft, 128k context'),
    'mistralai/mistral-7b-instruct:free': (PROVIDER_OPENROUTER, 'Mistral 7B', 'Mistral AI, free'),
}

DEFAULT_AI_MODEL = 'llama-3.3-70b-versatile'

# Tried in this order when the preferred model's provider is unavailable
FALLBACK_MODELS = [
    'gemini-2.0-flash-exp',
    'gemini-1.5-flash',
    'google/gemma-2-9b-it:free',
    'meta-llama/llama-3.2-3b-instruct:free',
    'llama-3.1-8b-instant',
]

# Model used for free-form rewrites with a human instruction
REPROCESS_MODEL = 'llama-3.3-70b-versatile'

GROQ_API_URL = "https://api.groq.com/openai/v1"
OPENROUTER_API_URL = "https://openrouter.ai/api/v1"

LLM_TEMPERATURE = 0.2
LLM_REPROCESS_TEMPERATURE = 0.7
LLM_MAX_OUTPUT_TOKENS = 1024
LLM_REQUEST_TIMEOUT = 30             # Seconds per model call
DEFAULT_RETRY_AFTER_SECONDS = 600    # Cooldown when a rate limit gives no hint

LANGUAGE_NAMES = {
    'es': 'Spanish',
    'en': 'English',
    'pt': 'Portuguese',
}

# =============================================================================
# Pipeline Settings
# =============================================================================

TWITTER_CHARACTER_LIMIT = 280        # Hard limit for processed content
MIN_PROSE_LENGTH = 50                # Prose budget kept next to URLs when truncating
DEFAULT_SCRAPE_COUNT = 30            # Posts requested when no valid count is given
ITEM_DELAY_MIN_SECONDS = 1.5         # Randomized pause between items
ITEM_DELAY_MAX_SECONDS = 3.0
ABORT_POLL_INTERVAL = 0.2            # Seconds between abort checks while waiting
PREVIEW_LENGTH = 200                 # Characters of text carried in progress events
PUBLISHED_LOOKBACK_DAYS = 7          # Published history used for similarity checks

# Similarity Checking
SIMILARITY_THRESHOLD = 0.5           # Jaccard ratio of key terms (0-1)
MIN_KEYWORD_LENGTH = 3               # Words must be longer than this to count
MIN_KEY_TERMS = 3                    # Fewer terms than this cannot be compared reliably

# =============================================================================
# Social Media Platform Settings
# =============================================================================

TWITTER_API_MAX_RESULTS = 100        # Twitter API max results per request
TIMELINE_PAGE_DELAY_MIN_SECONDS = 3.0
TIMELINE_PAGE_DELAY_MAX_SECONDS = 6.0
TWITTER_IMAGE_TIMEOUT = 10           # Seconds timeout for media download
BLUESKY_IMAGE_TIMEOUT = 10

PUBLISH_POLL_SECONDS = 15            # Scheduler tick interval in loop mode
DEFAULT_REPORT_LIMIT = 50


def get_model_provider(model: str) -> str:
    """Provider for a model id; unknown ids are served by Groq."""
    entry = AI_MODELS.get(model)
    return entry[0] if entry else PROVIDER_GROQ
