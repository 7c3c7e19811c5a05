"""
Runtime Configuration

The operator-editable settings of the curation dashboard. Unlike config.settings
(environment, read once at startup) this configuration lives in the store as a
single JSON document and is re-read at the start of every scrape run.
"""

from dataclasses import dataclass, field, fields, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from config import settings
from utils.exceptions import ConfigurationError

CONFIG_KEY = "app_config"

DEFAULT_SYSTEM_PROMPT = """You are a senior AI and cutting-edge technology news editor. Evaluate tweets and create professional journalistic versions.

=== CRITICAL RULES ===
1. NEVER INVENT information - use ONLY facts explicitly stated in the tweet
2. Do NOT add model names, versions, numbers, dates, or claims not in the original
3. If the tweet is vague, set PARAPHRASE = null and RELEVANCE < 7
4. NEVER DESCRIBE the tweet - generate NEWS or null, nothing else
5. Personal musings, opinions without tech substance = RELEVANCE 1-3, PARAPHRASE = null

=== TWEET TO ANALYZE ===
"{tweet_content}"

=== STEP 1: RELEVANCE SCORING (1-10) ===

TIER 1 (Score 9-10) - BREAKING NEWS:
- Model releases from major labs (OpenAI, Anthropic, Google, Meta, xAI, DeepSeek,
  Alibaba, Mistral, NVIDIA, Apple, Stability AI, Runway), any new version
- Important arXiv papers from major labs
- New SOTA: LMArena, SWE-bench, FrontierMath, GPQA, Chatbot Arena
- Open weights on Hugging Face from major labs

TIER 2 (Score 7-8):
- Technical papers (arXiv, NeurIPS, ICML, ICLR, CVPR)
- Dev tools, agent platforms, MCP, agentic workflows
- Technical concepts: reasoning, MoE, test-time compute, RAG, fine-tuning
- Video/image generation tools

TIER 3 (Score 4-6):
- Expert opinions, tutorials, funding news

TIER 4 (Score 1-3) - REJECT:
- Spam, memes, off-topic, empty content

=== STEP 2: BREAKING NEWS DETECTION ===
IS_BREAKING_NEWS=true if:
- Model + version (GPT-5, Claude 4, Gemini 3, Llama 4...)
- Phrases: "just launched", "now available", "releasing", "announcing"
- "beats", "outperforms", "new SOTA", "state of the art"
- "paper released", "weights available", "now on Hugging Face"

If IS_BREAKING_NEWS=true -> RELEVANCE must be >= 9

=== STEP 3: CLASSIFICATION ===
- IS_PERSONAL=true: Author talks about THEIR OWN work/project
- IS_QUOTABLE_PROJECT=true: Personal BUT innovative, worth sharing with credit

=== STEP 4: CONTENT GENERATION ===
A) RELEVANCE >= 7 and IS_PERSONAL=false -> Generate PARAPHRASE
B) RELEVANCE >= 7 and IS_QUOTABLE_PROJECT=true -> Generate QUOTE: "@user presents [project]: [description]. [URL]"
C) RELEVANCE < 7 -> Set PARAPHRASE and QUOTE to null

RULES FOR PARAPHRASE/QUOTE:
- Write in {target_language} (MANDATORY)
- Use 200-{max_chars} characters (maximize space)
- Include ONLY data from original tweet
- Preserve URLs at the end
- NO emojis, NO hashtags
- Professional journalistic tone

=== JSON RESPONSE FORMAT ===
{
  "RELEVANCE": <1-10>,
  "IS_PERSONAL": <true/false>,
  "IS_QUOTABLE_PROJECT": <true/false>,
  "IS_BREAKING_NEWS": <true/false>,
  "AUTHOR_USERNAME": "<@username or null>",
  "TRANSLATION": "<literal translation or null>",
  "PARAPHRASE": "<news 200-280 chars or null>",
  "QUOTE": "<quote citing author or null>",
  "SUMMARY": "<one line summary or null>"
}"""


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


@dataclass
class AppConfig:
    """Operator settings consumed by the pipeline, the classifier and the scheduler."""
    scrape_interval_hours: int = 4
    publish_interval_minutes: int = 30
    tweets_per_scrape: int = settings.DEFAULT_SCRAPE_COUNT
    max_tweet_age_days: float = 2
    auto_delete_after_days: float = 7
    check_similar_content: bool = True
    keywords: List[str] = field(default_factory=list)
    min_relevance_score: float = 7
    target_language: str = 'es'
    auto_publish_enabled: bool = False
    auto_publish_min_score: float = 9
    auto_approve_enabled: bool = False
    next_publish_time: Optional[str] = None
    ai_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    rejected_patterns: List[str] = field(default_factory=list)
    ai_model: str = settings.DEFAULT_AI_MODEL
    scraping_enabled: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AppConfig":
        """
        Build a config from a stored document.

        Accepts camelCase (stored form) or snake_case keys; unknown keys are
        ignored and missing keys take their defaults.
        """
        if not data:
            return cls()
        values = {}
        for f in fields(cls):
            if f.name in data:
                values[f.name] = data[f.name]
            elif _camel(f.name) in data:
                values[f.name] = data[_camel(f.name)]
        # Falsy stored values fall back to defaults, as the dashboard always did
        for name in ('ai_model', 'max_tweet_age_days', 'auto_delete_after_days',
                     'auto_publish_min_score', 'publish_interval_minutes'):
            if name in values and not values[name]:
                del values[name]
        if values.get('rejected_patterns') is None:
            values.pop('rejected_patterns', None)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        """Stored (camelCase) form of the config."""
        return {_camel(k): v for k, v in asdict(self).items()}

    @property
    def next_publish_at(self) -> Optional[datetime]:
        if not self.next_publish_time:
            return None
        try:
            return datetime.fromisoformat(self.next_publish_time.replace('Z', '+00:00'))
        except ValueError:
            return None

    def validate(self) -> "AppConfig":
        """
        Check the settings a scrape run cannot proceed without.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        errors = []
        if not self.ai_system_prompt:
            errors.append("aiSystemPrompt is required")
        elif '{tweet_content}' not in self.ai_system_prompt:
            errors.append("aiSystemPrompt must contain the {tweet_content} placeholder")
        if not self.target_language:
            errors.append("targetLanguage is required")
        for name in ('min_relevance_score', 'auto_publish_min_score'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not 0 <= value <= 10:
                errors.append(f"{_camel(name)} must be between 0 and 10, got {value!r}")
        for name in ('max_tweet_age_days', 'auto_delete_after_days', 'publish_interval_minutes'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"{_camel(name)} must be positive, got {value!r}")
        if not self.ai_model:
            errors.append("aiModel is required")

        if errors:
            raise ConfigurationError("Invalid runtime configuration:\n" + "\n".join(f"  - {e}" for e in errors))
        return self
