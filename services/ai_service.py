"""
AI Service Module

This module handles the AI operations of the curator: scoring a post's
relevance, deciding whether it should be rejected, and producing a rewritten
version in the target language. Models are called through the LLM clients
with rate-limit-aware failover managed by the ProviderRegistry.
"""

import json
import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from config import settings
from config.app_config import AppConfig
from services.llm_clients import LLMClient, is_rate_limit_error
from services.provider_registry import ProviderRegistry
from utils.exceptions import ClassificationError, ProviderRateLimitError
from utils.helpers import smart_truncate
from utils.logger import get_logger

logger = get_logger(__name__)

NEUTRAL_RELEVANCE = 5

# Canonical field -> names the model may answer with (English prompt, legacy Spanish prompt)
FIELD_ALIASES = {
    'relevance': ('RELEVANCE', 'RELEVANCIA'),
    'is_personal': ('IS_PERSONAL', 'ES_PERSONAL'),
    'is_citeable': ('IS_QUOTABLE_PROJECT', 'ES_PROYECTO_CITEABLE'),
    'is_breaking_news': ('IS_BREAKING_NEWS', 'ES_BREAKING_NEWS'),
    'author_username': ('AUTHOR_USERNAME', 'AUTOR_USERNAME'),
    'translation': ('TRANSLATION', 'TRADUCCION'),
    'paraphrase': ('PARAPHRASE', 'PARAFRASIS'),
    'citation': ('QUOTE', 'CITA'),
    'summary': ('SUMMARY', 'RESUMEN'),
}

BOOLEAN_FIELDS = ('is_personal', 'is_citeable', 'is_breaking_news')

CODE_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*|\s*```$', re.IGNORECASE)

REPROCESS_DEFAULT_INSTRUCTION = "Paraphrase the text keeping the key information"


@dataclass
class ClassificationResult:
    """Outcome of classifying one post."""
    relevance: float
    is_personal: bool = False
    is_citeable: bool = False
    is_breaking_news: bool = False
    author_username: Optional[str] = None
    translation: Optional[str] = None
    paraphrase: Optional[str] = None
    citation: Optional[str] = None
    summary: Optional[str] = None
    should_reject: bool = False
    rejection_reason: Optional[str] = None
    model_used: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def language_name(code: str) -> str:
    """Display name of a target language code, or the code itself."""
    return settings.LANGUAGE_NAMES.get(code, code)


def build_prompt(template: str, text: str, target_language: str) -> str:
    """Substitute the post and language placeholders of a prompt template."""
    name = language_name(target_language)
    return (template
            .replace('{tweet_content}', text)
            .replace('{target_language}', name)
            .replace('{idioma_config}', name)
            .replace('{max_chars}', str(settings.TWITTER_CHARACTER_LIMIT)))


def system_instruction(target_language: str) -> str:
    return (f"You are an assistant that evaluates tweets. Write every generated text in "
            f"{language_name(target_language)}. Respond ONLY with a valid JSON object, "
            f"no extra text.")


def strip_code_fences(text: str) -> str:
    return CODE_FENCE_PATTERN.sub('', text.strip()).strip()


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', 'yes', '1', 'si', 'sí')
    return bool(value)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ('null', 'none'):
        return None
    return text


def normalize_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map a model answer onto the canonical field names.

    Whichever of the known names is present wins, in FIELD_ALIASES order.
    Missing fields get neutral defaults: relevance 5, flags false, texts None.
    """
    canonical = {}
    for field_name, aliases in FIELD_ALIASES.items():
        value = next((data[a] for a in aliases if a in data), None)
        if field_name == 'relevance':
            try:
                canonical[field_name] = float(value) if value is not None else NEUTRAL_RELEVANCE
            except (TypeError, ValueError):
                canonical[field_name] = NEUTRAL_RELEVANCE
        elif field_name in BOOLEAN_FIELDS:
            canonical[field_name] = _as_bool(value) if value is not None else False
        else:
            canonical[field_name] = _as_text(value)

    if float(canonical['relevance']).is_integer():
        canonical['relevance'] = int(canonical['relevance'])
    return canonical


class ContentClassifier:
    """Scores and rewrites posts with the configured model and its fallbacks."""

    def __init__(self, registry: Optional[ProviderRegistry] = None,
                 client: Optional[LLMClient] = None,
                 fallback_models: Optional[List[str]] = None):
        """
        Args:
            registry: Provider cooldown state shared by every call.
            client: Backend dispatcher used to run the prompts.
            fallback_models: Models tried after the preferred one, in order.
        """
        self.registry = registry or ProviderRegistry()
        self.client = client or LLMClient()
        self.fallback_models = list(fallback_models if fallback_models is not None else settings.FALLBACK_MODELS)

    def match_rejected_pattern(self, text: str, patterns: List[str]) -> Optional[str]:
        """Return the first configured pattern found in the text (case-insensitive)."""
        lowered = text.lower()
        for pattern in patterns or []:
            if pattern and pattern.strip() and pattern.lower() in lowered:
                return pattern
        return None

    def _call_with_fallback(self, preferred: str, prompt: str, instruction: Optional[str],
                            temperature: float, json_mode: bool):
        """
        Run a prompt on the first model that answers.

        Returns:
            tuple: (raw answer, model id)

        Raises:
            ClassificationError: When every candidate model failed or is cooling down.
        """
        last_error: Optional[BaseException] = None
        candidates = self.registry.candidate_models(preferred, self.fallback_models)
        while candidates:
            model = self.registry.pick_model(candidates[0], candidates[1:])
            if model is None:
                break
            candidates = candidates[candidates.index(model) + 1:]
            provider = settings.get_model_provider(model)
            try:
                answer = self.client.complete(model, prompt, system_instruction=instruction,
                                              temperature=temperature, json_mode=json_mode)
                if model != preferred:
                    logger.info(f"Answered by fallback model {model}")
                return answer, model
            except Exception as e:
                last_error = e
                if is_rate_limit_error(e):
                    retry_after = e.retry_after if isinstance(e, ProviderRateLimitError) else None
                    self.registry.mark_rate_limited(provider, retry_after, message=str(e))
                else:
                    logger.error(f"Model {model} failed: {e}")

        logger.warning(f"No model answered, provider status: {self.registry.status()}")
        raise ClassificationError("All AI models failed or are rate limited", last_error=last_error)

    def parse_response(self, raw: str) -> Optional[Dict[str, Any]]:
        """Parse a JSON answer; None when the answer is not a JSON object."""
        try:
            data = json.loads(strip_code_fences(raw))
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return normalize_fields(data)

    def classify(self, text: str, config: AppConfig) -> ClassificationResult:
        """
        Decide whether a post is worth publishing and rewrite it.

        Args:
            text: Post text, including any quoted-post annotation.
            config: Runtime configuration (prompt, model, thresholds, patterns).

        Returns:
            ClassificationResult: The decision. ``paraphrase`` holds the rewritten text, or
            None when the model produced none and the caller keeps the post text.

        Raises:
            ClassificationError: When no model could be reached.
        """
        pattern = self.match_rejected_pattern(text, config.rejected_patterns)
        if pattern:
            logger.info(f"Rejected by pattern '{pattern}' without calling a model")
            return ClassificationResult(
                relevance=0,
                should_reject=True,
                rejection_reason=f"matched pattern: {pattern}",
            )

        prompt = build_prompt(config.ai_system_prompt, text, config.target_language)
        raw, model_used = self._call_with_fallback(
            config.ai_model, prompt, system_instruction(config.target_language),
            settings.LLM_TEMPERATURE, json_mode=True,
        )

        fields = self.parse_response(raw)
        if fields is None:
            logger.warning(f"Unparseable answer from {model_used}, using neutral result")
            return ClassificationResult(relevance=NEUTRAL_RELEVANCE, model_used=model_used)

        result = ClassificationResult(model_used=model_used, **fields)

        if result.relevance < config.min_relevance_score:
            result.should_reject = True
            result.rejection_reason = f"Insufficient relevance: {result.relevance}/{config.min_relevance_score}"
        elif result.is_personal and not result.is_citeable:
            result.should_reject = True
            result.rejection_reason = "Personal content without quotable value"

        if result.is_citeable and result.citation:
            result.paraphrase = result.citation
        else:
            result.paraphrase = result.paraphrase or result.translation

        return result

    def reprocess(self, original_text: str, instruction: Optional[str] = None,
                  target_language: str = 'es', model: Optional[str] = None) -> str:
        """
        Rewrite a post following a human instruction.

        Args:
            original_text: The source post.
            instruction: What to do with it; defaults to a plain paraphrase.
            target_language: Output language code.
            model: Preferred model, defaults to settings.REPROCESS_MODEL.

        Returns:
            str: The rewritten text, at most 280 characters.

        Raises:
            ClassificationError: When no model could be reached.
        """
        instruction = instruction or REPROCESS_DEFAULT_INSTRUCTION
        limit = settings.TWITTER_CHARACTER_LIMIT
        prompt = (f"Rewrite the following tweet in {language_name(target_language)}.\n\n"
                  f"Instruction: {instruction}\n\n"
                  f"Original tweet:\n\"{original_text}\"\n\n"
                  f"Rules: at most {limit} characters, keep every URL, no hashtags, no emojis. "
                  f"Answer with the rewritten text only.")

        raw, model_used = self._call_with_fallback(
            model or settings.REPROCESS_MODEL, prompt, None,
            settings.LLM_REPROCESS_TEMPERATURE, json_mode=False,
        )
        text = strip_code_fences(raw).strip().strip('"').strip()
        if not text:
            logger.warning(f"Empty rewrite from {model_used}, keeping the original text")
            text = original_text
        return smart_truncate(text, limit, settings.MIN_PROSE_LENGTH)
