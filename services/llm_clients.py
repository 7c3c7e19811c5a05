"""
LLM Provider Clients

One call function per backend. Gemini is called through Google's
``google.generativeai`` SDK; Groq and OpenRouter expose OpenAI-compatible
chat completion endpoints and are called with ``requests``.

Every client raises ProviderRateLimitError when the backend answered with a
rate limit, and AIServiceError for any other failure.
"""

from typing import Optional

import google.generativeai as genai
import requests

from config import settings
from utils.exceptions import AIServiceError, ProviderRateLimitError
from utils.logger import get_logger

logger = get_logger(__name__)


def is_rate_limit_error(error: BaseException) -> bool:
    """Whether an error from any backend means "rate limited"."""
    if isinstance(error, ProviderRateLimitError):
        return True
    message = str(error)
    return '429' in message or 'rate_limit' in message or 'rate limit' in message.lower()


def _retry_after_header(response: requests.Response) -> Optional[float]:
    value = response.headers.get('Retry-After')
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
        error = body.get('error')
        if isinstance(error, dict):
            return error.get('message') or str(error)
        return str(error or body)
    except ValueError:
        return response.text[:500]


class LLMClient:
    """Dispatches a prompt to the backend that serves a given model."""

    def __init__(self, session: Optional[requests.Session] = None,
                 timeout: float = settings.LLM_REQUEST_TIMEOUT):
        self.session = session or requests.Session()
        self.timeout = timeout
        self._gemini_configured = False

    def complete(self, model: str, prompt: str, system_instruction: Optional[str] = None,
                 temperature: float = settings.LLM_TEMPERATURE,
                 max_tokens: int = settings.LLM_MAX_OUTPUT_TOKENS,
                 json_mode: bool = True) -> str:
        """
        Run one prompt against a model.

        Args:
            model: Model id from settings.AI_MODELS (unknown ids go to Groq).
            prompt: The user prompt.
            system_instruction: Optional system message.
            temperature: Sampling temperature.
            max_tokens: Output token cap.
            json_mode: Ask for a JSON object where the backend supports it.

        Returns:
            str: The raw text answered by the model.

        Raises:
            ProviderRateLimitError: The backend is rate limiting us.
            AIServiceError: Any other failure.
        """
        provider = settings.get_model_provider(model)
        try:
            if provider == settings.PROVIDER_GEMINI:
                return self._call_gemini(model, prompt, system_instruction, temperature, max_tokens, json_mode)
            if provider == settings.PROVIDER_OPENROUTER:
                return self._call_openai_compatible(
                    settings.OPENROUTER_API_URL, settings.OPENROUTER_API_KEY, model, prompt,
                    system_instruction, temperature, max_tokens, json_mode=False,
                    extra_headers={"X-Title": "Tweet Curator"},
                )
            return self._call_openai_compatible(
                settings.GROQ_API_URL, settings.GROQ_API_KEY, model, prompt,
                system_instruction, temperature, max_tokens, json_mode=json_mode,
            )
        except (ProviderRateLimitError, AIServiceError):
            raise
        except Exception as e:
            if is_rate_limit_error(e):
                raise ProviderRateLimitError(str(e)) from e
            raise AIServiceError(f"{provider} call failed for {model}: {e}") from e

    def _call_gemini(self, model: str, prompt: str, system_instruction: Optional[str],
                     temperature: float, max_tokens: int, json_mode: bool) -> str:
        if not settings.GOOGLE_AI_API_KEY:
            raise AIServiceError("Missing required GOOGLE_AI_API_KEY")
        if not self._gemini_configured:
            genai.configure(api_key=settings.GOOGLE_AI_API_KEY)
            self._gemini_configured = True

        generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if json_mode:
            generation_config["response_mime_type"] = "application/json"

        gemini = genai.GenerativeModel(model_name=model, system_instruction=system_instruction)
        response = gemini.generate_content(prompt, generation_config=generation_config)
        text = response.text
        if not text:
            raise AIServiceError(f"Empty response from {model}")
        return text

    def _call_openai_compatible(self, api_url: str, api_key: Optional[str], model: str, prompt: str,
                                system_instruction: Optional[str], temperature: float, max_tokens: int,
                                json_mode: bool, extra_headers: Optional[dict] = None) -> str:
        if not api_key:
            raise AIServiceError(f"No API key configured for {api_url}")

        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if extra_headers:
            headers.update(extra_headers)

        response = self.session.post(f"{api_url}/chat/completions", json=payload,
                                     headers=headers, timeout=self.timeout)

        if response.status_code == 429:
            message = _error_message(response)
            raise ProviderRateLimitError(f"429 from {model}: {message}",
                                         retry_after=_retry_after_header(response))
        if response.status_code >= 400:
            message = _error_message(response)
            if is_rate_limit_error(AIServiceError(message)):
                raise ProviderRateLimitError(message)
            raise AIServiceError(f"HTTP {response.status_code} from {model}: {message}")

        data = response.json()
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AIServiceError(f"Unexpected response shape from {model}") from e
        if not content:
            raise AIServiceError(f"Empty response from {model}")
        return content
