"""Generation call boundary.

The pipeline only ever sees ``GenerateFn``: a callable taking the prompt and
a timeout in seconds and returning the raw generated text, raising
``GenerationError`` with a typed kind on failure. ``LLMGenerationClient`` is
the default implementation on top of LiteLLM; tests pass scripted callables.
"""

import dataclasses
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable, Optional

import litellm

from errors import ConfigurationError, GenerationError, GenerationErrorKind
from llm_config import (
    API_KEY_ENV,
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    GENERATION_TEMPERATURE,
    REPAIR_TEMPERATURE,
    is_thinking_model,
    max_tokens_for_days,
)
from observability import setup_structured_logger

logger = setup_structured_logger("mealplan.generation")

GenerateFn = Callable[[str, float], str]

SYSTEM_PROMPT = (
    "You are a registered dietitian and meal planning expert. "
    "Respond with a single valid JSON object and nothing else."
)

# Order matters: subclasses first (ContextWindowExceededError is a BadRequestError,
# Timeout is an APIConnectionError in some LiteLLM versions)
_EXCEPTION_KINDS = (
    (litellm.exceptions.Timeout, GenerationErrorKind.TIMEOUT),
    (litellm.exceptions.RateLimitError, GenerationErrorKind.RATE_LIMIT),
    (litellm.exceptions.AuthenticationError, GenerationErrorKind.AUTH),
    (litellm.exceptions.PermissionDeniedError, GenerationErrorKind.AUTH),
    (litellm.exceptions.ContextWindowExceededError, GenerationErrorKind.BAD_REQUEST),
    (litellm.exceptions.BadRequestError, GenerationErrorKind.BAD_REQUEST),
    (litellm.exceptions.NotFoundError, GenerationErrorKind.BAD_REQUEST),
    (litellm.exceptions.ServiceUnavailableError, GenerationErrorKind.SERVER),
    (litellm.exceptions.InternalServerError, GenerationErrorKind.SERVER),
    (litellm.exceptions.APIConnectionError, GenerationErrorKind.CONNECTION),
)


def classify_status_code(status_code: Optional[int]) -> GenerationErrorKind:
    """Map an HTTP status code to a generation error kind."""
    if status_code == 429:
        return GenerationErrorKind.RATE_LIMIT
    if status_code in (401, 403):
        return GenerationErrorKind.AUTH
    if status_code in (408, 504):
        return GenerationErrorKind.TIMEOUT
    if status_code is not None and status_code >= 500:
        return GenerationErrorKind.SERVER
    if status_code is not None and 400 <= status_code < 500:
        return GenerationErrorKind.BAD_REQUEST
    return GenerationErrorKind.CONNECTION


def classify_exception(exc: BaseException) -> GenerationError:
    """Turn a LiteLLM (or transport) exception into a typed GenerationError."""
    if isinstance(exc, GenerationError):
        return exc
    status_code = getattr(exc, "status_code", None)
    if not isinstance(status_code, int):
        status_code = None
    for exc_type, kind in _EXCEPTION_KINDS:
        if isinstance(exc, exc_type):
            return GenerationError(str(exc), kind, status_code=status_code)
    if isinstance(exc, TimeoutError):
        return GenerationError(str(exc), GenerationErrorKind.TIMEOUT)
    if isinstance(exc, ConnectionError):
        return GenerationError(str(exc), GenerationErrorKind.CONNECTION)
    return GenerationError(str(exc), classify_status_code(status_code), status_code=status_code)


def _response_text(response: Any) -> str:
    """Extract message content from a completion response.

    Raises:
        GenerationError: EMPTY_RESPONSE when there is no usable content
    """
    choices = getattr(response, "choices", None) if response is not None else None
    if not choices:
        raise GenerationError("Model returned no choices", GenerationErrorKind.EMPTY_RESPONSE)
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if not isinstance(content, str) or not content.strip():
        raise GenerationError("Model returned empty content", GenerationErrorKind.EMPTY_RESPONSE)
    return content


@dataclass(frozen=True)
class LLMGenerationClient:
    """LiteLLM-backed GenerateFn.

    Instances are immutable; ``for_days`` and ``for_repair`` return adjusted
    copies so one configured client can serve every call of a request.
    """

    model: str
    api_key: str
    api_base: str = DEFAULT_BASE_URL
    temperature: float = GENERATION_TEMPERATURE
    max_tokens: int = max_tokens_for_days(1)
    system_prompt: str = SYSTEM_PROMPT

    @classmethod
    def from_env(cls) -> "LLMGenerationClient":
        """Build a client from environment variables.

        Raises:
            ConfigurationError: If no API key is configured
        """
        api_key = os.getenv(API_KEY_ENV, "").strip()
        if not api_key:
            raise ConfigurationError(f"{API_KEY_ENV} is not set; cannot call the generation API")
        return cls(
            model=os.getenv("MEALPLAN_MODEL", DEFAULT_MODEL),
            api_key=api_key,
            api_base=os.getenv("OPENAI_API_BASE", DEFAULT_BASE_URL),
        )

    def for_days(self, days: int) -> "LLMGenerationClient":
        return dataclasses.replace(self, max_tokens=max_tokens_for_days(days))

    def for_repair(self) -> "LLMGenerationClient":
        return dataclasses.replace(self, temperature=REPAIR_TEMPERATURE)

    def __call__(self, prompt: str, timeout: float) -> str:
        """Run one completion.

        Args:
            prompt: Full user prompt
            timeout: Seconds allowed for this call (derived from the deadline)

        Returns:
            Raw generated text

        Raises:
            GenerationError: Typed failure of the call
        """
        if timeout <= 0:
            raise GenerationError("No time left for generation call", GenerationErrorKind.TIMEOUT)

        kwargs = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
            "api_base": self.api_base,
            "api_key": self.api_key,
            "max_tokens": self.max_tokens,
            "timeout": timeout,
            "drop_params": True,
        }
        if not is_thinking_model(self.model):
            kwargs["temperature"] = self.temperature

        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            error = classify_exception(exc)
            print(
                f"   ❌ litellm.completion failed ({error.error_kind.value}): {exc}",
                file=sys.stderr,
            )
            logger.warning(
                "Generation call failed",
                extra={
                    "extra_fields": {
                        "model": self.model,
                        "error_kind": error.error_kind.value,
                        "status_code": error.status_code,
                        "timeout_s": round(timeout, 1),
                    }
                },
            )
            raise error from exc

        text = _response_text(response)
        logger.info(
            "Generation call completed",
            extra={
                "extra_fields": {
                    "model": self.model,
                    "chars": len(text),
                    "max_tokens": self.max_tokens,
                }
            },
        )
        return text


def for_days(generate: GenerateFn, days: int) -> GenerateFn:
    """Adjust the token cap when the callable supports it."""
    if isinstance(generate, LLMGenerationClient):
        return generate.for_days(days)
    return generate


def for_repair(generate: GenerateFn) -> GenerateFn:
    """Switch to the repair temperature when the callable supports it."""
    if isinstance(generate, LLMGenerationClient):
        return generate.for_repair()
    return generate
