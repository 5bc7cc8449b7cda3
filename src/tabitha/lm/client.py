"""LiteLLM client wrapper: API key validation, async completion, and the
opaque prompt RPC the pipeline talks to.

Every language-model call in the router, reranker, ask action and response
generator goes through :class:`LanguageModel`. It never raises: failures come
back as ``LMResponse(ok=False, error=...)`` so callers can fall back to their
deterministic paths.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass

import litellm

from tabitha.errors import ErrorKind
from tabitha.timeutil import Clock

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

LOGGER = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "google": "GOOGLE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider, "OPENAI_API_KEY")

    if env_var is None:
        return  # No key required (e.g. ollama)

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


async def acomplete(
    model: str,
    messages: list[dict],
    max_tokens: int = 512,
    temperature: float = 0.0,
    num_retries: int = 2,
) -> str:
    """Call litellm.acompletion() with retry/backoff. Returns content string.

    Raises:
        litellm.exceptions.APIError: On persistent API failure after retries.
    """
    response = await litellm.acompletion(
        model=model,
        messages=messages,
        max_tokens=max_tokens,
        temperature=temperature,
        num_retries=num_retries,
    )
    return response.choices[0].message.content or ""


# ------------------------------------------------------------------
# Opaque prompt RPC
# ------------------------------------------------------------------


@dataclass
class LMResponse:
    """Result of one prompt: ``{ok, text}`` plus an error kind on failure."""

    ok: bool
    text: str = ""
    error: str | None = None


class LanguageModel:
    """Prompt-in, text-out runtime with a cached availability check.

    Args:
        model: LiteLLM model string.
        timeout_s: Default per-call upper bound.
        max_tokens: Default output budget.
        num_retries: LiteLLM retry count.
        availability_ttl_s: Seconds an availability answer is reused.
        clock: Monotonic seconds source (injectable for tests).
    """

    def __init__(
        self,
        model: str,
        *,
        timeout_s: float = 60.0,
        max_tokens: int = 512,
        num_retries: int = 2,
        availability_ttl_s: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.model = model
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens
        self.num_retries = num_retries
        self.availability_ttl_s = availability_ttl_s
        self._clock = clock
        self._available: bool | None = None
        self._checked_at: float = 0.0

    async def available(self) -> bool:
        """Return whether the runtime can take prompts; cached for the TTL."""
        now = self._clock()
        if self._available is not None and now - self._checked_at < self.availability_ttl_s:
            return self._available
        try:
            validate_api_key(self.model)
            self._available = True
        except EnvironmentError as exc:
            LOGGER.info("language model unavailable: %s", exc)
            self._available = False
        self._checked_at = now
        return self._available

    def invalidate(self) -> None:
        """Forget the cached availability answer."""
        self._available = None

    async def run(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int | None = None,
        timeout_s: float | None = None,
    ) -> LMResponse:
        """Submit *prompt* and return the model's text, never raising."""
        messages: list[dict] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        try:
            text = await asyncio.wait_for(
                acomplete(
                    self.model,
                    messages,
                    max_tokens=max_tokens or self.max_tokens,
                    num_retries=self.num_retries,
                ),
                timeout=timeout_s if timeout_s is not None else self.timeout_s,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("language model call timed out after %ss", timeout_s or self.timeout_s)
            return LMResponse(ok=False, error=ErrorKind.TIMEOUT.value)
        except Exception as exc:  # litellm raises a wide family of provider errors
            LOGGER.warning("language model call failed: %s", exc)
            return LMResponse(ok=False, error=ErrorKind.OFFSCREEN_UNAVAILABLE.value)
        text = text.strip()
        if not text:
            return LMResponse(ok=False, error=ErrorKind.NO_RESPONSE.value)
        return LMResponse(ok=True, text=text)
