"""
Decision LLM Client - one-line trade verdicts from an OpenAI-compatible model.

xAI, DeepSeek and OpenAI all expose the chat completions API, so a single
``openai.AsyncOpenAI`` client pointed at the provider's base URL covers all
three. Calls run at temperature 0 with a caller-supplied seed.
"""

import logging
import os
import secrets
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from core.exceptions import RemoteCallError

logger = logging.getLogger(__name__)

# ─── Providers ─────────────────────────────────────────────────────────────

PROVIDER_BASE_URLS = {
    "xai": "https://api.x.ai/v1",
    "deepseek": "https://api.deepseek.com",
    "openai": "https://api.openai.com/v1",
}

PROVIDER_DEFAULT_MODELS = {
    "xai": "grok-beta",
    "deepseek": "deepseek-chat",
    "openai": "gpt-4o-mini",
}


def random_seed() -> int:
    """Non-negative int32 seed drawn from 32 random bytes."""
    random_bytes = secrets.token_bytes(32)
    seed = int.from_bytes(random_bytes[:4], "little", signed=True) % (2**31 - 1)
    return abs(seed)


# ─── Decision Client ───────────────────────────────────────────────────────

class DecisionClient:
    """
    Chat-completions client returning the first choice's text.

    Errors from the SDK (transport, auth, rate limit) and empty answers are
    raised as RemoteCallError so callers handle them like any other remote
    failure.
    """

    def __init__(
        self,
        provider: str = "xai",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
    ):
        if provider not in PROVIDER_BASE_URLS:
            raise ValueError(f"Unknown provider: {provider}")
        self.provider = provider
        self.model = model or PROVIDER_DEFAULT_MODELS[provider]
        self.base_url = base_url or PROVIDER_BASE_URLS[provider]
        self.timeout_s = timeout_s
        self.client = AsyncOpenAI(
            api_key=api_key if api_key is not None else os.getenv("LLM_API_KEY", ""),
            base_url=self.base_url,
            timeout=timeout_s,
        )
        logger.info(f"Initialized DecisionClient (provider={provider}, model={self.model})")

    async def generate_text(self, system_context: str, user_prompt: str, seed: int) -> str:
        source = f"{self.provider}:{self.model}"
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_context},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0,
                seed=seed,
                stream=False,
            )
        except OpenAIError as e:
            logger.error(f"LLM call to {source} failed: {e}")
            raise RemoteCallError(source, str(e), e) from e

        if not response.choices or not response.choices[0].message.content:
            raise RemoteCallError(source, "empty completion")
        content = response.choices[0].message.content.strip()
        logger.info(f"LLM verdict from {source}: {content!r}")
        return content


# ─── Mock Client for Testing ───────────────────────────────────────────────

class MockDecisionClient:
    """Returns pre-configured verdicts in order, repeating the last one."""

    def __init__(self, verdicts: Optional[list[str]] = None, error: Optional[Exception] = None):
        self.verdicts = list(verdicts or ["HODL"])
        self.error = error
        self.call_count = 0
        self.last_prompt: Optional[str] = None
        self.last_seed: Optional[int] = None

    async def generate_text(self, system_context: str, user_prompt: str, seed: int) -> str:
        self.call_count += 1
        self.last_prompt = user_prompt
        self.last_seed = seed
        if self.error is not None:
            raise self.error
        index = min(self.call_count - 1, len(self.verdicts) - 1)
        return self.verdicts[index]


# ─── Factory ───────────────────────────────────────────────────────────────

def create_decision_client(
    provider: str,
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    timeout_s: float = 30.0,
    mock: bool = False,
    **kwargs
):
    """
    Factory for creating decision clients.

    Args:
        provider: "xai", "deepseek" or "openai"
        model: Model identifier (provider default when omitted)
        base_url: Override of the provider's API base URL
        timeout_s: Request timeout
        mock: Return a MockDecisionClient that always answers HODL

    Returns:
        DecisionClient or MockDecisionClient
    """
    if mock:
        return MockDecisionClient()
    return DecisionClient(
        provider=provider,
        model=model,
        base_url=base_url,
        timeout_s=timeout_s,
        **kwargs
    )
