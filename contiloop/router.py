"""
CONTILOOP Router — Vendor-Agnostic Model Abstraction

Routes change-generation calls through LiteLLM so the loop never knows
which vendor is backing it. Handles retries, usage tracking and
structured logging.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import litellm
from loguru import logger
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential

from contiloop.config_loader import GenerationConfig


class GenerationUnavailableError(Exception):
    """The change-generation backend could not be reached or produced nothing usable."""
    pass


# ---------------------------------------------------------------------------
# Usage Tracking
# ---------------------------------------------------------------------------

@dataclass
class UsageRecord:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    call_count: int = 0

    def record(self, response: Any) -> None:
        """Accumulate token usage from a LiteLLM response."""
        usage = getattr(response, "usage", None)
        if usage:
            self.prompt_tokens += getattr(usage, "prompt_tokens", 0) or 0
            self.completion_tokens += getattr(usage, "completion_tokens", 0) or 0
            self.total_tokens += getattr(usage, "total_tokens", 0) or 0
        self.call_count += 1

    def summary(self) -> dict:
        return {
            "total_tokens": self.total_tokens,
            "call_count": self.call_count,
        }


# ---------------------------------------------------------------------------
# Model capability helpers
# ---------------------------------------------------------------------------

def _is_gpt5_model(model: str) -> bool:
    """GPT-5 family models have restricted parameter support."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith("gpt-5")


def _is_o_series_model(model: str) -> bool:
    """OpenAI o-series reasoning models don't support temperature."""
    normalized = model.lower().replace("openai/", "")
    return normalized.startswith(("o1", "o3", "o4"))


def _build_kwargs(
    model: str,
    messages: list[dict[str, Any]],
    temperature: float,
    max_tokens: int,
    tools: list[dict] | None,
) -> dict[str, Any]:
    """
    Build LiteLLM kwargs with per-model param filtering.
    """
    kwargs: dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
    }

    if not _is_gpt5_model(model) and not _is_o_series_model(model):
        kwargs["temperature"] = temperature

    if tools:
        kwargs["tools"] = tools

    return kwargs


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class RouterResponse(BaseModel):
    content: str
    model: str
    tool_calls: list[Any] = []
    tokens_used: int = 0
    latency_ms: int = 0


class Router:
    """
    Agents call `router.complete(messages)`; the router resolves the
    configured model, calls it and returns a structured response.
    """

    def __init__(self, config: GenerationConfig):
        self.config = config
        self.usage = UsageRecord()
        litellm.suppress_debug_info = True

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(min=1, max=10))
    def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.2,
        max_tokens: int | None = None,
        tools: list[dict] | None = None,
    ) -> RouterResponse:
        """Send a completion request through LiteLLM.

        Args:
            messages: Standard chat messages, including tool results.
            temperature: Sampling temperature. Dropped automatically for
                models that don't support it.
            max_tokens: Max response tokens. Defaults to the configured value.
            tools: Optional OpenAI-style tool schemas.

        Returns:
            RouterResponse with content, any tool calls, and usage.
        """
        model = self.config.model
        start = time.monotonic()

        logger.debug(f"[ROUTER] → {model} ({len(messages)} messages)")

        kwargs = _build_kwargs(
            model, messages, temperature, max_tokens or self.config.max_tokens, tools
        )
        response = litellm.completion(**kwargs)
        elapsed_ms = int((time.monotonic() - start) * 1000)

        self.usage.record(response)
        message = response.choices[0].message

        logger.debug(
            f"[ROUTER] complete — {self.usage.total_tokens} tokens total, {elapsed_ms}ms"
        )

        return RouterResponse(
            content=message.content or "",
            model=model,
            tool_calls=list(getattr(message, "tool_calls", None) or []),
            tokens_used=getattr(getattr(response, "usage", None), "total_tokens", 0) or 0,
            latency_ms=elapsed_ms,
        )
