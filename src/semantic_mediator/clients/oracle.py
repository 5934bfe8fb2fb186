"""Async client for the external inference oracle.

The oracle is a plain text-in/text-out service. It enforces no schema;
callers are responsible for validating whatever comes back.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.settings import ModelSettings

from semantic_mediator.config import settings

logger = logging.getLogger(__name__)


ORACLE_SYSTEM_PROMPT = """\
You are a semantic conflict resolution expert. Your task is to compare and \
reconcile different data representations while preserving semantic meaning. \
Follow the output format requested in each prompt exactly.
"""


class OracleError(RuntimeError):
    """Raised when the oracle call itself fails (transport, provider, quota)."""


class InferenceOracle(Protocol):
    """Protocol for the inference oracle."""

    async def infer(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        """Send a prompt and return the raw response text."""
        ...


class PydanticAIOracle:
    """InferenceOracle backed by a pydantic-ai agent over an OpenAI-compatible gateway.

    Usage:
        oracle = PydanticAIOracle()
        text = await oracle.infer("...", temperature=0.1, max_tokens=10)
    """

    def __init__(
        self,
        *,
        model_name: str | None = None,
        base_url: str | None = None,
        api_key: str | None = None,
    ) -> None:
        self._model_name = model_name or settings.model_oracle
        model = OpenAIChatModel(
            self._model_name,
            provider=OpenAIProvider(
                base_url=base_url or settings.llm_base_url,
                api_key=api_key or settings.llm_api_key,
            ),
        )
        self._agent = Agent(
            model,
            output_type=str,
            system_prompt=ORACLE_SYSTEM_PROMPT,
        )

    async def infer(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        start_time = time.time()
        try:
            result = await self._agent.run(
                prompt,
                model_settings=ModelSettings(temperature=temperature, max_tokens=max_tokens),
            )
        except Exception as exc:
            raise OracleError(f"Oracle call failed: {exc}") from exc

        if settings.log_api_calls:
            elapsed = (time.time() - start_time) * 1000  # ms
            logger.info(
                "[ORACLE] %s (%d chars) (%.0fms)",
                self._model_name, len(prompt), elapsed,
            )

        return result.output
