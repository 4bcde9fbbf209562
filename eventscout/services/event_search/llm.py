"""Structured-output LLM access for prioritization and extraction.

``LLMClient`` is the seam the pipeline depends on. ``PydanticAILLMClient``
implements it with one cached pydantic-ai Agent per output schema. A response
cut off by the output token limit is reported as ``FinishReason.TRUNCATED``
instead of being raised, so callers can retry with a smaller input.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.settings import ModelSettings

from eventscout.core.constants import MAX_RETRIES_DEFAULT, TRUNCATION_FINISH_REASONS
from eventscout.core.exceptions import LLMError, LLMMalformedOutput, LLMTimeout

from .config import EventSearchConfig

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TRUNCATION_MARKERS = ("max_tokens", "token limit", "finish_reason='length'", "length limit")


class FinishReason(str, Enum):
    """Why the model stopped generating."""

    STOP = "stop"
    TRUNCATED = "truncated"


@dataclass
class LLMResponse:
    """Validated output plus the finish reason. Output is None when truncated."""

    output: Any
    finish_reason: FinishReason = FinishReason.STOP

    @property
    def truncated(self) -> bool:
        return self.finish_reason == FinishReason.TRUNCATED


class LLMClient(Protocol):
    """Anything that can turn a prompt into a validated schema instance."""

    async def extract_structured(
        self,
        prompt: str,
        schema: type[T],
        max_output_tokens: int,
        timeout: float,
    ) -> LLMResponse:
        """Run one structured call.

        Raises:
            LLMTimeout: If the call exceeded its timeout
            LLMMalformedOutput: If the output never validated
            LLMError: For any other API failure
        """
        ...


def _is_truncation_message(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in TRUNCATION_MARKERS)


def _response_finish_reason(result: Any) -> FinishReason:
    """Read the provider finish reason from the last model response, if exposed."""
    try:
        messages = result.all_messages()
    except AttributeError:
        return FinishReason.STOP
    if not messages:
        return FinishReason.STOP
    last = messages[-1]
    reason = getattr(last, "finish_reason", None)
    if reason is None:
        details = getattr(last, "provider_details", None) or {}
        reason = details.get("finish_reason") if isinstance(details, dict) else None
    if reason in TRUNCATION_FINISH_REASONS:
        return FinishReason.TRUNCATED
    return FinishReason.STOP


class PydanticAILLMClient:
    """LLMClient backed by pydantic-ai agents on an OpenAI model."""

    def __init__(self, config: EventSearchConfig) -> None:
        """Initialize the client with shared configuration.

        Args:
            config: Event search configuration holding the OpenAI model
        """
        self.config = config
        self._agents: dict[type[BaseModel], Agent] = {}

    def _agent_for(self, schema: type[BaseModel]) -> Agent:
        agent = self._agents.get(schema)
        if agent is None:
            # Per Pydantic AI docs: Agent with output_type for structured outputs
            agent = Agent(
                model=self.config.openai_model,
                output_type=schema,
                output_retries=MAX_RETRIES_DEFAULT,
                model_settings=self.config.base_model_settings,
            )
            self._agents[schema] = agent
        return agent

    async def extract_structured(
        self,
        prompt: str,
        schema: type[T],
        max_output_tokens: int,
        timeout: float,
    ) -> LLMResponse:
        """Run one structured call with an explicit token budget and timeout.

        Args:
            prompt: Full prompt text
            schema: Pydantic model the output must validate against
            max_output_tokens: Output budget, reasoning overhead included
            timeout: Seconds before the call is abandoned

        Returns:
            LLMResponse with the validated output, or a truncated marker

        Raises:
            LLMTimeout: If the call exceeded its timeout
            LLMMalformedOutput: If the output never validated
            LLMError: For any other API failure
        """
        agent = self._agent_for(schema)
        run_settings = ModelSettings(
            temperature=self.config.temperature,
            max_tokens=max_output_tokens,
            timeout=timeout,
        )

        try:
            result = await asyncio.wait_for(
                agent.run(prompt, model_settings=run_settings),
                timeout=timeout,
            )
        except TimeoutError as e:
            logger.warning("LLM call for %s timed out after %.1fs", schema.__name__, timeout)
            raise LLMTimeout(f"LLM call timed out after {timeout}s") from e
        except UnexpectedModelBehavior as e:
            # Per Pydantic AI docs: Raised when retries exhausted
            if _is_truncation_message(str(e)):
                logger.warning("LLM output for %s truncated at %d tokens", schema.__name__, max_output_tokens)
                return LLMResponse(output=None, finish_reason=FinishReason.TRUNCATED)
            logger.error("LLM output for %s failed validation: %s", schema.__name__, e)
            raise LLMMalformedOutput(f"{schema.__name__} output failed validation") from e
        except Exception as e:
            error_type = type(e).__name__
            error_msg = str(e)
            logger.exception("Unexpected LLM error: %s: %s", error_type, error_msg)

            if "Timeout" in error_type:
                raise LLMTimeout(f"LLM API timeout: {error_msg}") from e
            if "APIConnectionError" in error_type or "ConnectError" in error_type:
                raise LLMError(
                    f"Failed to connect to OpenAI API. Check network connectivity and API access. "
                    f"Error: {error_msg}",
                ) from e
            if "AuthenticationError" in error_type or "Invalid API" in error_msg:
                raise LLMError(
                    "OpenAI API authentication failed. Check OPENAI_API_KEY environment variable.",
                ) from e
            if "RateLimitError" in error_type:
                raise LLMError("OpenAI API rate limit exceeded. Please try again later.") from e
            raise LLMError(f"LLM call failed: {error_type}: {error_msg}") from e

        finish_reason = _response_finish_reason(result)
        if finish_reason == FinishReason.TRUNCATED:
            logger.warning("LLM output for %s hit the token limit", schema.__name__)
        return LLMResponse(output=result.output, finish_reason=finish_reason)
