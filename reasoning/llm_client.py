

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from leadscore.config import Settings, get_settings
from leadscore.errors import ReasoningTimeout, ReasoningUnavailable
from reasoning.prompts import LEAD_SCORING_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

# client-side timeout stays above the per-attempt bound
CLIENT_TIMEOUT_MARGIN = 5.0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy for reasoning calls."""

    max_attempts: int = 3
    attempt_timeout: float = 20.0
    deadline: float = 30.0
    backoff_min: float = 1.0
    backoff_max: float = 8.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.llm_max_retries),
            attempt_timeout=settings.llm_attempt_timeout,
            deadline=settings.llm_timeout,
            backoff_min=settings.llm_backoff_min,
            backoff_max=settings.llm_backoff_max,
        )


def build_chat_model(settings: Settings) -> Any:
    """Create the LangChain chat model for the configured provider, in JSON mode."""
    provider = settings.llm_provider.lower()

    if provider == "openai":
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when llm_provider is 'openai'")
        llm = ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            temperature=settings.llm_temperature,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_attempt_timeout + CLIENT_TIMEOUT_MARGIN,
            max_retries=0,
        )
        return llm.bind(response_format={"type": "json_object"})

    if provider == "ollama":
        return ChatOllama(
            model=settings.ollama_model,
            base_url=settings.ollama_base_url,
            temperature=settings.llm_temperature,
            num_predict=settings.llm_max_tokens,
            format="json",
        )

    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")


class LLMClient:
    """LangChain-based client for the external reasoning service."""

    def __init__(
        self,
        chat_model: Optional[Any] = None,
        policy: Optional[RetryPolicy] = None,
        model_name: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize the client.

        The chat model only needs an async ``ainvoke(messages)`` returning a
        message with ``content``; it is built from settings when omitted.
        """
        settings = settings or get_settings()

        self.llm = chat_model if chat_model is not None else build_chat_model(settings)
        self.policy = policy or RetryPolicy.from_settings(settings)

        if model_name:
            self.model_name = model_name
        elif settings.llm_provider.lower() == "ollama":
            self.model_name = settings.ollama_model
        else:
            self.model_name = settings.openai_model

        logger.info(f"LLM Client initialized with model: {self.model_name}")

    async def _attempt(self, messages: List[BaseMessage]) -> str:
        """Run a single reasoning call bounded by the attempt timeout."""
        try:
            response = await asyncio.wait_for(
                self.llm.ainvoke(messages),
                timeout=self.policy.attempt_timeout
            )
        except asyncio.TimeoutError:
            raise ReasoningTimeout(
                f"Reasoning service did not respond within {self.policy.attempt_timeout}s"
            )
        except Exception as e:
            raise ReasoningUnavailable(f"Reasoning service error: {e}") from e

        content = response.content
        return content if isinstance(content, str) else str(content)

    async def _invoke_with_retries(self, messages: List[BaseMessage]) -> str:
        attempts = 0

        async def attempt() -> str:
            nonlocal attempts
            attempts += 1
            return await self._attempt(messages)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.backoff_min,
                min=self.policy.backoff_min,
                max=self.policy.backoff_max
            ),
            retry=retry_if_exception_type((ReasoningUnavailable, ReasoningTimeout)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            return await retrying(attempt)
        except (ReasoningUnavailable, ReasoningTimeout) as e:
            e.details = {"attempts": attempts, "model": self.model_name}
            raise

    async def invoke(self, prompt_text: str) -> str:
        """
        Send a scoring prompt to the reasoning service.

        Returns:
            The raw text payload, expected to be a JSON object.

        Raises:
            ReasoningUnavailable: the service errored on every attempt.
            ReasoningTimeout: no response within the deadline.
        """
        start_time = time.time()
        messages = [
            SystemMessage(content=LEAD_SCORING_SYSTEM_PROMPT),
            HumanMessage(content=prompt_text)
        ]

        try:
            content = await asyncio.wait_for(
                self._invoke_with_retries(messages),
                timeout=self.policy.deadline
            )
        except asyncio.TimeoutError:
            logger.error(f"Reasoning call exceeded deadline of {self.policy.deadline}s")
            raise ReasoningTimeout(
                f"Reasoning service did not respond within {self.policy.deadline}s",
                details={"model": self.model_name}
            )
        except (ReasoningUnavailable, ReasoningTimeout) as e:
            logger.error(f"Reasoning call failed: {e}")
            raise

        latency_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Reasoning call completed in {latency_ms}ms")
        return content

    async def health_check(self) -> bool:
        """Check if the reasoning service is available."""
        try:
            await asyncio.wait_for(
                self.llm.ainvoke([HumanMessage(content='{"status": "ok"}')]),
                timeout=self.policy.attempt_timeout
            )
            return True
        except Exception as e:
            logger.error(f"LLM health check failed: {e}")
            return False
