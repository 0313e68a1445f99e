"""
Base LLM Interface
==================

Abstract interface for text-generation oracles.
"""

from abc import ABC, abstractmethod

from query_guard.models import LLMResponse


class LLMInterface(ABC):
    """
    Abstract interface for LLM providers.

    Implementations must be safe to call repeatedly and concurrently: the
    engine retries and fans out generation calls.
    """

    @abstractmethod
    async def generate(self, prompt: str, system_prompt: str | None = None) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The user prompt/question
            system_prompt: Optional system prompt for context

        Returns:
            LLMResponse with generated content
        """
        pass
