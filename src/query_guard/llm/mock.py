"""
Mock LLM
========

Scripted oracle for tests and local demos.
"""

import json
from typing import Any

from query_guard.llm.base import LLMInterface
from query_guard.models import LLMResponse


class MockLLM(LLMInterface):
    """
    Mock LLM that replays canned generation payloads.

    In production, replace with an OpenAI, Anthropic, or other provider client.
    """

    def __init__(self, responses: dict[str, list[Any]] | None = None) -> None:
        """
        Initialize with canned responses.

        Args:
            responses: Dict mapping prompt substrings to a list of payloads.
                       Payloads are dicts (serialized to JSON) or raw strings.
                       Each call returns the next payload; the last one repeats.
        """
        self.responses = responses or {}
        self.call_counts: dict[str, int] = {}
        self.prompts: list[str] = []

    async def generate(self, prompt: str, system_prompt: str | None = None) -> LLMResponse:
        self.prompts.append(prompt)

        for key, payloads in self.responses.items():
            if key.lower() in prompt.lower():
                count = self.call_counts.get(key, 0)
                self.call_counts[key] = count + 1
                payload = payloads[min(count, len(payloads) - 1)]
                content = payload if isinstance(payload, str) else json.dumps(payload)
                return LLMResponse(content=content, model="mock-llm-v1")

        # Default fallback
        return LLMResponse(
            content=json.dumps(
                {
                    "sql": "SELECT * FROM unknown_table",
                    "explanation": "No scripted response",
                    "confidence": 0.1,
                    "tables": ["unknown_table"],
                    "isReadOnly": True,
                }
            ),
            model="mock-llm-v1",
        )

    def reset(self) -> None:
        """Reset call counts for fresh test runs."""
        self.call_counts = {}
        self.prompts = []
