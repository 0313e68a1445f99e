"""
LLM Module
==========

Pluggable text-generation oracles for SQL generation.
"""

from query_guard.llm.base import LLMInterface
from query_guard.llm.mock import MockLLM

__all__ = [
    "LLMInterface",
    "MockLLM",
]
