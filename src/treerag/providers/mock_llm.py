"""Mock LLM provider that condenses prompts deterministically."""
from __future__ import annotations

from .base import LLMProvider


class MockLLMProvider(LLMProvider):
    """Return a predictable summary built from the tail of the prompt."""

    def __init__(self, max_chars: int = 400) -> None:
        self.max_chars = max_chars
        self.calls = 0

    @property
    def model_name(self) -> str:
        return "mock-llm"

    async def generate(self, prompt: str, max_tokens: int = 256) -> str:
        self.calls += 1
        body = " ".join(prompt.split()[-max_tokens:])
        return f"MOCK_SUMMARY: {body[-self.max_chars:]}"
