"""
OpenAI chat completions executor.
"""

from typing import Optional

import openai
from openai import OpenAI

from ..core.pricing import OPENAI_PRICING, calculate_cost
from ..core.token_counter import TokenUsage
from .executor import ExecutionResult, ExecutorError, ModelExecutor

PLACEHOLDER_KEY = "your_openai_key_here"


class OpenAIExecutor(ModelExecutor):
    """Runs single-message prompts through the OpenAI chat API."""

    def __init__(self, api_key: Optional[str], temperature: float = 0.7):
        """Initialize the executor.

        Args:
            api_key: OpenAI API key (required, not the init placeholder)
            temperature: Sampling temperature

        Raises:
            ExecutorError: If the API key is missing
        """
        if not api_key or not api_key.strip() or api_key == PLACEHOLDER_KEY:
            raise ExecutorError("OpenAI API key not configured. Set OPENAI_API_KEY in the workspace secrets")
        self.temperature = temperature
        self.client = OpenAI(api_key=api_key)

    def execute(self, prompt: str, model: str) -> ExecutionResult:
        """Create a chat completion and price its usage.

        Raises:
            ExecutorError: On any API failure
        """
        try:
            completion = self.client.chat.completions.create(
                model=model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except openai.AuthenticationError as e:
            raise ExecutorError("Invalid OpenAI API key.") from e
        except openai.APIError as e:
            if getattr(e, "code", None) == "insufficient_quota":
                raise ExecutorError("OpenAI API quota exceeded. Check your billing.") from e
            raise ExecutorError(f"OpenAI API error: {e}") from e

        text = ""
        if completion.choices:
            text = completion.choices[0].message.content or ""

        usage = completion.usage
        token_usage = TokenUsage(
            input_tokens=(usage.prompt_tokens or 0) if usage else 0,
            output_tokens=(usage.completion_tokens or 0) if usage else 0,
        )
        return ExecutionResult(
            text=text,
            tokens=token_usage.total_tokens,
            cost=calculate_cost(OPENAI_PRICING, model, token_usage),
        )
