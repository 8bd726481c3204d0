"""
Anthropic messages API executor.
"""

from typing import Optional

import anthropic

from ..core.pricing import ANTHROPIC_PRICING, calculate_cost
from ..core.token_counter import TokenUsage
from .executor import ExecutionResult, ExecutorError, ModelExecutor

PLACEHOLDER_KEY = "your_anthropic_key_here"


class AnthropicExecutor(ModelExecutor):
    """Runs single-message prompts through the Anthropic messages API."""

    def __init__(self, api_key: Optional[str], max_tokens: int = 4000):
        if not api_key or not api_key.strip() or api_key == PLACEHOLDER_KEY:
            raise ExecutorError("Anthropic API key not configured. Set ANTHROPIC_API_KEY in the workspace secrets")
        self.max_tokens = max_tokens
        self.client = anthropic.Anthropic(api_key=api_key)

    def execute(self, prompt: str, model: str) -> ExecutionResult:
        try:
            message = self.client.messages.create(
                model=model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.AuthenticationError as e:
            raise ExecutorError("Invalid Anthropic API key.") from e
        except anthropic.RateLimitError as e:
            raise ExecutorError("Anthropic API rate limit exceeded.") from e
        except anthropic.APIError as e:
            raise ExecutorError(f"Anthropic API error: {e}") from e

        text = ""
        if message.content and getattr(message.content[0], "type", None) == "text":
            text = message.content[0].text

        token_usage = TokenUsage(
            input_tokens=getattr(message.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(message.usage, "output_tokens", 0) or 0,
        )
        return ExecutionResult(
            text=text,
            tokens=token_usage.total_tokens,
            cost=calculate_cost(ANTHROPIC_PRICING, model, token_usage),
        )
