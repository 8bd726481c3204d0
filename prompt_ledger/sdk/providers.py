"""
Model identifier to executor dispatch.
"""

from typing import Dict

from ..core.errors import ValidationFailure
from .anthropic_client import AnthropicExecutor
from .executor import ModelExecutor
from .openai_client import OpenAIExecutor


def executor_for_model(model: str, secrets: Dict[str, str]) -> ModelExecutor:
    """Build the executor that serves `model`.

    Raises:
        ValidationFailure: If no provider serves the model
    """
    if model.startswith("gpt") or model.startswith("o1"):
        return OpenAIExecutor(secrets.get("OPENAI_API_KEY"))
    if model.startswith("claude"):
        return AnthropicExecutor(secrets.get("ANTHROPIC_API_KEY"))
    raise ValidationFailure(f"Unsupported model: {model}")
