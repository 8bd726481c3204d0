"""
SDK for Prompt Ledger.

Model executors and the runner that records their outcomes.
"""

from .anthropic_client import AnthropicExecutor
from .executor import EchoExecutor, ExecutionResult, ExecutorError, ModelExecutor, PromptRunner, RunOutcome
from .openai_client import OpenAIExecutor
from .providers import executor_for_model

__all__ = [
    "AnthropicExecutor",
    "EchoExecutor",
    "ExecutionResult",
    "ExecutorError",
    "ModelExecutor",
    "OpenAIExecutor",
    "PromptRunner",
    "RunOutcome",
    "executor_for_model",
]
