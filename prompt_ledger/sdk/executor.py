"""
Model executor boundary and the prompt runner.

A failed model call is a normal outcome: the runner turns timeouts and
executor exceptions into failed usage records instead of raising them.
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .._logging import get_logger
from ..config.loader import DEFAULT_SETTINGS, ConfigStore
from ..core.errors import ValidationFailure
from ..storage.models import UsageRecord

logger = get_logger("PromptLedger.Executor")

DEFAULT_TIMEOUT_S = 60.0
RETAINED_PAYLOAD_CHARS = 200
TIMEOUT_ERROR = "timeout"


class ExecutorError(RuntimeError):
    """Raised by executors when a provider call fails."""


class _CallTimedOut(Exception):
    pass


@dataclass(frozen=True)
class ExecutionResult:
    """What a provider returned for one prompt."""
    text: str
    tokens: int = 0
    cost: float = 0.0

    def __post_init__(self):
        """Validate the provider's answer before it reaches the ledger."""
        if not isinstance(self.text, str):
            raise ValidationFailure("text must be a string")
        if isinstance(self.tokens, bool) or not isinstance(self.tokens, int) or self.tokens < 0:
            raise ValidationFailure("tokens must be a non-negative integer")
        if isinstance(self.cost, bool) or not isinstance(self.cost, (int, float)) or self.cost < 0:
            raise ValidationFailure("cost must be a non-negative number")


class ModelExecutor(ABC):
    """Abstract base for all model executors."""

    @abstractmethod
    def execute(self, prompt: str, model: str) -> ExecutionResult:
        """Send a prompt to the model and return text plus usage."""
        ...


class EchoExecutor(ModelExecutor):
    """Offline executor that answers with the prompt itself."""

    def execute(self, prompt: str, model: str) -> ExecutionResult:
        return ExecutionResult(text=prompt, tokens=len(prompt.split()), cost=0.0)


@dataclass(frozen=True)
class RunOutcome:
    """A usage record and, on success, the model's response text."""
    record: UsageRecord
    text: Optional[str] = None


class PromptRunner:
    """Executes rendered prompts and records the outcome in the ledger."""

    def __init__(
        self,
        ledger,
        executor_factory: Callable[[str], ModelExecutor],
        config_store: Optional[ConfigStore] = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        """Initialize the runner.

        Args:
            ledger: Usage ledger to append to
            executor_factory: Returns the executor for a model identifier
            config_store: Source of the logging policy (defaults apply if None)
            timeout_s: Seconds to wait for the executor before recording a timeout
        """
        if timeout_s <= 0:
            raise ValidationFailure("timeout_s must be > 0")
        self.ledger = ledger
        self.executor_factory = executor_factory
        self.config_store = config_store
        self.timeout_s = timeout_s

    def _logging_policy(self) -> dict:
        if self.config_store is None:
            return dict(DEFAULT_SETTINGS["logging"])
        return self.config_store.read().settings["logging"]

    def _call(self, prompt: str, model: str) -> ExecutionResult:
        executor = self.executor_factory(model)
        result = executor.execute(prompt, model)
        if not isinstance(result, ExecutionResult):
            raise ExecutorError(
                f"Executor for {model} returned {type(result).__name__}, not ExecutionResult"
            )
        return result

    def _call_with_timeout(self, prompt: str, model: str) -> ExecutionResult:
        """Run the executor on a daemon thread and wait at most timeout_s.

        A call that overruns is abandoned; the daemon thread never keeps
        the process alive.

        Raises:
            _CallTimedOut: If the executor did not finish in time
            Exception: Whatever the executor raised
        """
        outcome: Dict[str, Any] = {}

        def _target():
            try:
                outcome["result"] = self._call(prompt, model)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=_target, name=f"executor-{model}", daemon=True)
        worker.start()
        worker.join(self.timeout_s)
        if worker.is_alive():
            raise _CallTimedOut(TIMEOUT_ERROR)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]

    def execute(self, rendered_text: str, model: str, prompt_ref: Optional[str] = None) -> RunOutcome:
        """Run a rendered prompt against a model and record the result.

        Args:
            rendered_text: Prompt text with placeholders already resolved
            model: Model identifier
            prompt_ref: Label of the originating template, if any

        Returns:
            RunOutcome with the appended (or, when logging is disabled,
            unrecorded) usage record

        Raises:
            ValidationFailure: If model is empty
            IOFailure: If the ledger cannot be written
        """
        if not model or not model.strip():
            raise ValidationFailure("model is required and cannot be empty")

        policy = self._logging_policy()
        timestamp = datetime.now(timezone.utc)
        started = time.monotonic()

        result: Optional[ExecutionResult] = None
        error: Optional[str] = None

        try:
            result = self._call_with_timeout(rendered_text, model)
        except _CallTimedOut:
            error = TIMEOUT_ERROR
            logger.warning("Model %s timed out after %.1fs", model, self.timeout_s)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.warning("Model %s call failed: %s", model, error)

        duration_ms = int((time.monotonic() - started) * 1000)
        keep_payloads = policy.get("includeResponses", True)

        record = UsageRecord(
            timestamp=timestamp,
            model=model,
            prompt_ref=prompt_ref,
            tokens=result.tokens if result else 0,
            cost=result.cost if result else 0.0,
            duration_ms=duration_ms,
            success=result is not None,
            error=error,
            input=rendered_text[:RETAINED_PAYLOAD_CHARS] if keep_payloads else None,
            response=result.text[:RETAINED_PAYLOAD_CHARS] if keep_payloads and result else None,
        )

        if policy.get("enabled", True):
            self.ledger.append(record)
        return RunOutcome(record=record, text=result.text if result else None)
