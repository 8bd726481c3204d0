"""
Token accounting for model responses.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a provider for one call."""
    input_tokens: int
    output_tokens: int

    def __post_init__(self):
        """Validate counts are non-negative."""
        if self.input_tokens < 0:
            raise ValueError("input_tokens cannot be negative")
        if self.output_tokens < 0:
            raise ValueError("output_tokens cannot be negative")

    @property
    def total_tokens(self) -> int:
        """Total tokens used (input + output)."""
        return self.input_tokens + self.output_tokens
