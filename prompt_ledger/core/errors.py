"""
Error taxonomy shared by every store and the boundary service.

NotFound and ValidationFailure are caller errors and are shown verbatim.
IOFailure means the persistence medium could not be used.
"""


class PromptLedgerError(Exception):
    """Base class for all Prompt Ledger errors."""


class NotFound(PromptLedgerError):
    """Raised when nothing exists at the requested address."""


class IOFailure(PromptLedgerError):
    """Raised when the backing store is unavailable or unreadable."""


class ValidationFailure(PromptLedgerError, ValueError):
    """Raised for malformed input such as an unknown config branch."""
