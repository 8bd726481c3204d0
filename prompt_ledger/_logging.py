"""
Logger lookup for Prompt Ledger.

Library modules only fetch named loggers; handlers are installed by the CLI.
"""

import logging


def get_logger(name: str = "PromptLedger") -> logging.Logger:
    """Get a logger instance with the specified name.

    Args:
        name: Logger name (defaults to 'PromptLedger')

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
