"""
Prompt Ledger.

Prompt templates, usage ledger and analytics for hosted language models.
"""

__version__ = "0.1.0"
