"""
Command-line interface for Prompt Ledger.
"""
