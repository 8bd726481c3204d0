"""
Configuration store for Prompt Ledger.
"""
