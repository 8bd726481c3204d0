"""
Storage layer for Prompt Ledger.

Template store, usage ledger and their data models.
"""
