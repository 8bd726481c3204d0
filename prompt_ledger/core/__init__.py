"""
Core modules for Prompt Ledger.

This package contains the template renderer, analytics aggregation,
pricing and the shared error taxonomy.
"""
