"""
Core modules for the LLM Gateway.

This package contains error types, token accounting, the pricing table
and the price feeds used to refresh it.
"""
