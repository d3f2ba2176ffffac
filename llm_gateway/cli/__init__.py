"""Command-line interface for the LLM Gateway."""
