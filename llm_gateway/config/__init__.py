"""Settings loading for the LLM Gateway."""
