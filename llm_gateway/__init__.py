"""
LLM Gateway.

Configure OpenAI-compatible LLM providers, send chat completions to them
and track the token cost of every request.
"""

__version__ = "0.1.0"
