"""
SDK for the LLM Gateway.

Provides programmatic access to chat completions and connection tests.
"""

from .gateway import CompletionGateway, CompletionResult, Message

__all__ = ["CompletionGateway", "CompletionResult", "Message"]
