"""
Storage layer for the LLM Gateway.

Provides the key-value persistence boundary and the configuration and
selection stores built on top of it.
"""
