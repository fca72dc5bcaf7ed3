"""Helpers for an LLM-driven official-document writing service."""

__version__ = "0.1.0"