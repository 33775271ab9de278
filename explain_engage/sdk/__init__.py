"""
SDK for Explain Engage.

Provides the OpenAI-backed answer generator for the question pipeline.
"""

from .openai_client import OpenAIExplainer

__all__ = ["OpenAIExplainer"]
