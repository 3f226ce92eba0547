"""Concrete provider clients: OpenAI-compatible (OpenAI, DeepSeek) and Anthropic."""

from .anthropic import AnthropicClient
from .openai_compat import OpenAICompatibleClient, deepseek_client, make_timeout, openai_client

__all__ = [
    "AnthropicClient",
    "OpenAICompatibleClient",
    "deepseek_client",
    "make_timeout",
    "openai_client",
]
