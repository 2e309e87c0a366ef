# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Intelligence module for model-backed operations.

LiteLLM is the unified interface to the model providers, so extraction can
run against Gemini, OpenAI, Anthropic or a local Ollama without code
changes.
"""

from src.core.intelligence.llm import LLMClient, LLMError, LLMResponse

__all__ = [
    "LLMClient",
    "LLMError",
    "LLMResponse",
]
