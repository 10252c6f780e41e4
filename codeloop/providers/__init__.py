"""Content-generation providers."""

from .litellm import LITELLM_AVAILABLE, LiteLLMConfig, LiteLLMGenerator

__all__ = ["LITELLM_AVAILABLE", "LiteLLMConfig", "LiteLLMGenerator"]
