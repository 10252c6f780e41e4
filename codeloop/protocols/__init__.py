"""Protocols for external collaborators."""

from .llm import GenerationRequest, GenerationResponse, GeneratorLike

__all__ = ["GenerationRequest", "GenerationResponse", "GeneratorLike"]
