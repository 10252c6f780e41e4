"""GeneratorLike — structural protocol for the content-generation capability."""

from __future__ import annotations

from typing import Any, Literal, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class GenerationRequest(BaseModel):
    """One call to the model: a system prompt plus user/assistant turns."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    system_prompt: Optional[str] = None
    messages: list[dict[str, str]] = Field(default_factory=list)
    model: Optional[str] = Field(default=None, description="None = the generator's default")
    temperature: float = 0.7
    response_format: Literal["text", "json"] = "text"
    stop_sequences: list[str] = Field(default_factory=list)
    max_tokens: Optional[int] = None
    signal: Any = Field(default=None, description="AbortSignal checked before the call")


class GenerationResponse(BaseModel):
    """Model output with token and cost accounting."""

    text: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost: float = 0.0
    output_cost: float = 0.0
    cached: bool = False
    model: str = ""

    @property
    def tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def cost(self) -> float:
        return self.input_cost + self.output_cost


@runtime_checkable
class GeneratorLike(Protocol):
    """Minimal interface the execution loop needs from a model client.

    Concrete implementations include ``LiteLLMGenerator`` or any object
    with an async ``generate`` method.
    """

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Return the model's continuation for *request*."""
        ...
