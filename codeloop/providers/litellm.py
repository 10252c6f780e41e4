"""LiteLLM generator for unified access to 100+ LLM providers.

Satisfies the ``GeneratorLike`` protocol used by the execution loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from ..core.errors import GenerationError
from ..protocols.llm import GenerationRequest, GenerationResponse

logger = logging.getLogger(__name__)

try:
    import litellm
    from litellm import Router, acompletion

    LITELLM_AVAILABLE = True
except ImportError:
    LITELLM_AVAILABLE = False
    logger.warning("LiteLLM not installed. Install with: pip install litellm")


# ---------------------------------------------------------------------------
# LiteLLMConfig
# ---------------------------------------------------------------------------


@dataclass
class LiteLLMConfig:
    """Configuration for the LiteLLM generator."""

    model: str
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    api_version: Optional[str] = None
    max_tokens: int = 4096
    top_p: Optional[float] = None
    timeout: int = 60
    max_retries: int = 3
    fallbacks: Optional[List[str]] = None

    # Claude-specific parameter handling
    sampling_priority: str = "temperature"  # "temperature" | "top_p"

    # HTTP/SSL settings
    extra_headers: Optional[Dict[str, str]] = None
    ssl_verify: Optional[Union[bool, str]] = None

    # Model-specific parameters (reasoning_effort, budget_tokens, etc.)
    extra_params: Optional[Dict[str, Any]] = None

    verbose: bool = False


# ---------------------------------------------------------------------------
# LiteLLMGenerator
# ---------------------------------------------------------------------------


class LiteLLMGenerator:
    """Content generator backed by ``litellm.acompletion``.

    Example::

        generator = LiteLLMGenerator(model="gpt-4o-mini")
        result = await execute(generator=generator, instructions="...")
    """

    def __init__(
        self,
        model: Optional[str] = None,
        *,
        config: Optional[LiteLLMConfig] = None,
        **kwargs: Any,
    ) -> None:
        if not LITELLM_AVAILABLE:
            raise ImportError("LiteLLM is not installed. Install with: pip install litellm")

        if config is None:
            if model is None:
                raise ValueError("Either 'model' parameter or 'config' with model must be provided")
            known = set(LiteLLMConfig.__dataclass_fields__) - {"model", "extra_params"}
            config_kwargs = {k: v for k, v in kwargs.items() if k in known}
            extra = {k: v for k, v in kwargs.items() if k not in known}
            config = LiteLLMConfig(model=model, extra_params=extra or None, **config_kwargs)

        self.config = config
        self.model = config.model

        if config.verbose:
            litellm.set_verbose = True

        self.router: Optional[Any] = None
        if config.fallbacks:
            self._setup_router()

    def _setup_router(self) -> None:
        model_list = [
            {
                "model_name": self.config.model,
                "litellm_params": {
                    "model": self.config.model,
                    "api_key": self.config.api_key,
                    "api_base": self.config.api_base,
                },
            }
        ]
        for fallback in self.config.fallbacks or []:
            model_list.append({"model_name": fallback, "litellm_params": {"model": fallback}})
        self.router = Router(
            model_list=model_list,
            fallbacks=[{self.config.model: self.config.fallbacks}],
            num_retries=self.config.max_retries,
            timeout=self.config.timeout,
        )

    # -- Call building --------------------------------------------------------

    @staticmethod
    def _resolve_sampling_params(
        params: Dict[str, Any], model: str, sampling_priority: str = "temperature"
    ) -> Dict[str, Any]:
        """Anthropic rejects temperature and top_p together; keep one."""
        if "claude" not in model.lower():
            return params
        if sampling_priority not in ("temperature", "top_p"):
            raise ValueError(
                f"Invalid sampling_priority: {sampling_priority}. Must be one of: temperature, top_p"
            )
        resolved = {k: v for k, v in params.items() if not (k in ("temperature", "top_p") and v is None)}
        if "temperature" in resolved and "top_p" in resolved:
            drop = "top_p" if sampling_priority == "temperature" else "temperature"
            resolved.pop(drop)
            logger.info("Claude model %s: dropping %s", model, drop)
        return resolved

    def _build_call_params(self, request: GenerationRequest) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        for message in request.messages:
            messages.append({"role": message["role"], "content": message["content"]})

        model = request.model or self.config.model
        params: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": request.temperature,
            "max_tokens": request.max_tokens or self.config.max_tokens,
            "timeout": self.config.timeout,
            "num_retries": self.config.max_retries,
            "drop_params": True,
        }
        if self.config.top_p is not None:
            params["top_p"] = self.config.top_p
        if request.stop_sequences:
            params["stop"] = list(request.stop_sequences)
        if request.response_format == "json":
            params["response_format"] = {"type": "json_object"}

        params = self._resolve_sampling_params(params, model, self.config.sampling_priority)

        if self.config.api_key:
            params["api_key"] = self.config.api_key
        if self.config.api_base:
            params["api_base"] = self.config.api_base
        if self.config.api_version:
            params["api_version"] = self.config.api_version
        if self.config.extra_headers:
            params["extra_headers"] = self.config.extra_headers
        if self.config.ssl_verify is not None:
            params["ssl_verify"] = self.config.ssl_verify
        if self.config.extra_params:
            params.update(self.config.extra_params)
        return params

    # -- Generation -----------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        signal = request.signal
        if signal is not None and getattr(signal, "aborted", False):
            raise GenerationError(f"Generation aborted: {signal.reason_text()}")

        params = self._build_call_params(request)
        try:
            if self.router:
                response = await self.router.acompletion(**params)
            else:
                response = await acompletion(**params)
        except Exception as e:
            logger.error("Error in LiteLLM async completion: %s", e)
            raise

        return self._to_response(response, params["model"])

    def _to_response(self, response: Any, model: str) -> GenerationResponse:
        text = response.choices[0].message.content if response.choices else None
        usage = getattr(response, "usage", None)
        input_tokens = getattr(usage, "prompt_tokens", 0) or 0
        output_tokens = getattr(usage, "completion_tokens", 0) or 0

        hidden = getattr(response, "_hidden_params", None) or {}
        input_cost, output_cost = self._split_cost(
            response.model or model, input_tokens, output_tokens, hidden.get("response_cost")
        )
        return GenerationResponse(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            input_cost=input_cost,
            output_cost=output_cost,
            cached=bool(hidden.get("cache_hit")),
            model=response.model or model,
        )

    @staticmethod
    def _split_cost(
        model: str, input_tokens: int, output_tokens: int, total: Optional[float]
    ) -> tuple[float, float]:
        """Per-direction cost; falls back to the total when pricing is unknown."""
        try:
            prompt_cost, completion_cost = litellm.cost_per_token(
                model=model,
                prompt_tokens=input_tokens,
                completion_tokens=output_tokens,
            )
            return float(prompt_cost), float(completion_cost)
        except Exception:  # noqa: BLE001 - litellm raises for unmapped models
            logger.debug("No pricing for model %s", model)
            return float(total or 0.0), 0.0
