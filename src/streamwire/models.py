"""Model metadata lookup and derived request parameters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from streamwire.types import ModelInfo, ModelSelection

if TYPE_CHECKING:
    from streamwire.config import ProviderSettings
    from streamwire.llm.handler import CreateMessageOptions

DEEPSEEK_DEFAULT_TEMPERATURE = 0.6

DEFAULT_MODEL_INFO = ModelInfo(
    context_window=128_000,
    max_tokens=-1,
    supports_prompt_cache=False,
    supports_images=True,
    description="Defaults for an unknown OpenAI-compatible model.",
)

MODEL_TABLE: dict[str, ModelInfo] = {
    "deepseek-chat": ModelInfo(
        context_window=64_000,
        max_tokens=8_000,
        supports_prompt_cache=True,
        input_price=0.27,
        output_price=1.1,
        cache_writes_price=0.27,
        cache_reads_price=0.07,
        description="DeepSeek-V3 general chat model.",
    ),
    "deepseek-reasoner": ModelInfo(
        context_window=64_000,
        max_tokens=8_000,
        supports_prompt_cache=True,
        input_price=0.55,
        output_price=2.19,
        cache_writes_price=0.55,
        cache_reads_price=0.14,
        description="DeepSeek-R1 reasoning model; emits reasoning_content.",
    ),
    "gpt-4o": ModelInfo(
        context_window=128_000,
        max_tokens=16_384,
        supports_images=True,
        input_price=2.5,
        output_price=10.0,
        cache_reads_price=1.25,
    ),
    "o3-mini": ModelInfo(
        context_window=200_000,
        max_tokens=100_000,
        input_price=1.1,
        output_price=4.4,
        cache_reads_price=0.55,
        reasoning_effort="medium",
    ),
}


def get_model_info(model_id: str) -> ModelInfo:
    """Look up *model_id*; unknown ids get :data:`DEFAULT_MODEL_INFO`."""
    return MODEL_TABLE.get(model_id, DEFAULT_MODEL_INFO)


def is_deepseek_reasoner(model_id: str) -> bool:
    lower = model_id.lower()
    return "deepseek-reasoner" in lower or "deepseek-r1" in lower


def get_model_params(
    model_id: str,
    info: ModelInfo,
    settings: ProviderSettings,
    options: CreateMessageOptions | None = None,
) -> ModelSelection:
    """Derive max tokens, temperature and reasoning effort for a request.

    Temperature precedence: call option -> provider setting ->
    DeepSeek reasoner default -> 0.
    """
    temperature: float | None = None
    if options is not None and options.temperature is not None:
        temperature = options.temperature
    elif settings.temperature is not None:
        temperature = settings.temperature
    elif is_deepseek_reasoner(model_id):
        temperature = DEEPSEEK_DEFAULT_TEMPERATURE
    else:
        temperature = 0.0

    include_max = settings.include_max_tokens
    if options is not None and options.include_max_tokens is not None:
        include_max = options.include_max_tokens

    max_tokens: int | None = None
    if include_max:
        if options is not None and options.max_tokens:
            max_tokens = options.max_tokens
        elif settings.max_tokens:
            max_tokens = settings.max_tokens
        elif info.max_tokens > 0:
            max_tokens = info.max_tokens

    return ModelSelection(
        id=model_id,
        info=info,
        max_tokens=max_tokens,
        temperature=temperature,
        reasoning_effort=info.reasoning_effort,
    )
