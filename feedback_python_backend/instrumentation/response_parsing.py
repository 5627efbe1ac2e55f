"""
Helpers for extracting usage metrics from oracle responses.

Gateway responses are OpenAI-style dicts; Anthropic responses are SDK
Message objects. Both are normalized into ParsedResponseMetrics.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple


@dataclass(frozen=True)
class ParsedResponseMetrics:
    """Normalized usage fields extracted from a provider response."""

    model: str
    input_tokens: int
    output_tokens: int
    metadata: Dict[str, Any]


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _extract_usage_tokens(usage: Any) -> Tuple[int, int]:
    if usage is None:
        return 0, 0

    prompt_tokens = _get(usage, "prompt_tokens", None)
    if prompt_tokens is None:
        prompt_tokens = _get(usage, "input_tokens", 0)
    completion_tokens = _get(usage, "completion_tokens", None)
    if completion_tokens is None:
        completion_tokens = _get(usage, "output_tokens", 0)
    return _to_int(prompt_tokens), _to_int(completion_tokens)


def _extract_finish_reason(response: Any) -> Any:
    # Anthropic
    stop_reason = _get(response, "stop_reason")
    if stop_reason is not None:
        return stop_reason

    choices = _get(response, "choices")
    if not isinstance(choices, (list, tuple)) or len(choices) == 0:
        return None
    return _get(choices[0], "finish_reason")


def parse_response_metrics(response: Any) -> ParsedResponseMetrics:
    """Parse model/token metadata from object-based or dict-based responses."""
    model = str(_get(response, "model") or "unknown")
    input_tokens, output_tokens = _extract_usage_tokens(_get(response, "usage"))

    metadata: Dict[str, Any] = {}
    finish_reason = _extract_finish_reason(response)
    if finish_reason is not None:
        metadata["finish_reason"] = finish_reason

    return ParsedResponseMetrics(
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        metadata=metadata,
    )
