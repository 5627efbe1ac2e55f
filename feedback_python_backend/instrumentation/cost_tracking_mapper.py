"""
Mapping helpers for instrumentation log entries.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Type
import uuid

from .cost_calculator import calculate_cost_breakdown


def parse_uuid_or_none(value: Optional[Any]) -> Optional[uuid.UUID]:
    if value is None:
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        return None


def infer_provider_from_model(model: str) -> str:
    normalized = (model or "").strip().lower()
    if not normalized:
        return "unknown"
    if normalized.startswith(("gpt", "o1", "o3")) or "openai" in normalized:
        return "openai"
    if "claude" in normalized or "anthropic" in normalized:
        return "anthropic"
    if "gemini" in normalized or "google" in normalized:
        return "google"
    return "unknown"


def build_memory_log_entry(
    *,
    call_id: str,
    endpoint: str,
    context: Dict[str, Any],
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float,
    latency_ms: int,
    timestamp: datetime,
    success: bool,
    error_message: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "id": call_id,
        "endpoint": endpoint,
        "survey_id": context.get("survey_id"),
        "session_id": context.get("session_id"),
        "feature": context.get("feature") or endpoint,
        "model": model,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "cost_usd": cost_usd,
        "latency_ms": latency_ms,
        "timestamp": timestamp,
        "success": success,
        "error_message": error_message,
        "metadata": metadata or {},
    }


def build_api_calls_log_record(
    *,
    api_calls_log_cls: Type[Any],
    entry: Dict[str, Any],
) -> Any:
    """Turn an in-memory log entry into an api_calls_log row."""
    model = entry["model"]
    input_tokens = int(entry["input_tokens"] or 0)
    output_tokens = int(entry["output_tokens"] or 0)
    latency_ms = int(entry["latency_ms"] or 0)

    prompt_cost = 0.0
    completion_cost = 0.0
    total_cost = float(entry["cost_usd"] or 0.0)

    if model and (input_tokens > 0 or output_tokens > 0):
        try:
            prompt_cost, completion_cost, computed_total = calculate_cost_breakdown(
                model,
                input_tokens,
                output_tokens,
            )
            if total_cost == 0.0:
                total_cost = float(computed_total)
        except ValueError:
            pass  # unpriced model, costs stay zero

    timestamp = entry["timestamp"]
    ts = timestamp if timestamp.tzinfo else timestamp.replace(tzinfo=timezone.utc)
    metadata_payload = entry.get("metadata") or {}

    return api_calls_log_cls(
        id=parse_uuid_or_none(entry["id"]) or uuid.uuid4(),
        survey_id=parse_uuid_or_none(entry.get("survey_id")),
        session_id=parse_uuid_or_none(entry.get("session_id")),
        endpoint=entry["endpoint"],
        feature=str(entry.get("feature") or entry["endpoint"]),
        provider=str(metadata_payload.get("provider") or infer_provider_from_model(model)),
        model=model or "unknown",
        prompt_tokens=input_tokens,
        completion_tokens=output_tokens,
        total_tokens=input_tokens + output_tokens,
        prompt_cost=float(prompt_cost),
        completion_cost=float(completion_cost),
        total_cost=float(total_cost),
        latency_ms=latency_ms,
        status="success" if entry["success"] else "error",
        error_message=entry.get("error_message"),
        started_at=ts,
        completed_at=ts + timedelta(milliseconds=max(latency_ms, 0)),
    )
