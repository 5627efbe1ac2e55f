"""Decorators for automatic oracle-call tracking and cost logging."""

import logging
import time
import uuid
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional

from .cost_calculator import calculate_cost
from .cost_tracking_mapper import build_api_calls_log_record, build_memory_log_entry
from .response_parsing import parse_response_metrics

logger = logging.getLogger(__name__)


class APICallTracker:
    """Track oracle calls and persist them when a session factory is bound."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory
        self.call_logs = []  # In-memory buffer if DB not available

    async def log_api_call(self, log_entry: Dict[str, Any]) -> None:
        """Log a call to api_calls_log in its own session, otherwise append to memory."""
        if self.session_factory is not None:
            try:
                from feedback_python_backend.models import APICallsLog

                api_log = build_api_calls_log_record(api_calls_log_cls=APICallsLog, entry=log_entry)
                async with self.session_factory() as session:
                    session.add(api_log)
                    await session.commit()
                return
            except Exception as exc:
                logger.exception("Failed to log API call to database: %s", str(exc))
                log_entry["db_error"] = str(exc)

        self.call_logs.append(log_entry)

    def get_in_memory_logs(self):
        """Get in-memory logs (for testing or when DB unavailable)."""
        return self.call_logs


# Global tracker instance
_global_tracker = APICallTracker()


def set_session_factory(session_factory):
    """Bind a session factory so tracked calls land in api_calls_log."""
    _global_tracker.session_factory = session_factory


def get_tracker() -> APICallTracker:
    """Get the global tracker instance."""
    return _global_tracker


def _calculate_call_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    if not model or input_tokens + output_tokens <= 0:
        return 0.0

    try:
        return calculate_cost(model, input_tokens, output_tokens)
    except ValueError as exc:
        logger.warning("Could not calculate cost for model '%s': %s", model, str(exc))
        return 0.0


def track_api_call(
    endpoint_name: str,
    extract_context: Optional[Callable[..., Dict[str, Any]]] = None,
):
    """
    Decorator that measures latency, token usage, and call cost of an async oracle call.

    extract_context receives the wrapped call's arguments and returns a dict
    with any of survey_id, session_id, feature.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            call_id = str(uuid.uuid4())
            start_time = time.time()
            timestamp = datetime.now(timezone.utc)
            context = extract_context(*args, **kwargs) if extract_context else {}

            try:
                response = await func(*args, **kwargs)
            except Exception as exc:
                latency_ms = int((time.time() - start_time) * 1000)
                await _global_tracker.log_api_call(build_memory_log_entry(
                    call_id=call_id,
                    endpoint=endpoint_name,
                    context=context,
                    model=str(context.get("model") or "unknown"),
                    input_tokens=0,
                    output_tokens=0,
                    cost_usd=0.0,
                    latency_ms=latency_ms,
                    timestamp=timestamp,
                    success=False,
                    error_message=str(exc),
                ))
                raise

            latency_ms = int((time.time() - start_time) * 1000)
            parsed = parse_response_metrics(response)
            await _global_tracker.log_api_call(build_memory_log_entry(
                call_id=call_id,
                endpoint=endpoint_name,
                context=context,
                model=parsed.model,
                input_tokens=parsed.input_tokens,
                output_tokens=parsed.output_tokens,
                cost_usd=_calculate_call_cost(parsed.model, parsed.input_tokens, parsed.output_tokens),
                latency_ms=latency_ms,
                timestamp=timestamp,
                success=True,
                metadata=parsed.metadata,
            ))
            return response

        return async_wrapper

    return decorator
