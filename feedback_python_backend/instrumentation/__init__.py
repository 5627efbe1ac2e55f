"""
Instrumentation package for oracle call tracking and cost monitoring.

This package provides:
- Cost calculation for Gemini, Anthropic and OpenAI models
- A decorator for automatic oracle call logging to api_calls_log
"""

from .cost_calculator import (
    calculate_cost,
    get_model_pricing,
    calculate_cost_breakdown,
)
from .decorators import (
    track_api_call,
    APICallTracker,
    set_session_factory,
    get_tracker,
)

__all__ = [
    # Cost calculation
    'calculate_cost',
    'get_model_pricing',
    'calculate_cost_breakdown',
    # Decorators
    'track_api_call',
    'APICallTracker',
    'set_session_factory',
    'get_tracker',
]
