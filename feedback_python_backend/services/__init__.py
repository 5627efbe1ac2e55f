"""Services for the feedback signal pipeline."""

from .deep_analytics import DeepAnalyticsSynthesizer
from .narrative_generator import NarrativeGenerator
from .prompt_manager import PromptManager
from .session_analyzer import SessionAnalyzer
from .signal_aggregator import SignalAggregator

__all__ = [
    'DeepAnalyticsSynthesizer',
    'NarrativeGenerator',
    'PromptManager',
    'SessionAnalyzer',
    'SignalAggregator',
]
