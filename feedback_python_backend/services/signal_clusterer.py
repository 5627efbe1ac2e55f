"""
Signal Clusterer

Pluggable partitioning of one dimension's signals into semantic clusters.
The aggregator only depends on SignalClusterer; the production implementation
asks the oracle, tests plug in deterministic clusterers.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from feedback_python_backend.models import ResponseSignal
from feedback_python_backend.services.oracle_client import build_request, call_tool, get_oracle
from feedback_python_backend.services.oracle_schemas import SIGNAL_CLUSTERS_TOOL
from feedback_python_backend.services.prompt_manager import get_prompt_manager


@dataclass
class ClusterAssignment:
    """One proposed cluster; signal_indices are 1-based positions in the dimension group."""

    aggregated_signal: str
    facet: str
    sentiment: str
    signal_indices: List[int] = field(default_factory=list)


class SignalClusterer(ABC):
    """
    Abstract base class for signal clustering.

    Implementations must not touch the database session: dimension groups are
    clustered concurrently.
    """

    @abstractmethod
    async def cluster(
        self,
        dimension: str,
        signals: List[ResponseSignal],
        context: Optional[Dict[str, Any]] = None,
    ) -> List[ClusterAssignment]:
        """
        Partition signals of one dimension.

        Args:
            dimension: Shared dimension of every signal in the group
            signals: Group members in load order (index 1 is signals[0])
            context: survey_id / dimension for logging and call tracking

        Returns:
            Proposed clusters. Indices may be out of range or repeated; the
            aggregator sanitizes them.
        """


def format_signal_lines(signals: List[ResponseSignal]) -> str:
    return "\n".join(
        f'{index}. "{signal.signal_text}" (facet: {signal.facet or "general"}, '
        f"intensity: {signal.intensity}, sentiment: {signal.sentiment})"
        for index, signal in enumerate(signals, start=1)
    )


class OracleSignalClusterer(SignalClusterer):
    """Clusters with one create_signal_clusters call per dimension."""

    def __init__(self, config: Dict[str, Any], oracle: Optional[Any] = None):
        self.config = config
        self.oracle = oracle or get_oracle(config)
        self.prompt_manager = get_prompt_manager()

    async def cluster(
        self,
        dimension: str,
        signals: List[ResponseSignal],
        context: Optional[Dict[str, Any]] = None,
    ) -> List[ClusterAssignment]:
        prompt = self.prompt_manager.render("signal_clustering", {
            "signal_count": len(signals),
            "dimension": dimension,
            "signals": format_signal_lines(signals),
        })
        request = build_request(
            self.config,
            "cluster",
            SIGNAL_CLUSTERS_TOOL,
            prompt.system,
            prompt.user,
            context={**(context or {}), "dimension": dimension},
        )
        payload = await call_tool(self.oracle, request)
        return [
            ClusterAssignment(
                aggregated_signal=cluster.aggregated_signal,
                facet=cluster.facet,
                sentiment=cluster.sentiment,
                signal_indices=list(cluster.signal_indices),
            )
            for cluster in payload.clusters
        ]
