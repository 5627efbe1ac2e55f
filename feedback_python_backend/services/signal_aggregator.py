"""
SignalAggregator Service

Collapses a survey's atomic response signals into cross-response aggregates
with a voice count and an agreement percentage.

Signals are grouped by dimension. Groups of one become singleton aggregates;
larger groups are partitioned by a SignalClusterer. A clusterer failure only
degrades its own dimension to singletons. The survey's aggregate set is
replaced in a single transaction.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.config import MAX_CLUSTERING_CONCURRENCY
from feedback_python_backend.errors import MissingInputError, NotFoundError, PersistenceError, parse_uuid
from feedback_python_backend.models import AggregatedSignal, ResponseSignal
from feedback_python_backend.services.feedback_reader import (
    fetch_aggregated_signals,
    fetch_survey,
    fetch_survey_signals,
    serialize_aggregate,
)
from feedback_python_backend.services.llm_config import load_oracle_config
from feedback_python_backend.services.signal_clusterer import (
    ClusterAssignment,
    OracleSignalClusterer,
    SignalClusterer,
)

logger = logging.getLogger(__name__)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round halves away from zero (2.5 -> 3), unlike the built-in round()."""
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


@dataclass
class AggregateDraft:
    """An aggregate computed in memory, before persistence."""

    signal_text: str
    dimension: str
    facet: str
    sentiment: str
    voice_count: int
    agreement_pct: int
    avg_intensity: float
    evidence_ids: List[str] = field(default_factory=list)
    signal_ids: List[str] = field(default_factory=list)


def singleton_aggregate(signal: ResponseSignal) -> AggregateDraft:
    return AggregateDraft(
        signal_text=signal.signal_text,
        dimension=signal.dimension,
        facet=signal.facet or "general",
        sentiment=signal.sentiment,
        voice_count=1,
        agreement_pct=100,
        avg_intensity=float(signal.intensity),
        evidence_ids=[str(signal.response_id)],
        signal_ids=[str(signal.id)],
    )


def build_cluster_aggregates(
    dimension: str,
    signals: List[ResponseSignal],
    assignments: List[ClusterAssignment],
) -> Tuple[List[AggregateDraft], int]:
    """
    Turn proposed clusters into aggregates over a strict partition of signals.

    Out-of-range indices and indices already claimed by an earlier cluster are
    dropped; clusters left empty are skipped; signals no cluster claimed come
    back as singletons.

    Returns:
        (aggregates, number of usable clusters)
    """
    claimed = set()
    aggregates: List[AggregateDraft] = []
    usable_clusters = 0

    for assignment in assignments:
        member_indices = []
        for index in assignment.signal_indices:
            if isinstance(index, bool) or not isinstance(index, int):
                continue
            if index < 1 or index > len(signals) or index in claimed:
                continue
            claimed.add(index)
            member_indices.append(index)

        if not member_indices:
            continue

        members = [signals[index - 1] for index in member_indices]
        mean_intensity = sum(float(s.intensity) for s in members) / len(members)
        matching = sum(1 for s in members if s.sentiment == assignment.sentiment)

        aggregates.append(AggregateDraft(
            signal_text=assignment.aggregated_signal,
            dimension=dimension,
            facet=assignment.facet or "general",
            sentiment=assignment.sentiment,
            voice_count=len(members),
            agreement_pct=int(round_half_up(matching / len(members) * 100)),
            avg_intensity=round_half_up(mean_intensity, 1),
            evidence_ids=[str(s.response_id) for s in members],
            signal_ids=[str(s.id) for s in members],
        ))
        usable_clusters += 1

    for index, signal in enumerate(signals, start=1):
        if index not in claimed:
            aggregates.append(singleton_aggregate(signal))

    return aggregates, usable_clusters


def group_by_dimension(signals: List[ResponseSignal]) -> Dict[str, List[ResponseSignal]]:
    """Group signals by dimension, keeping first-seen dimension order and member load order."""
    groups: Dict[str, List[ResponseSignal]] = {}
    for signal in signals:
        groups.setdefault(signal.dimension, []).append(signal)
    return groups


class SignalAggregator:
    """Cross-response signal aggregation for one survey."""

    def __init__(
        self,
        db_session: AsyncSession,
        clusterer: Optional[SignalClusterer] = None,
        max_concurrency: int = MAX_CLUSTERING_CONCURRENCY,
    ):
        self.db = db_session
        self.clusterer = clusterer
        self.max_concurrency = max(1, max_concurrency)

    async def aggregate_signals(self, survey_id) -> Dict[str, Any]:
        """
        Recompute and replace the survey's aggregate set.

        Returns:
            {"success", "survey_id", "aggregation_run_id", "raw_signals",
             "aggregated_signals", "dimensions", "failed_dimensions"}

        Raises:
            NotFoundError: survey does not exist
            MissingInputError: survey has no signals
            PersistenceError: the replace transaction failed (previous set kept)
        """
        survey_uuid = parse_uuid(survey_id, "survey_id")
        if await fetch_survey(self.db, survey_uuid) is None:
            raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})

        signals = await fetch_survey_signals(self.db, survey_uuid)
        if not signals:
            raise MissingInputError("No signals to aggregate", context={"survey_id": str(survey_uuid)})

        groups = group_by_dimension(signals)
        logger.info(
            "[aggregate-signals] survey=%s processing %s signals across %s dimensions",
            survey_uuid,
            len(signals),
            len(groups),
        )

        clusterer = self.clusterer
        if clusterer is None:
            clusterer = OracleSignalClusterer(await load_oracle_config(self.db))

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results = await asyncio.gather(*[
            self._aggregate_dimension(survey_uuid, dimension, group, clusterer, semaphore)
            for dimension, group in groups.items()
        ])

        drafts: List[AggregateDraft] = []
        failed_dimensions: List[str] = []
        for dimension, (dimension_drafts, failed) in zip(groups, results):
            drafts.extend(dimension_drafts)
            if failed:
                failed_dimensions.append(dimension)

        run_id = uuid.uuid4()
        await self._replace_aggregates(survey_uuid, drafts, run_id)

        logger.info(
            "[aggregate-signals] survey=%s run=%s created %s aggregates (failed dimensions: %s)",
            survey_uuid,
            run_id,
            len(drafts),
            failed_dimensions or "none",
        )

        return {
            "success": True,
            "survey_id": str(survey_uuid),
            "aggregation_run_id": str(run_id),
            "raw_signals": len(signals),
            "aggregated_signals": len(drafts),
            "dimensions": list(groups),
            "failed_dimensions": failed_dimensions,
        }

    async def _aggregate_dimension(
        self,
        survey_uuid: uuid.UUID,
        dimension: str,
        signals: List[ResponseSignal],
        clusterer: SignalClusterer,
        semaphore: asyncio.Semaphore,
    ) -> Tuple[List[AggregateDraft], bool]:
        if len(signals) < 2:
            return [singleton_aggregate(signal) for signal in signals], False

        context = {"survey_id": str(survey_uuid), "dimension": dimension}
        async with semaphore:
            try:
                assignments = await clusterer.cluster(dimension, signals, context)
            except Exception as exc:
                logger.warning(
                    "[aggregate-signals] survey=%s dimension=%s clustering failed, degrading to singletons: %s",
                    survey_uuid,
                    dimension,
                    exc,
                )
                return [singleton_aggregate(signal) for signal in signals], True

        drafts, usable_clusters = build_cluster_aggregates(dimension, signals, assignments)
        if usable_clusters == 0:
            logger.warning(
                "[aggregate-signals] survey=%s dimension=%s clustering returned no usable cluster",
                survey_uuid,
                dimension,
            )
            return drafts, True
        return drafts, False

    async def _replace_aggregates(
        self,
        survey_uuid: uuid.UUID,
        drafts: List[AggregateDraft],
        run_id: uuid.UUID,
    ) -> None:
        analyzed_at = datetime.now(timezone.utc)
        try:
            await self.db.execute(delete(AggregatedSignal).where(AggregatedSignal.survey_id == survey_uuid))
            self.db.add_all([
                AggregatedSignal(
                    id=uuid.uuid4(),
                    survey_id=survey_uuid,
                    signal_text=draft.signal_text,
                    dimension=draft.dimension,
                    facet=draft.facet,
                    sentiment=draft.sentiment,
                    voice_count=draft.voice_count,
                    agreement_pct=draft.agreement_pct,
                    avg_intensity=draft.avg_intensity,
                    evidence_ids=draft.evidence_ids,
                    signal_ids=draft.signal_ids,
                    aggregation_run_id=run_id,
                    analyzed_at=analyzed_at,
                )
                for draft in drafts
            ])
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("[aggregate-signals] survey=%s failed to replace aggregates: %s", survey_uuid, exc)
            raise PersistenceError(
                "Failed to store aggregated signals",
                context={"survey_id": str(survey_uuid), "aggregation_run_id": str(run_id)},
            ) from exc


async def list_aggregated_signals(db: AsyncSession, survey_id, dimension: Optional[str] = None) -> List[Dict[str, Any]]:
    """Aggregates of a survey ordered by voice_count desc, optionally for one dimension."""
    survey_uuid = parse_uuid(survey_id, "survey_id")
    if await fetch_survey(db, survey_uuid) is None:
        raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})
    aggregates = await fetch_aggregated_signals(db, survey_uuid, dimension=dimension)
    return [serialize_aggregate(aggregate) for aggregate in aggregates]
