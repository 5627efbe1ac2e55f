"""Deterministic survey arithmetic computed before the deep-analytics oracle call."""

from typing import Any, Dict, Iterable, List, Optional

from feedback_python_backend.config import (
    NEUTRAL_SENTIMENT_SCORE,
    TOP_THEME_STATS,
    URGENCY_THRESHOLD,
)

TRAJECTORY_LABELS = ("improving", "declining", "stable", "mixed")


def effective_sentiment(score: Optional[float]) -> float:
    """Missing sentiment scores count as neutral."""
    return float(score) if score is not None else NEUTRAL_SENTIMENT_SCORE


def is_urgent(urgency_score: Optional[int], threshold: int = URGENCY_THRESHOLD) -> bool:
    return urgency_score is not None and urgency_score >= threshold


def theme_statistics(responses: Iterable[Any], threshold: int = URGENCY_THRESHOLD) -> Dict[str, Dict[str, float]]:
    """Per-theme {count, total_sentiment, urgent_count} for responses that carry a theme."""
    stats: Dict[str, Dict[str, float]] = {}
    for response in responses:
        if response.theme_id is None:
            continue
        entry = stats.setdefault(str(response.theme_id), {"count": 0, "total_sentiment": 0.0, "urgent_count": 0})
        entry["count"] += 1
        entry["total_sentiment"] += effective_sentiment(response.sentiment_score)
        if is_urgent(response.urgency_score, threshold):
            entry["urgent_count"] += 1
    return stats


def trajectory_histogram(trajectories: Iterable[Optional[str]]) -> Dict[str, int]:
    histogram = {label: 0 for label in TRAJECTORY_LABELS}
    for trajectory in trajectories:
        if trajectory in histogram:
            histogram[trajectory] += 1
    return histogram


def compute_survey_statistics(
    responses: List[Any],
    trajectories: Iterable[Optional[str]],
    theme_names: Optional[Dict[str, str]] = None,
    threshold: int = URGENCY_THRESHOLD,
    top_n: int = TOP_THEME_STATS,
) -> Dict[str, Any]:
    """
    Exact statistics over a survey's responses and session trajectories.

    Args:
        responses: Response rows (sentiment_score, urgency_score, theme_id)
        trajectories: sentiment_trajectory of the latest insight per session
        theme_names: theme id -> name; unknown ids keep the raw id as name
        threshold: urgency_score at or above which a response is urgent
        top_n: number of themes kept, by response count

    Returns:
        {"total_responses", "avg_sentiment", "urgent_count",
         "top_themes": [{theme_id, name, count, avg_sentiment, urgent_count}],
         "trajectories": {improving, declining, stable, mixed}}
    """
    theme_names = theme_names or {}
    total = len(responses)
    if total:
        avg_sentiment = sum(effective_sentiment(r.sentiment_score) for r in responses) / total
    else:
        avg_sentiment = NEUTRAL_SENTIMENT_SCORE

    stats = theme_statistics(responses, threshold)
    # Stable sort keeps first-seen order among equal counts
    ranked = sorted(stats.items(), key=lambda item: item[1]["count"], reverse=True)[:top_n]

    return {
        "total_responses": total,
        "avg_sentiment": avg_sentiment,
        "urgent_count": sum(1 for r in responses if is_urgent(r.urgency_score, threshold)),
        "top_themes": [
            {
                "theme_id": theme_id,
                "name": theme_names.get(theme_id, theme_id),
                "count": int(entry["count"]),
                "avg_sentiment": entry["total_sentiment"] / entry["count"],
                "urgent_count": int(entry["urgent_count"]),
            }
            for theme_id, entry in ranked
        ],
        "trajectories": trajectory_histogram(trajectories),
    }
