"""
Structured output contracts for the oracle.

Each tool the pipeline sends is declared once as a Pydantic model. The JSON
Schema in the tool definition is generated from the model and the returned
arguments are validated against the same model, so the two cannot drift.
"""

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError, model_validator

from feedback_python_backend.errors import UpstreamAnalysisError

logger = logging.getLogger(__name__)

SignalSentiment = Literal["positive", "negative", "neutral", "mixed"]
SentimentTrajectory = Literal["improving", "declining", "stable", "mixed"]
ChapterKey = Literal["pulse", "working", "warnings", "why", "forward"]

CHAPTER_ORDER = ("pulse", "working", "warnings", "why", "forward")


# ============================================================================
# Session analysis
# ============================================================================

class RecommendedAction(BaseModel):
    action: str = Field(description="Specific actionable recommendation")
    priority: Literal["high", "medium", "low"]
    timeframe: str = Field(description="Suggested timeframe (e.g., 'immediate', '1 week', '1 month')")


class SessionAnalysis(BaseModel):
    root_cause: str = Field(min_length=1, description="The underlying root cause or core issue (1-2 sentences)")
    sentiment_trajectory: SentimentTrajectory = Field(description="How sentiment changed throughout the conversation")
    key_quotes: List[str] = Field(description="3-5 most impactful verbatim quotes from the participant")
    recommended_actions: List[RecommendedAction] = Field(
        description="3-5 specific, actionable recommendations prioritized by impact"
    )
    confidence_score: int = Field(ge=0, le=100, description="Confidence in this analysis from 0-100")


# ============================================================================
# Signal clustering
# ============================================================================

class SignalClusterPayload(BaseModel):
    aggregated_signal: str = Field(description="A natural language description that summarizes this cluster (8-15 words)")
    facet: str = Field(description="The specific facet this cluster relates to")
    sentiment: SignalSentiment
    signal_indices: List[int] = Field(description="1-based indices of signals in this cluster")


class SignalClustersPayload(BaseModel):
    clusters: List[SignalClusterPayload]


# ============================================================================
# Survey deep analytics
# ============================================================================

class ThemeFinding(BaseModel):
    theme: str
    importance: Literal["critical", "high", "medium", "low"]
    sentiment: Literal["positive", "mixed", "negative"]
    key_finding: str


class SentimentTrends(BaseModel):
    overall_direction: Literal["improving", "declining", "stable"]
    momentum: str = Field(description="Is sentiment accelerating or decelerating?")
    inflection_points: List[str] = Field(description="Key moments or themes where sentiment shifted")


class RiskFactor(BaseModel):
    risk: str
    severity: Literal["critical", "high", "medium", "low"]
    likelihood: Literal["high", "medium", "low"]
    impact_area: str


class Opportunity(BaseModel):
    opportunity: str
    potential_impact: Literal["high", "medium", "low"]
    effort_required: Literal["low", "medium", "high"]


class StrategicRecommendation(BaseModel):
    recommendation: str
    priority: Literal["immediate", "short-term", "medium-term", "long-term"]
    expected_outcome: str
    key_stakeholders: List[str]


class SurveyAnalysis(BaseModel):
    executive_summary: str = Field(min_length=1, description="2-3 paragraph executive summary highlighting key findings")
    top_themes: List[ThemeFinding] = Field(description="Top 5-7 themes ranked by strategic importance")
    sentiment_trends: SentimentTrends
    cultural_insights: str = Field(description="Deep cultural and organizational insights (2-3 paragraphs)")
    risk_factors: List[RiskFactor] = Field(description="3-5 key risk factors identified")
    opportunities: List[Opportunity] = Field(description="3-5 strategic opportunities")
    strategic_recommendations: List[StrategicRecommendation] = Field(
        description="5-7 prioritized strategic recommendations"
    )
    participation_analysis: str = Field(description="Analysis of participation patterns and their implications")
    confidence_score: int = Field(ge=0, le=100, description="Confidence in this analysis from 0-100")


# ============================================================================
# Narrative report
# ============================================================================

class NarrativeInsight(BaseModel):
    text: str
    confidence: int = Field(ge=1, le=5)
    evidence_ids: List[str] = Field(description="Response IDs that support this insight")
    category: Optional[str] = None


class NarrativeChapter(BaseModel):
    title: str
    key: ChapterKey
    narrative: str = Field(description="The main story prose")
    insights: List[NarrativeInsight]


class NarrativeReportPayload(BaseModel):
    chapters: List[NarrativeChapter]
    overall_confidence: int = Field(ge=1, le=5)

    @model_validator(mode="after")
    def chapters_in_canonical_order(self) -> "NarrativeReportPayload":
        keys = [chapter.key for chapter in self.chapters]
        if sorted(keys) != sorted(CHAPTER_ORDER):
            raise ValueError(f"expected chapters {list(CHAPTER_ORDER)} exactly once, got {keys}")
        by_key = {chapter.key: chapter for chapter in self.chapters}
        self.chapters = [by_key[key] for key in CHAPTER_ORDER]
        return self


# ============================================================================
# Tool definitions
# ============================================================================

def _inline_refs(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Resolve $ref/$defs produced by Pydantic into a self-contained schema."""
    definitions = schema.get("$defs", {})

    def resolve(node: Any) -> Any:
        if isinstance(node, dict):
            ref = node.get("$ref")
            if ref:
                return resolve(copy.deepcopy(definitions[ref.split("/")[-1]]))
            return {key: resolve(value) for key, value in node.items() if key != "$defs"}
        if isinstance(node, list):
            return [resolve(item) for item in node]
        return node

    return resolve(schema)


def tool_parameters(model: Type[BaseModel]) -> Dict[str, Any]:
    return _inline_refs(model.model_json_schema())


@dataclass(frozen=True)
class OracleTool:
    name: str
    description: str
    output_model: Type[BaseModel]

    @property
    def parameters(self) -> Dict[str, Any]:
        return tool_parameters(self.output_model)

    def openai_tool(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    def anthropic_tool(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


ANALYZE_SESSION_TOOL = OracleTool(
    name="analyze_session",
    description="Extract root cause, sentiment trajectory, key quotes, and recommended actions from a conversation",
    output_model=SessionAnalysis,
)

SIGNAL_CLUSTERS_TOOL = OracleTool(
    name="create_signal_clusters",
    description="Group similar signals into clusters with aggregated descriptions",
    output_model=SignalClustersPayload,
)

ANALYZE_SURVEY_TOOL = OracleTool(
    name="analyze_survey",
    description="Extract executive summary, themes, cultural insights, risks, opportunities, and strategic recommendations",
    output_model=SurveyAnalysis,
)

NARRATIVE_REPORT_TOOL = OracleTool(
    name="create_narrative_report",
    description="Generate a structured narrative report with chapters and insights",
    output_model=NarrativeReportPayload,
)


def validate_payload(tool: OracleTool, payload: Any, context: Optional[Dict[str, Any]] = None) -> BaseModel:
    """Validate tool arguments, raising UpstreamAnalysisError when any field is missing or out of range."""
    try:
        return tool.output_model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("[oracle-schema] %s payload rejected context=%s errors=%s", tool.name, context, exc.errors())
        raise UpstreamAnalysisError(
            f"Oracle returned an invalid {tool.name} payload",
            context={**(context or {}), "tool": tool.name, "error_count": exc.error_count()},
        ) from exc


def warn_if_outside(label: str, items: List[Any], low: int, high: int, context: Dict[str, Any]) -> None:
    """Counts the prompt asks for are guidance; log when the oracle strays."""
    if not low <= len(items) <= high:
        logger.warning("[oracle-schema] %s count %s outside %s-%s context=%s", label, len(items), low, high, context)
