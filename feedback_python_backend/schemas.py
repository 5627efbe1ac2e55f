"""Shared Pydantic request/response models used across the pipeline routers."""
from pydantic import BaseModel
from typing import Any, Dict, List, Literal, Optional


class SessionAnalyzeRequest(BaseModel):
    session_id: str

class SurveyRequest(BaseModel):
    survey_id: str

class NarrativeGenerateRequest(BaseModel):
    survey_id: str
    audience: Literal["executive", "manager"] = "executive"
    generated_by: Optional[str] = None  # Free-form author id, no auth layer

class InsightsListResponse(BaseModel):
    session_id: str
    insights: List[Dict[str, Any]]
    count: int

class AggregatesListResponse(BaseModel):
    survey_id: str
    aggregates: List[Dict[str, Any]]
    count: int

class SnapshotHistoryResponse(BaseModel):
    survey_id: str
    snapshots: List[Dict[str, Any]]
    count: int

class ReportsListResponse(BaseModel):
    survey_id: str
    reports: List[Dict[str, Any]]
    count: int

class EvidenceResponse(BaseModel):
    survey_id: str
    responses: List[Dict[str, Any]]
    count: int
