"""
peergrade/schemas/evaluation.py
Pydantic schemas for distribution and self-evaluation endpoints
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from peergrade.orm.evaluation import EvaluationStatus


class DistributeRequest(BaseModel):
    """Request to distribute peer evaluations for an assignment"""
    evaluations_per_student: int = Field(..., description="Teams each student evaluates (1-10)")
    start_at: datetime
    due_at: datetime
    force: bool = Field(default=False, description="Replace pending evaluations if already distributed")
    seed: Optional[int] = Field(default=None, description="Tie-break shuffle seed")

    class Config:
        json_schema_extra = {
            "example": {
                "evaluations_per_student": 3,
                "start_at": "2025-03-01T09:00:00Z",
                "due_at": "2025-03-08T23:59:00Z",
                "force": False,
            }
        }


class DistributionWarningResponse(BaseModel):
    student_id: int
    requested: int
    assigned: int
    message: str


class CleanupResponse(BaseModel):
    deleted_individual: int
    deleted_team: int
    errors: List[str] = Field(default_factory=list)


class DistributeResponse(BaseModel):
    """Response schema for a distribution run"""
    count: int
    evaluations_per_student: int
    warnings: List[DistributionWarningResponse] = Field(default_factory=list)
    cleanup: CleanupResponse


class EvaluationAssignmentResponse(BaseModel):
    id: int
    assignment_id: int
    evaluator_student_id: int
    evaluated_team_id: int
    submission_id: Optional[int] = None
    status: EvaluationStatus
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_at: datetime

    class Config:
        from_attributes = True


class SelfEvaluationReportResponse(BaseModel):
    total: int
    individual: List[Dict[str, Any]] = Field(default_factory=list)
    team: List[Dict[str, Any]] = Field(default_factory=list)
    summary: Dict[str, Any]
