from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from promotion_engine.core.models import LedgerEntry, PairOutcome, RunSummary, StageReport


class RunCreateRequest(BaseModel):
    release_tag: Optional[str] = None
    skip_nonprod: bool = False
    deploy_app1: bool = True
    deploy_app2: bool = True


class RunAcceptedResponse(BaseModel):
    run_id: str
    status: str


class ApproveRequest(BaseModel):
    reviewer: str


class RejectRequest(BaseModel):
    reviewer: str
    reason: Optional[str] = None


class SignalResponse(BaseModel):
    run_id: str
    signal: str


class PairOutcomeResponse(BaseModel):
    application: str
    target: str
    status: str
    release_tag: str
    phase: Optional[str] = None
    warnings: List[str] = []
    error_message: Optional[str] = None

    @classmethod
    def from_domain(cls, outcome: PairOutcome) -> "PairOutcomeResponse":
        return cls(
            application=outcome.application,
            target=outcome.target,
            status=outcome.status.value,
            release_tag=outcome.release_tag,
            phase=outcome.phase.value if outcome.phase else None,
            warnings=list(outcome.warnings),
            error_message=outcome.error_message,
        )


class StageResponse(BaseModel):
    index: int
    description: str
    degraded: bool
    outcomes: List[PairOutcomeResponse]

    @classmethod
    def from_domain(cls, report: StageReport) -> "StageResponse":
        return cls(
            index=report.index,
            description=report.description,
            degraded=report.degraded,
            outcomes=[PairOutcomeResponse.from_domain(o) for o in report.outcomes],
        )


class RunResponse(BaseModel):
    run_id: str
    release_tag: Optional[str] = None
    status: str
    halt_reason: Optional[str] = None
    approval: Optional[str] = None
    approval_by: Optional[str] = None
    pending_stage: Optional[str] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
    stages: List[StageResponse] = []

    @classmethod
    def from_domain(cls, summary: RunSummary) -> "RunResponse":
        return cls(
            run_id=summary.run_id,
            release_tag=summary.release_tag,
            status=summary.status.value,
            halt_reason=summary.halt_reason,
            approval=summary.approval.value if summary.approval else None,
            approval_by=summary.approval_by,
            pending_stage=summary.pending_stage,
            created_at=summary.created_at,
            finished_at=summary.finished_at,
            stages=[StageResponse.from_domain(s) for s in summary.stages],
        )


class LedgerEntryResponse(BaseModel):
    application: str
    target: str
    release_tag: str
    release_published_at: Optional[datetime] = None
    recorded_at: datetime
    run_id: Optional[str] = None
    previous_tag: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: LedgerEntry) -> "LedgerEntryResponse":
        return cls(
            application=entry.application,
            target=entry.target,
            release_tag=entry.release_tag,
            release_published_at=entry.release_published_at,
            recorded_at=entry.recorded_at,
            run_id=entry.run_id,
            previous_tag=entry.previous_tag,
        )


class ReleaseCheckResponse(BaseModel):
    release_tag: str
    published_at: Optional[datetime] = None
    new_release: bool
    artifacts: List[str] = []
    manifests: List[str] = []
