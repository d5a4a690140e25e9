from typing import List

from fastapi import APIRouter, Depends, HTTPException

from promotion_engine.api.container import get_gate, get_promotion_service, get_runner
from promotion_engine.api.schemas.run import (
    ApproveRequest,
    RejectRequest,
    RunAcceptedResponse,
    RunCreateRequest,
    RunResponse,
    SignalResponse,
)
from promotion_engine.core.errors import (
    NoPendingApprovalError,
    RunNotFound,
    UnauthorizedReviewerError,
)
from promotion_engine.core.models import PromotionRequest

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post("", response_model=RunAcceptedResponse, status_code=202)
async def create_run(
    request: RunCreateRequest,
    service=Depends(get_promotion_service),
):
    run_id = service.start(PromotionRequest(
        release_tag=request.release_tag,
        skip_nonprod=request.skip_nonprod,
        deploy_app1=request.deploy_app1,
        deploy_app2=request.deploy_app2,
    ))
    summary = service.runner.get_run(run_id)

    return RunAcceptedResponse(run_id=run_id, status=summary.status.value)


@router.get("", response_model=List[RunResponse])
async def list_runs(runner=Depends(get_runner)):
    return [RunResponse.from_domain(s) for s in runner.list_runs()]


@router.get("/{run_id}", response_model=RunResponse)
async def get_run(run_id: str, runner=Depends(get_runner)):
    try:
        summary = runner.get_run(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Run not found")

    return RunResponse.from_domain(summary)


@router.post("/{run_id}/approve", response_model=SignalResponse)
async def approve_run(
    run_id: str,
    request: ApproveRequest,
    runner=Depends(get_runner),
    gate=Depends(get_gate),
):
    _ensure_run(runner, run_id)
    try:
        gate.approve(run_id, request.reviewer)
    except UnauthorizedReviewerError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NoPendingApprovalError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return SignalResponse(run_id=run_id, signal="APPROVED")


@router.post("/{run_id}/reject", response_model=SignalResponse)
async def reject_run(
    run_id: str,
    request: RejectRequest,
    runner=Depends(get_runner),
    gate=Depends(get_gate),
):
    _ensure_run(runner, run_id)
    try:
        gate.reject(run_id, request.reviewer, request.reason)
    except UnauthorizedReviewerError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except NoPendingApprovalError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return SignalResponse(run_id=run_id, signal="REJECTED")


@router.post("/{run_id}/cancel", response_model=SignalResponse)
async def cancel_run(run_id: str, runner=Depends(get_runner)):
    try:
        cancelled = runner.cancel(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Run not found")

    if not cancelled:
        raise HTTPException(status_code=409, detail="Run already finished")

    return SignalResponse(run_id=run_id, signal="CANCELLED")


def _ensure_run(runner, run_id: str) -> None:
    try:
        runner.get_run(run_id)
    except RunNotFound:
        raise HTTPException(status_code=404, detail="Run not found")
