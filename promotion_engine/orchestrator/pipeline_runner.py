# promotion_engine/orchestrator/pipeline_runner.py
"""Pipeline runner - drives a deployment plan stage by stage."""

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple
from uuid import uuid4

from promotion_engine.approval.gate import ApprovalGate
from promotion_engine.core.errors import PromotionError, RunNotFound
from promotion_engine.core.events import EventEmitter, NullEventEmitter
from promotion_engine.core.events_model import PromotionEvent
from promotion_engine.core.ledger import VersionLedger
from promotion_engine.core.models import (
    ApplicationDefinition,
    ApprovalDecision,
    DeploymentPlan,
    DeploymentTarget,
    LedgerEntry,
    PairOutcome,
    PairStatus,
    Release,
    RunStatus,
    RunSummary,
    Stage,
    StageReport,
    utcnow,
)
from promotion_engine.executor.blue_green import BlueGreenExecutor

logger = logging.getLogger(__name__)


PairKey = Tuple[str, str]


@dataclass
class _RunControl:
    summary: RunSummary
    cancel_requested: bool = False
    cancel_event: Optional[asyncio.Event] = None
    loop: Optional[asyncio.AbstractEventLoop] = None


class PipelineRunner:
    """
    Runs one plan per run id.

    Flow per stage:
    1. Stop if the run was cancelled
    2. Wait at the approval gate before the first prod stage
    3. Dispatch every pair of the stage concurrently
    4. Record COMPLETE pairs in the ledger (compare-and-set)
    5. Halt if a hard-gate stage is degraded

    Run summaries stay in memory for status queries. Only the newest
    max_finished_runs terminal runs are kept.
    """

    def __init__(
        self,
        executor: BlueGreenExecutor,
        gate: ApprovalGate,
        ledger: VersionLedger,
        emitter: Optional[EventEmitter] = None,
        max_finished_runs: int = 200,
    ):
        self._executor = executor
        self._gate = gate
        self._ledger = ledger
        self._emitter = emitter or NullEventEmitter()
        self._max_finished_runs = max_finished_runs

        self._runs: Dict[str, _RunControl] = {}
        self._active_pairs: Set[PairKey] = set()
        self._lock = threading.Lock()

    # -------------------------
    # RUN REGISTRY
    # -------------------------

    def register(self, run_id: Optional[str] = None, release_tag: Optional[str] = None) -> RunSummary:
        """Create (or return) the summary of a run before it starts."""
        run_id = run_id or str(uuid4())
        with self._lock:
            control = self._runs.get(run_id)
            if control is None:
                control = _RunControl(summary=RunSummary(run_id=run_id, release_tag=release_tag))
                self._runs[run_id] = control
            elif release_tag and not control.summary.release_tag:
                control.summary.release_tag = release_tag
            return control.summary

    def get_run(self, run_id: str) -> RunSummary:
        with self._lock:
            control = self._runs.get(run_id)
        if control is None:
            raise RunNotFound(f"Run {run_id} not found")
        return control.summary

    def list_runs(self) -> List[RunSummary]:
        with self._lock:
            summaries = [c.summary for c in self._runs.values()]
        return sorted(summaries, key=lambda s: s.created_at, reverse=True)

    def cancel(self, run_id: str) -> bool:
        """
        Request cancellation.

        Resolves the gate if the run is waiting, aborts health polls in
        flight and prevents un-started stages. Switched pairs stay switched.
        Returns False if the run already finished.
        """
        with self._lock:
            control = self._runs.get(run_id)
            if control is None:
                raise RunNotFound(f"Run {run_id} not found")
            if control.summary.is_terminal:
                return False
            control.cancel_requested = True
            loop = control.loop

        logger.info(f"[runner] {run_id} cancellation requested")

        if loop is not None:
            loop.call_soon_threadsafe(self._signal_cancel, control)
        return True

    def abort(self, run_id: str, reason: str, release_tag: Optional[str] = None) -> RunSummary:
        """Fail a run before any stage was dispatched."""
        summary = self.register(run_id, release_tag)
        summary.halt_reason = reason
        self._finish(summary, RunStatus.FAILED)
        return summary

    # -------------------------
    # RUN
    # -------------------------

    async def run(
        self,
        plan: DeploymentPlan,
        run_id: Optional[str] = None,
        artifacts: Optional[Mapping[str, Path]] = None,
    ) -> RunSummary:
        summary = self.register(run_id, plan.release.tag)
        run_id = summary.run_id

        with self._lock:
            control = self._runs[run_id]
            control.loop = asyncio.get_running_loop()
            control.cancel_event = asyncio.Event()
            if control.cancel_requested:
                control.cancel_event.set()

        summary.release_tag = plan.release.tag
        summary.status = RunStatus.RUNNING

        logger.info(f"[runner] {run_id} starting {plan.release.tag} ({len(plan.stages)} stages)")
        self._emitter.emit([PromotionEvent.run_started(run_id, plan.release.tag, len(plan.stages))])

        try:
            halted = await self._drive(plan, control, artifacts or {})
        except PromotionError as e:
            logger.error(f"[runner] {run_id} aborted: {e}")
            summary.halt_reason = str(e)
            halted = RunStatus.FAILED
        except Exception as e:
            summary.halt_reason = f"internal error: {e}"
            self._finish(summary, RunStatus.FAILED)
            raise

        self._record_not_started(plan, summary)
        self._finish(summary, halted or self._status_of(summary))
        return summary

    async def _drive(
        self,
        plan: DeploymentPlan,
        control: _RunControl,
        artifacts: Mapping[str, Path],
    ) -> Optional[RunStatus]:
        """Execute stages in order. Returns the halting status, if any."""
        summary = control.summary
        run_id = summary.run_id

        baseline = await asyncio.to_thread(self._snapshot, list(plan.pairs()))
        approved = False

        for index, stage in enumerate(plan.stages):
            if control.cancel_requested:
                summary.halt_reason = "run cancelled"
                return RunStatus.CANCELLED

            if stage.requires_approval and not approved:
                halted = await self._pass_gate(plan, index, stage, control)
                if halted is not None:
                    return halted
                approved = True

            logger.info(f"[runner] {run_id} stage {index + 1}/{len(plan.stages)}: {stage.description}")
            self._emitter.emit([PromotionEvent.stage_started(run_id, index, stage)])

            report = await self._run_stage(index, stage, plan.release, control, baseline, artifacts)
            summary.stages.append(report)

            if report.degraded:
                logger.warning(f"[runner] {run_id} stage '{stage.description}' degraded")
                if control.cancel_requested:
                    summary.halt_reason = "run cancelled"
                    return RunStatus.CANCELLED
                if stage.hard_gate:
                    summary.halt_reason = f"stage '{stage.description}' degraded"
                    return None

        return None

    async def _pass_gate(
        self,
        plan: DeploymentPlan,
        index: int,
        stage: Stage,
        control: _RunControl,
    ) -> Optional[RunStatus]:
        summary = control.summary
        run_id = summary.run_id

        remaining = [pair for later in plan.stages[index:] for pair in later.pairs]
        if await asyncio.to_thread(self._all_recorded, plan.release, remaining):
            logger.info(f"[runner] {run_id} production already at {plan.release.tag}, gate skipped")
            return None

        if control.cancel_requested:
            summary.halt_reason = "run cancelled"
            return RunStatus.CANCELLED

        summary.status = RunStatus.AWAITING_APPROVAL
        summary.pending_stage = stage.description

        resolution = await self._gate.await_approval(run_id, stage.description, plan.release.tag)

        summary.pending_stage = None
        summary.approval = resolution.decision
        summary.approval_by = resolution.reviewer

        if resolution.decision == ApprovalDecision.APPROVED:
            summary.status = RunStatus.RUNNING
            return None

        detail = f": {resolution.reason}" if resolution.reason else ""
        if resolution.decision == ApprovalDecision.REJECTED:
            summary.halt_reason = f"approval rejected by {resolution.reviewer}{detail}"
            return RunStatus.REJECTED

        summary.halt_reason = f"run cancelled at approval gate{detail}"
        return RunStatus.CANCELLED

    # -------------------------
    # STAGE / PAIR
    # -------------------------

    async def _run_stage(
        self,
        index: int,
        stage: Stage,
        release: Release,
        control: _RunControl,
        baseline: Mapping[PairKey, Optional[LedgerEntry]],
        artifacts: Mapping[str, Path],
    ) -> StageReport:
        outcomes = await asyncio.gather(*(
            self._run_pair(application, target, release, control, baseline, artifacts)
            for application, target in stage.pairs
        ))
        return StageReport(index=index, description=stage.description, outcomes=list(outcomes))

    async def _run_pair(
        self,
        application: ApplicationDefinition,
        target: DeploymentTarget,
        release: Release,
        control: _RunControl,
        baseline: Mapping[PairKey, Optional[LedgerEntry]],
        artifacts: Mapping[str, Path],
    ) -> PairOutcome:
        run_id = control.summary.run_id
        key = (application.name, target.name)
        label = f"{application.name}@{target.name}"

        def outcome(status: PairStatus, **kwargs) -> PairOutcome:
            return PairOutcome(
                application=application.name,
                target=target.name,
                status=status,
                release_tag=release.tag,
                **kwargs,
            )

        prior = baseline.get(key)
        prior_tag = prior.release_tag if prior else None

        try:
            current = await asyncio.to_thread(self._ledger.get, application.name, target.name)
        except PromotionError as e:
            return outcome(PairStatus.FAILED, error_message=str(e))
        current_tag = current.release_tag if current else None

        if current_tag == release.tag:
            logger.info(f"[runner] {label} already at {release.tag}, skipped")
            return outcome(PairStatus.SKIPPED)

        if current_tag != prior_tag:
            return outcome(
                PairStatus.CONFLICT,
                error_message=f"ledger moved from {prior_tag} to {current_tag} during the run",
            )

        if current is not None and release.is_older_than(current.release_published_at):
            return outcome(
                PairStatus.FAILED,
                error_message=f"stale release: {release.tag} is older than recorded {current_tag}",
            )

        if control.cancel_requested:
            return outcome(PairStatus.NOT_STARTED, error_message="run cancelled")

        with self._lock:
            if key in self._active_pairs:
                return outcome(
                    PairStatus.CONFLICT,
                    error_message=f"another cutover for {label} is in progress",
                )
            self._active_pairs.add(key)

        try:
            state = await self._executor.execute(
                application,
                target,
                release,
                artifacts.get(application.name),
                run_id=run_id,
                cancel_event=control.cancel_event,
            )

            if not state.succeeded:
                return outcome(
                    PairStatus.FAILED,
                    phase=state.phase,
                    warnings=list(state.warnings),
                    error_message=state.error_message,
                )

            written = await asyncio.to_thread(
                self._ledger.compare_and_set,
                application.name,
                target.name,
                prior_tag,
                release,
                run_id,
            )
            if not written:
                return outcome(
                    PairStatus.CONFLICT,
                    phase=state.phase,
                    warnings=list(state.warnings),
                    error_message="ledger write rejected: concurrent deployment recorded first",
                )

            self._emitter.emit([PromotionEvent.ledger_recorded(
                run_id, application.name, target.name, release.tag, prior_tag,
            )])
            return outcome(PairStatus.COMPLETED, phase=state.phase, warnings=list(state.warnings))

        except PromotionError as e:
            logger.error(f"[runner] {label} failed: {e}")
            return outcome(PairStatus.FAILED, error_message=str(e))
        finally:
            with self._lock:
                self._active_pairs.discard(key)

    # -------------------------
    # HELPERS
    # -------------------------

    def _snapshot(
        self,
        pairs: Sequence[Tuple[ApplicationDefinition, DeploymentTarget]],
    ) -> Dict[PairKey, Optional[LedgerEntry]]:
        return {
            (app.name, target.name): self._ledger.get(app.name, target.name)
            for app, target in pairs
        }

    def _all_recorded(
        self,
        release: Release,
        pairs: Sequence[Tuple[ApplicationDefinition, DeploymentTarget]],
    ) -> bool:
        for app, target in pairs:
            entry = self._ledger.get(app.name, target.name)
            if entry is None or entry.release_tag != release.tag:
                return False
        return True

    def _signal_cancel(self, control: _RunControl) -> None:
        if control.cancel_event is not None:
            control.cancel_event.set()
        self._gate.cancel(control.summary.run_id, "cancelled by operator")

    @staticmethod
    def _record_not_started(plan: DeploymentPlan, summary: RunSummary) -> None:
        for index in range(len(summary.stages), len(plan.stages)):
            stage = plan.stages[index]
            summary.stages.append(StageReport(
                index=index,
                description=stage.description,
                outcomes=[
                    PairOutcome(
                        application=app.name,
                        target=target.name,
                        status=PairStatus.NOT_STARTED,
                        release_tag=plan.release.tag,
                    )
                    for app, target in stage.pairs
                ],
            ))

    @staticmethod
    def _status_of(summary: RunSummary) -> RunStatus:
        outcomes = summary.outcomes
        if outcomes and all(o.succeeded for o in outcomes):
            return RunStatus.SUCCESS
        if any(o.status == PairStatus.COMPLETED for o in outcomes):
            return RunStatus.PARTIAL_FAILURE
        return RunStatus.FAILED

    def _finish(self, summary: RunSummary, status: RunStatus) -> None:
        summary.status = status
        summary.pending_stage = None
        summary.finished_at = utcnow()

        logger.info(
            f"[runner] {summary.run_id} finished: {status.value}"
            + (f" ({summary.halt_reason})" if summary.halt_reason else "")
        )
        self._emitter.emit([PromotionEvent.run_finished(summary)])
        self._prune()

    def _prune(self) -> None:
        with self._lock:
            finished = sorted(
                (c.summary for c in self._runs.values() if c.summary.is_terminal),
                key=lambda s: s.finished_at,
            )
            for summary in finished[:max(0, len(finished) - self._max_finished_runs)]:
                del self._runs[summary.run_id]
