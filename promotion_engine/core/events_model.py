"""Event models for release promotion."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from promotion_engine.core.models import utcnow


@dataclass
class PromotionEvent:
    """Base promotion event."""

    event_type: str
    run_id: Optional[str]
    timestamp: datetime
    metadata: Dict[str, Any]

    @staticmethod
    def run_started(run_id, release_tag, stage_count):
        """Run started event."""
        return PromotionEvent(
            event_type="run.started",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "release_tag": release_tag,
                "stages": stage_count,
            }
        )

    @staticmethod
    def stage_started(run_id, index, stage):
        """Stage dispatched event."""
        return PromotionEvent(
            event_type="stage.started",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "index": index,
                "description": stage.description,
                "pairs": [f"{app.name}@{target.name}" for app, target in stage.pairs],
            }
        )

    @staticmethod
    def phase_changed(run_id, state):
        """Cutover phase transition event."""
        return PromotionEvent(
            event_type="cutover.phase_changed",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "pair": state.label,
                "phase": state.phase.value,
            }
        )

    @staticmethod
    def cutover_completed(run_id, state):
        """Cutover completed event."""
        return PromotionEvent(
            event_type="cutover.completed",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "pair": state.label,
                "release_tag": state.release_tag,
                "green_instance": state.green_instance,
                "warnings": list(state.warnings),
            }
        )

    @staticmethod
    def cutover_failed(run_id, state):
        """Cutover failed event."""
        return PromotionEvent(
            event_type="cutover.failed",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "pair": state.label,
                "release_tag": state.release_tag,
                "error_message": state.error_message,
            }
        )

    @staticmethod
    def gate_pending(run_id, stage_description):
        """Approval gate suspended event."""
        return PromotionEvent(
            event_type="gate.pending",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "stage": stage_description,
            }
        )

    @staticmethod
    def gate_resolved(run_id, resolution):
        """Approval gate resolved event."""
        return PromotionEvent(
            event_type="gate.resolved",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "decision": resolution.decision.value,
                "reviewer": resolution.reviewer,
                "reason": resolution.reason,
            }
        )

    @staticmethod
    def ledger_recorded(run_id, application, target, release_tag, previous_tag):
        """Ledger entry written event."""
        return PromotionEvent(
            event_type="ledger.recorded",
            run_id=run_id,
            timestamp=utcnow(),
            metadata={
                "application": application,
                "target": target,
                "release_tag": release_tag,
                "previous_tag": previous_tag,
            }
        )

    @staticmethod
    def run_finished(summary):
        """Run reached a terminal status."""
        return PromotionEvent(
            event_type="run.finished",
            run_id=summary.run_id,
            timestamp=utcnow(),
            metadata={
                "status": summary.status.value,
                "release_tag": summary.release_tag,
                "halt_reason": summary.halt_reason,
            }
        )
