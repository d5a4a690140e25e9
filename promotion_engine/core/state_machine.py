# promotion_engine/core/state_machine.py

from datetime import datetime
from typing import Optional

from promotion_engine.core.errors import InvalidCutoverTransition
from promotion_engine.core.models import CutoverPhase, CutoverState, TERMINAL_PHASES, utcnow


ALLOWED_TRANSITIONS = {
    CutoverPhase.IDLE: {
        CutoverPhase.STAGING,
    },
    CutoverPhase.STAGING: {
        CutoverPhase.HEALTH_CHECKING,
        CutoverPhase.FAILED,
    },
    CutoverPhase.HEALTH_CHECKING: {
        CutoverPhase.SWITCHING,
        CutoverPhase.COMPLETE,  # direct redeploy
        CutoverPhase.FAILED,
    },
    CutoverPhase.SWITCHING: {
        CutoverPhase.DRAINING,
        CutoverPhase.COMPLETE,  # no blue instance
        CutoverPhase.FAILED,
    },
    CutoverPhase.DRAINING: {
        CutoverPhase.CLEANUP,
        CutoverPhase.COMPLETE,  # drain failed, both instances stay mapped
    },
    CutoverPhase.CLEANUP: {
        CutoverPhase.COMPLETE,
    },
}


class CutoverStateMachine:
    @staticmethod
    def transition(
        state: CutoverState,
        new_phase: CutoverPhase,
        *,
        now: Optional[datetime] = None,
    ) -> CutoverState:
        now = now or utcnow()

        current = state.phase

        if current == new_phase:
            return state

        allowed = ALLOWED_TRANSITIONS.get(current, set())
        if new_phase not in allowed:
            raise InvalidCutoverTransition(
                f"{state.label}: cannot transition from {current.value} to {new_phase.value}"
            )

        if new_phase == CutoverPhase.STAGING:
            state.started_at = now

        elif new_phase in TERMINAL_PHASES:
            state.finished_at = now

        state.phase = new_phase
        state.history.append(new_phase)
        return state

    @staticmethod
    def fail(state: CutoverState, reason: str, *, now: Optional[datetime] = None) -> CutoverState:
        state.error_message = reason
        return CutoverStateMachine.transition(state, CutoverPhase.FAILED, now=now)
