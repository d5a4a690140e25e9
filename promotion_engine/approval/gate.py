# promotion_engine/approval/gate.py
"""Suspends a run before production until an external signal arrives."""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional

from promotion_engine.core.errors import NoPendingApprovalError, UnauthorizedReviewerError
from promotion_engine.core.events import EventEmitter, NullEventEmitter
from promotion_engine.core.events_model import PromotionEvent
from promotion_engine.core.models import ApprovalDecision, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatePending:
    """Notice handed to the notifier when a run starts waiting."""
    run_id: str
    stage_description: str
    release_tag: Optional[str] = None
    requested_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ApprovalResolution:
    decision: ApprovalDecision
    reviewer: Optional[str] = None
    reason: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.decision == ApprovalDecision.APPROVED


@dataclass
class _Waiter:
    notice: GatePending
    loop: asyncio.AbstractEventLoop
    future: asyncio.Future


class ApprovalGate:
    """
    One pending future per waiting run.

    await_approval parks the coroutine on a future; no thread is held.
    approve/reject/cancel may be called from any thread (API handlers
    run in a threadpool) and resolve the future on its own loop.
    There is no timeout.
    """

    def __init__(
        self,
        notifier=None,
        reviewers: Optional[Iterable[str]] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        self._notifier = notifier
        self._reviewers: FrozenSet[str] = frozenset(r.strip() for r in (reviewers or ()) if r.strip())
        self._emitter = emitter or NullEventEmitter()

        self._waiters: Dict[str, _Waiter] = {}
        self._lock = threading.Lock()

    # -------------------------
    # SUSPEND
    # -------------------------

    async def await_approval(
        self,
        run_id: str,
        stage_description: str,
        release_tag: Optional[str] = None,
    ) -> ApprovalResolution:
        loop = asyncio.get_running_loop()
        notice = GatePending(
            run_id=run_id,
            stage_description=stage_description,
            release_tag=release_tag,
        )
        waiter = _Waiter(notice=notice, loop=loop, future=loop.create_future())

        with self._lock:
            if run_id in self._waiters:
                raise ValueError(f"Run {run_id} is already waiting for approval")
            self._waiters[run_id] = waiter

        logger.info(f"[gate] {run_id} waiting for approval: {stage_description}")
        self._emitter.emit([PromotionEvent.gate_pending(run_id, stage_description)])

        try:
            await self._notify("notify_gate_pending", notice)
            resolution = await waiter.future
        finally:
            with self._lock:
                self._waiters.pop(run_id, None)

        logger.info(
            f"[gate] {run_id} resolved: {resolution.decision.value}"
            + (f" by {resolution.reviewer}" if resolution.reviewer else "")
        )
        self._emitter.emit([PromotionEvent.gate_resolved(run_id, resolution)])
        await self._notify("notify_gate_resolved", notice, resolution)

        return resolution

    # -------------------------
    # SIGNALS
    # -------------------------

    def approve(self, run_id: str, reviewer: str) -> None:
        self._check_reviewer(reviewer)
        self._resolve(run_id, ApprovalResolution(ApprovalDecision.APPROVED, reviewer=reviewer))

    def reject(self, run_id: str, reviewer: str, reason: Optional[str] = None) -> None:
        self._check_reviewer(reviewer)
        self._resolve(
            run_id,
            ApprovalResolution(ApprovalDecision.REJECTED, reviewer=reviewer, reason=reason),
        )

    def cancel(self, run_id: str, reason: Optional[str] = None) -> bool:
        """Operational abort. Returns False when the run is not waiting."""
        try:
            self._resolve(run_id, ApprovalResolution(ApprovalDecision.CANCELLED, reason=reason))
        except NoPendingApprovalError:
            return False
        return True

    def is_waiting(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._waiters

    def pending(self) -> List[GatePending]:
        with self._lock:
            return [w.notice for w in self._waiters.values()]

    # -------------------------
    # INTERNALS
    # -------------------------

    def _check_reviewer(self, reviewer: str) -> None:
        if self._reviewers and reviewer not in self._reviewers:
            raise UnauthorizedReviewerError(f"{reviewer} is not an approval reviewer")

    def _resolve(self, run_id: str, resolution: ApprovalResolution) -> None:
        with self._lock:
            waiter = self._waiters.get(run_id)
            if waiter is None or waiter.future.done():
                raise NoPendingApprovalError(f"Run {run_id} is not waiting for approval")
            # First signal wins; later ones see the entry as gone.
            del self._waiters[run_id]

        waiter.loop.call_soon_threadsafe(self._set_result, waiter.future, resolution)

    @staticmethod
    def _set_result(future: asyncio.Future, resolution: ApprovalResolution) -> None:
        if not future.done():
            future.set_result(resolution)

    async def _notify(self, method: str, *args) -> None:
        """Notifier failures never affect the run."""
        if self._notifier is None:
            return
        try:
            await asyncio.to_thread(getattr(self._notifier, method), *args)
        except Exception as e:
            logger.warning(f"[gate] notifier {method} failed: {e}")
