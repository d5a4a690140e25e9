# promotion_engine/executor/blue_green.py
"""Blue-green cutover of one (application, target) pair."""

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Optional

from promotion_engine.core.errors import HealthCheckFailed, PlatformOperationError
from promotion_engine.core.events import EventEmitter, NullEventEmitter
from promotion_engine.core.events_model import PromotionEvent
from promotion_engine.core.models import (
    ApplicationDefinition,
    CutoverPhase,
    CutoverState,
    CutoverStrategy,
    DeploymentTarget,
    Release,
    green_identity,
    resolve_route,
    resolve_strategy,
)
from promotion_engine.core.state_machine import CutoverStateMachine
from promotion_engine.executor.config import HealthCheckPolicy
from promotion_engine.platform.interfaces import InstanceHealth, TargetPlatform

logger = logging.getLogger(__name__)


class BlueGreenExecutor:
    """
    Drives one cutover through its phases.

    Order of side effects on the route:
    - green is pushed without a route and must pass its health check
    - green is mapped before any blue is unmapped
    - blues are stopped and deleted only once they are unmapped

    Platform calls block, so each runs in a worker thread.
    """

    def __init__(
        self,
        platform: TargetPlatform,
        health_policy: Optional[HealthCheckPolicy] = None,
        emitter: Optional[EventEmitter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._platform = platform
        self._health = health_policy or HealthCheckPolicy()
        self._emitter = emitter or NullEventEmitter()
        self._clock = clock

    async def execute(
        self,
        application: ApplicationDefinition,
        target: DeploymentTarget,
        release: Release,
        artifact_path: Optional[Path],
        *,
        run_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CutoverState:
        state = CutoverState(
            application=application.name,
            target=target.name,
            release_tag=release.tag,
        )
        artifact = str(artifact_path) if artifact_path else None

        if resolve_strategy(application, target) == CutoverStrategy.DIRECT:
            await self._direct(state, application, target, artifact, run_id, cancel_event)
        else:
            await self._blue_green(state, application, target, release, artifact, run_id, cancel_event)

        if state.succeeded:
            logger.info(f"[cutover {state.label}] ✅ {release.tag} complete")
            self._emitter.emit([PromotionEvent.cutover_completed(run_id, state)])
        else:
            logger.error(f"[cutover {state.label}] ❌ {release.tag} failed: {state.error_message}")
            self._emitter.emit([PromotionEvent.cutover_failed(run_id, state)])

        return state

    # -------------------------
    # STRATEGIES
    # -------------------------

    async def _blue_green(
        self,
        state: CutoverState,
        application: ApplicationDefinition,
        target: DeploymentTarget,
        release: Release,
        artifact: Optional[str],
        run_id: Optional[str],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        route = resolve_route(application, target)
        identity = green_identity(application, release)
        state.green_instance = identity

        # STAGING
        self._transition(state, CutoverPhase.STAGING, run_id)
        try:
            routed = await self._call(
                self._platform.get_routed_instances, target, application.name, route
            )
        except PlatformOperationError as e:
            self._fail(state, f"could not read route {route}: {e}", run_id)
            return

        state.blue_instances = [name for name in routed if name != identity]
        already_live = identity in routed

        if already_live:
            logger.info(f"[cutover {state.label}] {identity} already serves {route}")
        else:
            try:
                await self._call(
                    self._platform.push_instance,
                    target,
                    application.manifest_path,
                    identity,
                    artifact,
                    True,
                )
            except PlatformOperationError as e:
                await self._discard_green(state, target)
                self._fail(state, f"push failed: {e}", run_id)
                return

        # HEALTH_CHECKING
        self._transition(state, CutoverPhase.HEALTH_CHECKING, run_id)
        try:
            await self._await_healthy(state, target, identity, cancel_event)
        except HealthCheckFailed as e:
            if not already_live:
                await self._discard_green(state, target)
            self._fail(state, str(e), run_id)
            return

        # SWITCHING
        self._transition(state, CutoverPhase.SWITCHING, run_id)
        if not already_live:
            try:
                await self._call(self._platform.map_route, target, route, identity)
            except PlatformOperationError as e:
                await self._discard_green(state, target)
                self._fail(state, f"map-route failed: {e}", run_id)
                return

        if not state.blue_instances:
            self._transition(state, CutoverPhase.COMPLETE, run_id)
            return

        # DRAINING
        self._transition(state, CutoverPhase.DRAINING, run_id)
        drained = []
        for blue in state.blue_instances:
            try:
                await self._call(self._platform.unmap_route, target, route, blue)
                drained.append(blue)
            except PlatformOperationError as e:
                self._warn(state, f"unmap-route {blue} failed, instance left mapped: {e}")

        if not drained:
            self._transition(state, CutoverPhase.COMPLETE, run_id)
            return

        # CLEANUP
        self._transition(state, CutoverPhase.CLEANUP, run_id)
        for blue in drained:
            try:
                await self._call(self._platform.stop_instance, target, blue)
                await self._call(self._platform.delete_instance, target, blue)
            except PlatformOperationError as e:
                self._warn(state, f"cleanup of {blue} failed: {e}")

        self._transition(state, CutoverPhase.COMPLETE, run_id)

    async def _direct(
        self,
        state: CutoverState,
        application: ApplicationDefinition,
        target: DeploymentTarget,
        artifact: Optional[str],
        run_id: Optional[str],
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """In-place redeploy for targets without a route to switch."""
        identity = application.name
        state.green_instance = identity

        self._transition(state, CutoverPhase.STAGING, run_id)
        try:
            await self._call(
                self._platform.push_instance,
                target,
                application.manifest_path,
                identity,
                artifact,
                False,
            )
        except PlatformOperationError as e:
            self._fail(state, f"push failed: {e}", run_id)
            return

        self._transition(state, CutoverPhase.HEALTH_CHECKING, run_id)
        try:
            await self._await_healthy(state, target, identity, cancel_event)
        except HealthCheckFailed as e:
            self._fail(state, str(e), run_id)
            return

        self._transition(state, CutoverPhase.COMPLETE, run_id)

    # -------------------------
    # HEALTH POLL
    # -------------------------

    async def _await_healthy(
        self,
        state: CutoverState,
        target: DeploymentTarget,
        instance: str,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """
        Poll until required_consecutive healthy reports in a row.

        Raises HealthCheckFailed on an UNHEALTHY report, deadline,
        attempt cap or cancellation. Query errors count as a miss.
        """
        policy = self._health
        started = self._clock()
        consecutive = 0

        for attempt in range(policy.max_attempts):
            if cancel_event is not None and cancel_event.is_set():
                raise HealthCheckFailed("health check aborted: run cancelled")

            if self._clock() - started > policy.deadline_seconds:
                raise HealthCheckFailed(
                    f"{instance} not healthy within {policy.deadline_seconds}s"
                )

            try:
                report = await self._call(self._platform.query_health, target, instance)
            except PlatformOperationError as e:
                logger.warning(f"[cutover {state.label}] health query {attempt + 1} failed: {e}")
                consecutive = 0
            else:
                if report.status == InstanceHealth.UNHEALTHY:
                    raise HealthCheckFailed(f"{instance} reported unhealthy ({report.detail})")

                if report.healthy:
                    consecutive += 1
                    logger.debug(
                        f"[cutover {state.label}] healthy {consecutive}/{policy.required_consecutive}"
                    )
                    if consecutive >= policy.required_consecutive:
                        return
                else:
                    consecutive = 0

            if attempt + 1 < policy.max_attempts:
                await self._pause(policy.delay_for(attempt), cancel_event)

        raise HealthCheckFailed(
            f"{instance} not healthy after {policy.max_attempts} attempts"
        )

    async def _pause(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep, returning early if the run is cancelled."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # -------------------------
    # HELPERS
    # -------------------------

    async def _call(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    async def _discard_green(self, state: CutoverState, target: DeploymentTarget) -> None:
        """Best-effort teardown of a green that never received traffic."""
        try:
            await self._call(self._platform.delete_instance, target, state.green_instance)
        except PlatformOperationError as e:
            self._warn(state, f"could not delete {state.green_instance}: {e}")

    def _transition(self, state: CutoverState, phase: CutoverPhase, run_id: Optional[str]) -> None:
        CutoverStateMachine.transition(state, phase)
        logger.info(f"[cutover {state.label}] -> {phase.value}")
        self._emitter.emit([PromotionEvent.phase_changed(run_id, state)])

    def _fail(self, state: CutoverState, reason: str, run_id: Optional[str]) -> None:
        CutoverStateMachine.fail(state, reason)
        logger.info(f"[cutover {state.label}] -> FAILED")
        self._emitter.emit([PromotionEvent.phase_changed(run_id, state)])

    def _warn(self, state: CutoverState, message: str) -> None:
        logger.warning(f"[cutover {state.label}] {message}")
        state.warnings.append(message)
