# promotion_engine/orchestrator/promotion_service.py
"""Promotion service - turns a trigger into a run."""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Dict, List, Sequence, Set
from uuid import uuid4

from promotion_engine.core.errors import (
    ArtifactFetchError,
    LedgerError,
    PlanValidationError,
    ReleaseSourceError,
)
from promotion_engine.core.ledger import VersionLedger
from promotion_engine.core.models import (
    ApplicationDefinition,
    DeploymentPlan,
    PlanPolicy,
    PromotionRequest,
    Release,
    RunSummary,
)
from promotion_engine.orchestrator.pipeline_runner import PipelineRunner
from promotion_engine.planner.planner import DeploymentPlanner
from promotion_engine.release.source import ReleaseSource, is_new_release

logger = logging.getLogger(__name__)


class PromotionService:
    """
    Entry point of a promotion run.

    Flow:
    1. Resolve the release (explicit tag or latest)
    2. Build the plan from the request's policy
    3. Fetch artifacts for pairs not yet at the release
    4. Hand the plan to the runner

    Failures in steps 1-3 fail the run before any stage is dispatched;
    the ledger is never touched.
    """

    def __init__(
        self,
        release_source: ReleaseSource,
        planner: DeploymentPlanner,
        runner: PipelineRunner,
        ledger: VersionLedger,
        artifact_dir: Path,
    ):
        self._releases = release_source
        self._planner = planner
        self._runner = runner
        self._ledger = ledger
        self._artifact_dir = Path(artifact_dir)

        self._tasks: Set[asyncio.Task] = set()

    @property
    def runner(self) -> PipelineRunner:
        return self._runner

    # -------------------------
    # POLICY
    # -------------------------

    def build_policy(self, request: PromotionRequest) -> PlanPolicy:
        """
        deploy_app1 / deploy_app2 select by position in the configured
        application list; a single-application family ignores them.
        """
        applications = self._planner.applications

        if len(applications) == 1:
            names = (applications[0].name,)
        else:
            flags = (request.deploy_app1, request.deploy_app2)
            names = tuple(
                app.name for app, selected in zip(applications, flags) if selected
            )

        return PlanPolicy(
            applications=names,
            dual_foundation=self._planner.topology.dual_foundation,
            skip_nonprod=request.skip_nonprod,
        )

    # -------------------------
    # RUN
    # -------------------------

    def start(self, request: PromotionRequest) -> str:
        """Schedule promote() on the running loop and return the run id."""
        run_id = request.run_id or str(uuid4())
        self._runner.register(run_id, request.release_tag)

        task = asyncio.get_running_loop().create_task(
            self.promote(PromotionRequest(
                release_tag=request.release_tag,
                skip_nonprod=request.skip_nonprod,
                deploy_app1=request.deploy_app1,
                deploy_app2=request.deploy_app2,
                run_id=run_id,
            ))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run_id

    async def promote(self, request: PromotionRequest) -> RunSummary:
        run_id = request.run_id or str(uuid4())
        self._runner.register(run_id, request.release_tag)

        try:
            release = await asyncio.to_thread(self._releases.resolve, request.release_tag)
        except ReleaseSourceError as e:
            logger.error(f"[promote] {run_id} release lookup failed: {e}")
            return self._runner.abort(run_id, f"release lookup failed: {e}", request.release_tag)

        try:
            plan = self._planner.build(release, self.build_policy(request))
        except PlanValidationError as e:
            logger.error(f"[promote] {run_id} invalid plan: {e}")
            return self._runner.abort(run_id, f"invalid plan: {e}", release.tag)

        try:
            pending = await asyncio.to_thread(self._pending_applications, plan)
        except LedgerError as e:
            logger.error(f"[promote] {run_id} ledger unavailable: {e}")
            return self._runner.abort(run_id, f"ledger unavailable: {e}", release.tag)

        if not pending:
            logger.info(f"[promote] {run_id} {release.tag} already promoted everywhere")
            return await self._runner.run(plan, run_id=run_id)

        # Artifacts live only as long as the run
        run_dir = self._artifact_dir / run_id
        try:
            try:
                artifacts = await asyncio.to_thread(self._fetch_artifacts, release, pending, run_dir)
            except ArtifactFetchError as e:
                logger.error(f"[promote] {run_id} artifact fetch failed: {e}")
                return self._runner.abort(run_id, f"artifact fetch failed: {e}", release.tag)

            return await self._runner.run(plan, run_id=run_id, artifacts=artifacts)
        finally:
            await asyncio.to_thread(shutil.rmtree, run_dir, ignore_errors=True)
            logger.debug(f"[promote] {run_id} removed {run_dir}")

    async def check_for_release(self) -> Dict[str, object]:
        """Whether the latest upstream release is missing from any configured pair."""
        release = await asyncio.to_thread(self._releases.latest_release)

        pairs = [
            (app, target)
            for app in self._planner.applications
            for target in self._planner.topology.targets()
        ]
        is_new = await asyncio.to_thread(is_new_release, release, self._ledger, pairs)

        return {
            "release_tag": release.tag,
            "published_at": release.published_at,
            "new_release": is_new,
            "artifacts": [a.name for a in release.artifacts],
            "manifests": list(release.manifests),
        }

    # -------------------------
    # HELPERS
    # -------------------------

    def _pending_applications(self, plan: DeploymentPlan) -> List[ApplicationDefinition]:
        """Applications with at least one pair not yet at the plan's release."""
        pending: List[ApplicationDefinition] = []
        for app, target in plan.pairs():
            if app in pending:
                continue
            if is_new_release(plan.release, self._ledger, [(app, target)]):
                pending.append(app)
        return pending

    def _fetch_artifacts(
        self,
        release: Release,
        applications: Sequence[ApplicationDefinition],
        dest: Path,
    ) -> Dict[str, Path]:
        artifacts: Dict[str, Path] = {}
        for app in applications:
            artifacts[app.name] = self._releases.fetch_artifact(release, app, dest)
            logger.info(f"[promote] fetched {artifacts[app.name].name} into {dest}")
        return artifacts

