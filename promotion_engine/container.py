#promotion_engine/container.py

"""Dependency injection container - wires all services together."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from promotion_engine.approval.gate import ApprovalGate
from promotion_engine.approval.notifier import (
    GitHubDeploymentNotifier,
    LoggingNotifier,
    NotificationEmitter,
)
from promotion_engine.config.settings import PromotionSettings
from promotion_engine.core.events import EventEmitter, LoggingEventEmitter
from promotion_engine.core.ledger import VersionLedger
from promotion_engine.executor.blue_green import BlueGreenExecutor
from promotion_engine.infrastructure.sql.config import DatabaseSettings
from promotion_engine.infrastructure.sql.database import (
    create_db_engine,
    get_session_factory,
    init_db,
)
from promotion_engine.infrastructure.sql.ledger import SqlVersionLedger
from promotion_engine.orchestrator.pipeline_runner import PipelineRunner
from promotion_engine.orchestrator.promotion_service import PromotionService
from promotion_engine.planner.planner import DeploymentPlanner
from promotion_engine.platform.cf_cli import CloudFoundryCliPlatform
from promotion_engine.platform.interfaces import TargetPlatform
from promotion_engine.release.github import GitHubReleaseSource
from promotion_engine.release.source import ReleaseSource

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: PromotionSettings
    ledger: VersionLedger
    platform: TargetPlatform
    release_source: ReleaseSource
    notifier: NotificationEmitter
    emitter: EventEmitter
    gate: ApprovalGate
    executor: BlueGreenExecutor
    planner: DeploymentPlanner
    runner: PipelineRunner
    service: PromotionService


def build_container(
    settings: Optional[PromotionSettings] = None,
    db_settings: Optional[DatabaseSettings] = None,
) -> Container:
    """
    Wire the production object graph.

    Raises ConfigurationError when required settings are missing.
    """
    settings = settings or PromotionSettings()
    db_settings = db_settings or DatabaseSettings()

    # ============================================
    # CONFIG
    # ============================================

    applications = settings.applications()
    topology = settings.topology()
    token = settings.github_token()
    reviewers = settings.reviewers()

    # ============================================
    # LEDGER
    # ============================================

    engine = create_db_engine(db_settings=db_settings)
    init_db(engine)
    ledger = SqlVersionLedger(session_factory=get_session_factory(engine))

    # ============================================
    # EXTERNAL COLLABORATORS
    # ============================================

    platform = CloudFoundryCliPlatform(
        cf_binary=settings.cf_binary,
        home_root=settings.cf_home_root,
        timeout_seconds=settings.cf_command_timeout_seconds,
    )

    release_source = GitHubReleaseSource(
        repo=settings.upstream_repo(),
        token=token,
        host=settings.ghe_host,
    )

    if token:
        notifier = GitHubDeploymentNotifier(
            repo=settings.upstream_repo(),
            token=token,
            host=settings.ghe_host,
            reviewers=reviewers,
        )
    else:
        notifier = LoggingNotifier()

    # ============================================
    # EVENTS
    # ============================================

    emitter = LoggingEventEmitter()

    # ============================================
    # SERVICES
    # ============================================

    gate = ApprovalGate(notifier=notifier, reviewers=reviewers, emitter=emitter)
    executor = BlueGreenExecutor(
        platform=platform,
        health_policy=settings.health_policy(),
        emitter=emitter,
    )
    planner = DeploymentPlanner(applications, topology)
    runner = PipelineRunner(
        executor=executor,
        gate=gate,
        ledger=ledger,
        emitter=emitter,
        max_finished_runs=settings.max_finished_runs,
    )
    service = PromotionService(
        release_source=release_source,
        planner=planner,
        runner=runner,
        ledger=ledger,
        artifact_dir=Path(settings.artifact_dir),
    )

    logger.info(
        f"[container] {len(applications)} application(s), "
        f"{'dual' if topology.dual_foundation else 'single'} foundation"
    )

    return Container(
        settings=settings,
        ledger=ledger,
        platform=platform,
        release_source=release_source,
        notifier=notifier,
        emitter=emitter,
        gate=gate,
        executor=executor,
        planner=planner,
        runner=runner,
        service=service,
    )
