# promotion_engine/core/models.py
"""Core domain models for release promotion."""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterator, List, Optional, Tuple


# ============================================
# ENUMS
# ============================================

class TargetEnvironment(Enum):
    """Which side of the approval gate a target sits on."""
    NONPROD = "NONPROD"
    PROD = "PROD"


class CutoverStrategy(Enum):
    """How a new release replaces the running one on a target."""
    BLUE_GREEN = "BLUE_GREEN"
    DIRECT = "DIRECT"


class CutoverPhase(Enum):
    """Cutover state machine phases."""
    IDLE = "IDLE"
    STAGING = "STAGING"
    HEALTH_CHECKING = "HEALTH_CHECKING"
    SWITCHING = "SWITCHING"
    DRAINING = "DRAINING"
    CLEANUP = "CLEANUP"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


TERMINAL_PHASES = frozenset({CutoverPhase.COMPLETE, CutoverPhase.FAILED})


class PairStatus(Enum):
    """Outcome of one (application, target) pair within a run."""
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    CONFLICT = "CONFLICT"
    NOT_STARTED = "NOT_STARTED"


class RunStatus(Enum):
    """Promotion run status."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    SUCCESS = "SUCCESS"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"
    FAILED = "FAILED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_RUN_STATUSES = frozenset({
    RunStatus.SUCCESS,
    RunStatus.PARTIAL_FAILURE,
    RunStatus.FAILED,
    RunStatus.REJECTED,
    RunStatus.CANCELLED,
})


class ApprovalDecision(Enum):
    """Resolution of an approval gate."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# RELEASE
# ============================================

@dataclass(frozen=True)
class ArtifactRef:
    """A downloadable asset attached to a release."""
    name: str
    url: str


@dataclass(frozen=True)
class Release:
    """Upstream release. Immutable once fetched."""
    tag: str
    artifacts: Tuple[ArtifactRef, ...] = ()
    manifests: Tuple[str, ...] = ()
    published_at: Optional[datetime] = None

    @property
    def version(self) -> str:
        """Tag without a leading 'v' (v1.2.0 -> 1.2.0)."""
        if len(self.tag) > 1 and self.tag[0] in "vV" and self.tag[1].isdigit():
            return self.tag[1:]
        return self.tag

    def find_artifact(self, name: str) -> Optional[ArtifactRef]:
        for artifact in self.artifacts:
            if artifact.name == name:
                return artifact
        return None

    def is_older_than(self, published_at: Optional[datetime]) -> bool:
        """True when this release was published before the given instant."""
        if self.published_at is None or published_at is None:
            return False
        return self.published_at < published_at


# ============================================
# APPLICATIONS AND TARGETS
# ============================================

@dataclass(frozen=True)
class ApplicationDefinition:
    """
    One independently deployable application.

    artifact_pattern may reference {name} and {version}.
    routes maps a target name to the route this application owns there.
    """
    name: str
    manifest_path: str = "manifest.yml"
    artifact_pattern: str = "{name}-{version}.zip"
    depends_on: Optional[str] = None
    routes: Tuple[Tuple[str, str], ...] = ()

    def artifact_name(self, release: Release) -> str:
        return self.artifact_pattern.format(name=self.name, version=release.version)

    def route_for(self, target_name: str) -> Optional[str]:
        for name, route in self.routes:
            if name == target_name:
                return route
        return None


@dataclass(frozen=True)
class Foundation:
    """An independently addressable platform installation. Read-only."""
    name: str
    api: str
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class DeploymentTarget:
    """One (foundation, org, space) an application is deployed into."""
    name: str
    environment: TargetEnvironment
    foundation: Foundation
    org: str
    space: str
    route: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == TargetEnvironment.PROD


@dataclass(frozen=True)
class TargetTopology:
    """The nonprod and prod targets of a deployment family."""
    nonprod: DeploymentTarget
    prod: DeploymentTarget
    dual_foundation: bool

    def targets(self) -> Tuple[DeploymentTarget, DeploymentTarget]:
        return (self.nonprod, self.prod)


def resolve_route(application: ApplicationDefinition, target: DeploymentTarget) -> Optional[str]:
    """Route the application is served on at the target (per-app override wins)."""
    return application.route_for(target.name) or target.route


def resolve_strategy(application: ApplicationDefinition, target: DeploymentTarget) -> CutoverStrategy:
    """Blue-green needs a route to switch; without one the app is redeployed in place."""
    if resolve_route(application, target):
        return CutoverStrategy.BLUE_GREEN
    return CutoverStrategy.DIRECT


_IDENTITY_UNSAFE = re.compile(r"[^A-Za-z0-9-]+")
_PLAIN_TAG = re.compile(r"v(\d+(?:\.\d+)*)")


def green_identity(application: ApplicationDefinition, release: Release) -> str:
    """
    Name of the instance carrying the given release.

    v1.2.0 -> my-app-1-2-0. Any other tag keeps a readable part and gets a
    digest of the raw tag (1.2.0 -> my-app-1-2-0-t<sha1[:8]>), so two tags
    never map to the same instance. Plain names never contain a letter
    after the application name, digested ones always do.
    """
    plain = _PLAIN_TAG.fullmatch(release.tag)
    if plain:
        return f"{application.name}-{plain.group(1).replace('.', '-')}"

    readable = _IDENTITY_UNSAFE.sub("-", release.version).strip("-")
    digest = hashlib.sha1(release.tag.encode("utf-8")).hexdigest()[:8]
    if readable:
        return f"{application.name}-{readable}-t{digest}"
    return f"{application.name}-t{digest}"


def pair_label(application: str, target: str) -> str:
    return f"{application}@{target}"


# ============================================
# PLAN
# ============================================

Pair = Tuple[ApplicationDefinition, DeploymentTarget]


@dataclass(frozen=True)
class PlanPolicy:
    """Which applications a run includes and how the plan is shaped."""
    applications: Tuple[str, ...]
    dual_foundation: bool
    skip_nonprod: bool = False


@dataclass(frozen=True)
class Stage:
    """Pairs executed concurrently as one step of a plan."""
    pairs: Tuple[Pair, ...]
    requires_approval: bool = False
    hard_gate: bool = False
    description: str = ""


@dataclass(frozen=True)
class DeploymentPlan:
    """Ordered stages for one release; stages run strictly in order."""
    release: Release
    stages: Tuple[Stage, ...]
    policy: PlanPolicy

    def pairs(self) -> Iterator[Pair]:
        for stage in self.stages:
            yield from stage.pairs

    def application_names(self) -> List[str]:
        names: List[str] = []
        for application, _ in self.pairs():
            if application.name not in names:
                names.append(application.name)
        return names


# ============================================
# CUTOVER STATE
# ============================================

@dataclass
class CutoverState:
    """One cutover attempt for one (application, target)."""
    application: str
    target: str
    release_tag: str

    phase: CutoverPhase = CutoverPhase.IDLE
    green_instance: Optional[str] = None
    blue_instances: List[str] = field(default_factory=list)

    warnings: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    history: List[CutoverPhase] = field(default_factory=lambda: [CutoverPhase.IDLE])

    @property
    def label(self) -> str:
        return pair_label(self.application, self.target)

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def succeeded(self) -> bool:
        return self.phase == CutoverPhase.COMPLETE


# ============================================
# LEDGER
# ============================================

@dataclass(frozen=True)
class LedgerEntry:
    """Last successfully promoted release for one (application, target)."""
    application: str
    target: str
    release_tag: str
    recorded_at: datetime
    release_published_at: Optional[datetime] = None
    run_id: Optional[str] = None
    previous_tag: Optional[str] = None


# ============================================
# RUN REPORTING
# ============================================

@dataclass
class PairOutcome:
    """Reported result of one pair in a run."""
    application: str
    target: str
    status: PairStatus
    release_tag: str = ""
    phase: Optional[CutoverPhase] = None
    warnings: List[str] = field(default_factory=list)
    error_message: Optional[str] = None

    @property
    def label(self) -> str:
        return pair_label(self.application, self.target)

    @property
    def succeeded(self) -> bool:
        return self.status in (PairStatus.COMPLETED, PairStatus.SKIPPED)


@dataclass
class StageReport:
    """Outcomes of one stage."""
    index: int
    description: str
    outcomes: List[PairOutcome] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return any(not o.succeeded for o in self.outcomes)


@dataclass
class RunSummary:
    """Run-level view of a promotion."""
    run_id: str
    release_tag: Optional[str] = None
    status: RunStatus = RunStatus.PENDING
    stages: List[StageReport] = field(default_factory=list)

    halt_reason: Optional[str] = None
    approval: Optional[ApprovalDecision] = None
    approval_by: Optional[str] = None
    pending_stage: Optional[str] = None

    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def outcomes(self) -> List[PairOutcome]:
        return [o for stage in self.stages for o in stage.outcomes]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def outcome_for(self, application: str, target: str) -> Optional[PairOutcome]:
        for outcome in self.outcomes:
            if outcome.application == application and outcome.target == target:
                return outcome
        return None


# ============================================
# TRIGGER
# ============================================

@dataclass(frozen=True)
class PromotionRequest:
    """Inputs of a manually or automatically triggered run."""
    release_tag: Optional[str] = None
    skip_nonprod: bool = False
    deploy_app1: bool = True
    deploy_app2: bool = True
    run_id: Optional[str] = None
