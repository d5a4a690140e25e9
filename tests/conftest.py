#tests/conftest.py

"""Pytest configuration and fixtures."""

import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from promotion_engine.approval.gate import ApprovalGate
from promotion_engine.core.errors import ArtifactFetchError, PlatformOperationError, ReleaseNotFoundError
from promotion_engine.core.events import RecordingEventEmitter
from promotion_engine.core.models import (
    ApplicationDefinition,
    ArtifactRef,
    DeploymentTarget,
    Foundation,
    Release,
    TargetEnvironment,
    TargetTopology,
)
from promotion_engine.executor.blue_green import BlueGreenExecutor
from promotion_engine.executor.config import HealthCheckPolicy
from promotion_engine.infrastructure.memory.ledger import InMemoryVersionLedger
from promotion_engine.infrastructure.sql.database import create_db_engine, get_session_factory, init_db
from promotion_engine.orchestrator.pipeline_runner import PipelineRunner
from promotion_engine.planner.planner import DeploymentPlanner
from promotion_engine.platform.interfaces import HealthReport, InstanceHealth, TargetPlatform
from promotion_engine.release.source import ReleaseSource


NONPROD_ROUTE = "my-app.apps.nonprod.example.com"
PROD_ROUTE = "my-app.apps.prod.example.com"

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ============================================
# FAKES
# ============================================

class FakePlatform(TargetPlatform):
    """
    In-memory platform.

    Records every operation in call order as (op, target, instance) and
    tracks which instances each route is mapped to.
    """

    def __init__(self):
        self.operations: List[Tuple[str, str, str]] = []
        self.routes: Dict[Tuple[str, str], List[str]] = {}
        self.instances: Dict[str, set] = {}
        self.route_emptied = False

        self._health: Dict[str, List[InstanceHealth]] = {}
        self._failures: Dict[Tuple[str, Optional[str]], int] = {}
        self._lock = threading.Lock()

    # ---- setup helpers ----

    def route_to(self, target: str, route: str, *instances: str) -> None:
        self.routes[(target, route)] = list(instances)
        self.instances.setdefault(target, set()).update(instances)

    def fail_on(self, op: str, instance: Optional[str] = None, times: int = 1_000) -> None:
        self._failures[(op, instance)] = times

    def set_health(self, instance: str, *statuses: InstanceHealth) -> None:
        self._health[instance] = list(statuses)

    def ops(self, op: Optional[str] = None, target: Optional[str] = None) -> List[Tuple[str, str, str]]:
        return [
            o for o in self.operations
            if (op is None or o[0] == op) and (target is None or o[1] == target)
        ]

    def mapped(self, target: str, route: str) -> List[str]:
        return list(self.routes.get((target, route), []))

    # ---- TargetPlatform ----

    def get_routed_instances(self, target, app_name, route):
        self._record("routed", target, route)
        return [
            name for name in self.routes.get((target.name, route), [])
            if name == app_name or name.startswith(f"{app_name}-")
        ]

    def push_instance(self, target, manifest_path, identity, artifact_path, no_route):
        self._record("push", target, identity)
        with self._lock:
            self.instances.setdefault(target.name, set()).add(identity)

    def query_health(self, target, instance):
        self._record("health", target, instance)
        with self._lock:
            statuses = self._health.get(instance)
            if not statuses:
                status = InstanceHealth.HEALTHY
            elif len(statuses) == 1:
                status = statuses[0]
            else:
                status = statuses.pop(0)
        return HealthReport(status=status, running=1, total=1, detail=status.value)

    def map_route(self, target, route, instance):
        self._record("map", target, instance)
        with self._lock:
            self.routes.setdefault((target.name, route), []).append(instance)

    def unmap_route(self, target, route, instance):
        self._record("unmap", target, instance)
        with self._lock:
            mapped = self.routes.setdefault((target.name, route), [])
            if instance in mapped:
                mapped.remove(instance)
            if not mapped:
                self.route_emptied = True

    def stop_instance(self, target, instance):
        self._record("stop", target, instance)

    def delete_instance(self, target, instance):
        self._record("delete", target, instance)
        with self._lock:
            self.instances.setdefault(target.name, set()).discard(instance)

    def _record(self, op: str, target: DeploymentTarget, instance: str) -> None:
        with self._lock:
            self.operations.append((op, target.name, instance))
            for key in ((op, instance), (op, None)):
                if self._failures.get(key, 0) > 0:
                    self._failures[key] -= 1
                    raise PlatformOperationError(op, f"injected failure for {instance}")


class FakeReleaseSource(ReleaseSource):
    def __init__(self, *releases: Release):
        self.releases: Dict[str, Release] = {r.tag: r for r in releases}
        self.latest: Optional[Release] = releases[-1] if releases else None
        self.fetched: List[Tuple[str, str]] = []
        self.fail_fetch = False

    def latest_release(self) -> Release:
        return self.latest

    def get_release(self, tag: str) -> Release:
        if tag not in self.releases:
            raise ReleaseNotFoundError(f"Release {tag} not found")
        return self.releases[tag]

    def fetch_artifact(self, release, application, dest_dir) -> Path:
        dest = Path(dest_dir)
        dest.mkdir(parents=True, exist_ok=True)
        if self.fail_fetch:
            raise ArtifactFetchError(f"no artifact for {application.name}")
        self.fetched.append((release.tag, application.name))
        path = dest / application.artifact_name(release)
        path.write_bytes(b"PK")
        return path


# ============================================
# FACTORIES
# ============================================

def build_release(tag: str, days: int = 0) -> Release:
    version = tag.lstrip("v")
    return Release(
        tag=tag,
        artifacts=(
            ArtifactRef(name=f"my-app-{version}.zip", url=f"https://example.com/{tag}/my-app.zip"),
        ),
        manifests=("manifest.yml",),
        published_at=BASE_TIME + timedelta(days=days),
    )


@pytest.fixture
def make_release():
    return build_release


@pytest.fixture
def release():
    return build_release("v1.2.0", days=10)


@pytest.fixture
def foundation():
    return Foundation(name="default", api="https://api.example.com", username="deployer", password="s3cret")


@pytest.fixture
def dual_topology(foundation):
    prod_foundation = Foundation(
        name="prod", api="https://api.prod.example.com", username="deployer", password="s3cret"
    )
    return TargetTopology(
        nonprod=DeploymentTarget(
            name="nonprod",
            environment=TargetEnvironment.NONPROD,
            foundation=foundation,
            org="acme",
            space="staging",
            route=NONPROD_ROUTE,
        ),
        prod=DeploymentTarget(
            name="prod",
            environment=TargetEnvironment.PROD,
            foundation=prod_foundation,
            org="acme",
            space="production",
            route=PROD_ROUTE,
        ),
        dual_foundation=True,
    )


@pytest.fixture
def single_topology(foundation):
    return TargetTopology(
        nonprod=DeploymentTarget(
            name="dev",
            environment=TargetEnvironment.NONPROD,
            foundation=foundation,
            org="acme",
            space="dev",
        ),
        prod=DeploymentTarget(
            name="prod",
            environment=TargetEnvironment.PROD,
            foundation=foundation,
            org="acme",
            space="prod",
        ),
        dual_foundation=False,
    )


@pytest.fixture
def app():
    return ApplicationDefinition(name="my-app")


@pytest.fixture
def two_apps():
    """api and web, each with its own routes on the dual-foundation targets."""
    api = ApplicationDefinition(
        name="api",
        routes=(("nonprod", "api.apps.nonprod.example.com"), ("prod", "api.apps.prod.example.com")),
    )
    web = ApplicationDefinition(
        name="web",
        routes=(("nonprod", "web.apps.nonprod.example.com"), ("prod", "web.apps.prod.example.com")),
    )
    return [api, web]


@pytest.fixture
def fast_policy():
    return HealthCheckPolicy(
        max_attempts=5,
        initial_delay_seconds=0.0,
        max_delay_seconds=0.0,
        backoff_multiplier=2.0,
        required_consecutive=2,
        deadline_seconds=30.0,
    )


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def fake_platform_cls():
    return FakePlatform


@pytest.fixture
def fake_release_source_cls():
    return FakeReleaseSource


@pytest.fixture
def events():
    return RecordingEventEmitter()


@pytest.fixture
def memory_ledger():
    return InMemoryVersionLedger()


@pytest.fixture
def executor(platform, fast_policy, events):
    return BlueGreenExecutor(platform=platform, health_policy=fast_policy, emitter=events)


@pytest.fixture
def gate(events):
    return ApprovalGate(emitter=events)


@pytest.fixture
def runner(executor, gate, memory_ledger, events):
    return PipelineRunner(executor=executor, gate=gate, ledger=memory_ledger, emitter=events)


@pytest.fixture
def dual_planner(app, dual_topology):
    return DeploymentPlanner([app], dual_topology)


# ============================================
# SQL LEDGER
# ============================================

@pytest.fixture
def sqlite_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ledger.db'}"


@pytest.fixture
def test_engine(sqlite_url):
    """Create test database engine."""
    engine = create_db_engine(sqlite_url)
    init_db(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def test_session_factory(test_engine):
    """Create session factory for tests."""
    return get_session_factory(test_engine)
