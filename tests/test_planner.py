#tests/test_planner.py

"""Test deployment plan shapes."""

import pytest

from promotion_engine.core.errors import PlanValidationError
from promotion_engine.core.models import ApplicationDefinition, PlanPolicy
from promotion_engine.planner.planner import DeploymentPlanner


def _shape(plan):
    return [
        ([f"{app.name}@{target.name}" for app, target in stage.pairs], stage.requires_approval, stage.hard_gate)
        for stage in plan.stages
    ]


class TestSingleFoundation:

    def test_dev_then_prod(self, app, single_topology, release):
        planner = DeploymentPlanner([app], single_topology)

        plan = planner.build(release, PlanPolicy(applications=("my-app",), dual_foundation=False))

        assert _shape(plan) == [
            (["my-app@dev"], False, True),
            (["my-app@prod"], True, False),
        ]
        assert plan.stages[0].description == "dev: my-app"

    def test_skip_nonprod_applies_to_single_family(self, app, single_topology, release):
        planner = DeploymentPlanner([app], single_topology)

        plan = planner.build(
            release,
            PlanPolicy(applications=("my-app",), dual_foundation=False, skip_nonprod=True),
        )

        assert _shape(plan) == [(["my-app@prod"], True, False)]


class TestDualFoundation:

    def test_nonprod_then_gated_prod(self, two_apps, dual_topology, release):
        planner = DeploymentPlanner(two_apps, dual_topology)

        plan = planner.build(release, PlanPolicy(applications=("api", "web"), dual_foundation=True))

        assert _shape(plan) == [
            (["api@nonprod", "web@nonprod"], False, True),
            (["api@prod", "web@prod"], True, False),
        ]
        assert plan.application_names() == ["api", "web"]

    def test_skip_nonprod_still_gates_prod(self, two_apps, dual_topology, release):
        planner = DeploymentPlanner(two_apps, dual_topology)

        plan = planner.build(
            release,
            PlanPolicy(applications=("api", "web"), dual_foundation=True, skip_nonprod=True),
        )

        assert len(plan.stages) == 1
        assert plan.stages[0].requires_approval
        assert all(target.name == "prod" for _, target in plan.pairs())

    def test_single_app_selection(self, two_apps, dual_topology, release):
        planner = DeploymentPlanner(two_apps, dual_topology)

        plan = planner.build(release, PlanPolicy(applications=("web",), dual_foundation=True))

        assert [f"{a.name}@{t.name}" for a, t in plan.pairs()] == ["web@nonprod", "web@prod"]

    def test_dependency_splits_each_environment(self, dual_topology, release):
        api = ApplicationDefinition(
            name="api",
            routes=(("nonprod", "api.n.example.com"), ("prod", "api.p.example.com")),
        )
        web = ApplicationDefinition(
            name="web",
            depends_on="api",
            routes=(("nonprod", "web.n.example.com"), ("prod", "web.p.example.com")),
        )
        planner = DeploymentPlanner([web, api], dual_topology)

        plan = planner.build(release, PlanPolicy(applications=("api", "web"), dual_foundation=True))

        assert _shape(plan) == [
            (["api@nonprod"], False, True),
            (["web@nonprod"], False, True),
            (["api@prod"], True, True),
            (["web@prod"], False, False),
        ]

    def test_dependency_outside_selection_is_ignored(self, dual_topology, release):
        api = ApplicationDefinition(name="api", routes=(("prod", "api.p.example.com"),))
        web = ApplicationDefinition(name="web", depends_on="api", routes=(("prod", "web.p.example.com"),))
        planner = DeploymentPlanner([api, web], dual_topology)

        plan = planner.build(
            release,
            PlanPolicy(applications=("web",), dual_foundation=True, skip_nonprod=True),
        )

        assert _shape(plan) == [(["web@prod"], True, False)]


class TestValidation:

    def test_zero_applications_rejected(self, app, dual_topology, release):
        planner = DeploymentPlanner([app], dual_topology)

        with pytest.raises(PlanValidationError):
            planner.build(release, PlanPolicy(applications=(), dual_foundation=True))

    def test_unknown_application_rejected(self, app, dual_topology, release):
        planner = DeploymentPlanner([app], dual_topology)

        with pytest.raises(PlanValidationError, match="other"):
            planner.build(release, PlanPolicy(applications=("other",), dual_foundation=True))

    def test_family_mismatch_rejected(self, app, dual_topology, release):
        planner = DeploymentPlanner([app], dual_topology)

        with pytest.raises(PlanValidationError):
            planner.build(release, PlanPolicy(applications=("my-app",), dual_foundation=False))

    def test_shared_route_rejected(self, dual_topology, release):
        planner = DeploymentPlanner(
            [ApplicationDefinition(name="api"), ApplicationDefinition(name="web")],
            dual_topology,
        )

        with pytest.raises(PlanValidationError, match="share route"):
            planner.build(release, PlanPolicy(applications=("api", "web"), dual_foundation=True))

    def test_dependency_cycle_rejected(self, dual_topology, release):
        api = ApplicationDefinition(name="api", depends_on="web", routes=(("prod", "a.example.com"), ("nonprod", "a.n.example.com")))
        web = ApplicationDefinition(name="web", depends_on="api", routes=(("prod", "w.example.com"), ("nonprod", "w.n.example.com")))
        planner = DeploymentPlanner([api, web], dual_topology)

        with pytest.raises(PlanValidationError, match="cycle"):
            planner.build(release, PlanPolicy(applications=("api", "web"), dual_foundation=True))

    def test_unknown_dependency_rejected(self, dual_topology, release):
        web = ApplicationDefinition(name="web", depends_on="ghost")
        planner = DeploymentPlanner([web], dual_topology)

        with pytest.raises(PlanValidationError, match="ghost"):
            planner.build(release, PlanPolicy(applications=("web",), dual_foundation=True))
