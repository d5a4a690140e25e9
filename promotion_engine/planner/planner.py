# promotion_engine/planner/planner.py
"""Builds the ordered stage plan for a release."""

import logging
from typing import Dict, List, Sequence

from promotion_engine.core.errors import PlanValidationError
from promotion_engine.core.models import (
    ApplicationDefinition,
    DeploymentPlan,
    DeploymentTarget,
    PlanPolicy,
    Release,
    Stage,
    TargetTopology,
    resolve_route,
)

logger = logging.getLogger(__name__)


class DeploymentPlanner:
    """
    Shapes a plan from the configured applications and targets.

    Rules:
    - nonprod stages come first and are hard gates (unless skipped by policy)
    - the first prod stage carries the approval gate
    - an application depending on another selected application is deployed
      in a later stage of the same environment
    """

    def __init__(
        self,
        applications: Sequence[ApplicationDefinition],
        topology: TargetTopology,
    ):
        self._applications = list(applications)
        self._topology = topology

    @property
    def applications(self) -> List[ApplicationDefinition]:
        return list(self._applications)

    @property
    def topology(self) -> TargetTopology:
        return self._topology

    def build(self, release: Release, policy: PlanPolicy) -> DeploymentPlan:
        selected = self._select(policy)

        if policy.dual_foundation != self._topology.dual_foundation:
            family = "dual" if self._topology.dual_foundation else "single"
            raise PlanValidationError(
                f"Policy does not match the configured {family}-foundation targets"
            )

        targets: List[DeploymentTarget] = []
        if not policy.skip_nonprod:
            targets.append(self._topology.nonprod)
        targets.append(self._topology.prod)

        for target in targets:
            self._check_routes(selected, target)

        layers = self._layers(selected)

        stages: List[Stage] = []
        for target in targets:
            for index, layer in enumerate(layers):
                last_layer = index == len(layers) - 1
                stages.append(Stage(
                    pairs=tuple((app, target) for app in layer),
                    requires_approval=target.is_production and index == 0,
                    hard_gate=(not target.is_production) or not last_layer,
                    description=f"{target.name}: {', '.join(app.name for app in layer)}",
                ))

        plan = DeploymentPlan(release=release, stages=tuple(stages), policy=policy)

        logger.info(
            f"[planner] {release.tag}: "
            + " -> ".join(f"[{s.description}]" for s in plan.stages)
        )
        return plan

    # -------------------------
    # VALIDATION
    # -------------------------

    def _select(self, policy: PlanPolicy) -> List[ApplicationDefinition]:
        if not policy.applications:
            raise PlanValidationError("No applications selected")

        known = {app.name for app in self._applications}
        unknown = [name for name in policy.applications if name not in known]
        if unknown:
            raise PlanValidationError(f"Unknown applications: {', '.join(unknown)}")

        # Configured order, not request order
        return [app for app in self._applications if app.name in policy.applications]

    def _check_routes(self, selected: List[ApplicationDefinition], target: DeploymentTarget) -> None:
        owners: Dict[str, str] = {}
        for app in selected:
            route = resolve_route(app, target)
            if route is None:
                continue
            if route in owners:
                raise PlanValidationError(
                    f"{owners[route]} and {app.name} share route {route} on {target.name}"
                )
            owners[route] = app.name

    def _layers(self, selected: List[ApplicationDefinition]) -> List[List[ApplicationDefinition]]:
        """Group applications by dependency depth among the selected set."""
        by_name = {app.name: app for app in self._applications}
        chosen = {app.name for app in selected}

        for app in selected:
            if app.depends_on and app.depends_on not in by_name:
                raise PlanValidationError(
                    f"{app.name} depends on unknown application {app.depends_on}"
                )

        depth: Dict[str, int] = {}

        def resolve(name: str, seen: tuple) -> int:
            if name in depth:
                return depth[name]
            if name in seen:
                raise PlanValidationError(
                    f"Dependency cycle: {' -> '.join(seen + (name,))}"
                )
            dep = by_name[name].depends_on
            if dep and dep in chosen:
                value = resolve(dep, seen + (name,)) + 1
            else:
                value = 0
            depth[name] = value
            return value

        for app in selected:
            resolve(app.name, ())

        layers: List[List[ApplicationDefinition]] = []
        for app in selected:
            level = depth[app.name]
            while len(layers) <= level:
                layers.append([])
            layers[level].append(app)

        return layers
