# promotion_engine/platform/cf_cli.py
"""Cloud Foundry adapter driving the `cf` CLI."""

import json
import logging
import os
import subprocess
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from promotion_engine.core.errors import PlatformOperationError
from promotion_engine.core.models import DeploymentTarget
from promotion_engine.platform.interfaces import HealthReport, InstanceHealth, TargetPlatform

logger = logging.getLogger(__name__)


def split_route(route: str) -> Tuple[str, str]:
    """my-app.apps.example.com -> ("my-app", "apps.example.com")"""
    host, _, domain = route.partition(".")
    if not host or not domain:
        raise PlatformOperationError("route", f"route '{route}' must be <hostname>.<domain>")
    return host, domain


class CloudFoundryCliPlatform(TargetPlatform):
    """
    Runs `cf` commands, one CF_HOME per target.

    Each target gets its own CLI home so concurrent pairs on different
    foundations or spaces never share the CLI's targeted org/space.
    Credentials are handed to `cf auth` through the environment, never argv.
    Manifests are expected to name their application `((app_name))`;
    the pushed identity is passed as that variable.
    """

    def __init__(
        self,
        cf_binary: str = "cf",
        home_root: str = ".cf",
        timeout_seconds: int = 900,
    ):
        self._cf_binary = cf_binary
        self._home_root = home_root
        self._timeout = timeout_seconds

        self._sessions: set = set()
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -------------------------
    # PLATFORM OPERATIONS
    # -------------------------

    def get_routed_instances(
        self,
        target: DeploymentTarget,
        app_name: str,
        route: str,
    ) -> List[str]:
        host, _ = split_route(route)
        routes = self._curl(target, f"/v3/routes?hosts={host}", "get-routed-instances")

        names: List[str] = []
        for resource in routes.get("resources", []):
            if resource.get("url") != route:
                continue
            for destination in resource.get("destinations", []):
                guid = destination.get("app", {}).get("guid")
                if not guid:
                    continue
                app = self._curl(target, f"/v3/apps/{guid}", "get-routed-instances")
                name = app.get("name", "")
                if (name == app_name or name.startswith(f"{app_name}-")) and name not in names:
                    names.append(name)

        return names

    def push_instance(
        self,
        target: DeploymentTarget,
        manifest_path: str,
        identity: str,
        artifact_path: Optional[str],
        no_route: bool,
    ) -> None:
        args = ["push", identity, "-f", manifest_path, "--var", f"app_name={identity}"]
        if artifact_path:
            args += ["-p", str(artifact_path)]
        if no_route:
            args.append("--no-route")

        logger.info(f"[cf {target.name}] push {identity}")
        self._cf(target, args, "push-instance")

    def query_health(self, target: DeploymentTarget, instance: str) -> HealthReport:
        guid = self._cf(target, ["app", instance, "--guid"], "query-health").strip()
        stats = self._curl(target, f"/v3/apps/{guid}/processes/web/stats", "query-health")

        states = [r.get("state", "") for r in stats.get("resources", [])]
        total = len(states)
        running = sum(1 for s in states if s == "RUNNING")

        if any(s == "CRASHED" for s in states):
            status = InstanceHealth.UNHEALTHY
        elif total and running == total:
            status = InstanceHealth.HEALTHY
        else:
            status = InstanceHealth.STARTING

        return HealthReport(
            status=status,
            running=running,
            total=total,
            detail=",".join(states),
        )

    def map_route(self, target: DeploymentTarget, route: str, instance: str) -> None:
        host, domain = split_route(route)
        logger.info(f"[cf {target.name}] map-route {route} -> {instance}")
        self._cf(target, ["map-route", instance, domain, "--hostname", host], "map-route")

    def unmap_route(self, target: DeploymentTarget, route: str, instance: str) -> None:
        host, domain = split_route(route)
        logger.info(f"[cf {target.name}] unmap-route {route} -x- {instance}")
        self._cf(target, ["unmap-route", instance, domain, "--hostname", host], "unmap-route")

    def stop_instance(self, target: DeploymentTarget, instance: str) -> None:
        logger.info(f"[cf {target.name}] stop {instance}")
        self._cf(target, ["stop", instance], "stop-instance")

    def delete_instance(self, target: DeploymentTarget, instance: str) -> None:
        logger.info(f"[cf {target.name}] delete {instance}")
        self._cf(target, ["delete", instance, "-f"], "delete-instance")

    # -------------------------
    # CLI PLUMBING
    # -------------------------

    def _lock_for(self, target: DeploymentTarget) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(target.name, threading.Lock())

    def _home_for(self, target: DeploymentTarget) -> str:
        home = os.path.join(self._home_root, target.name)
        os.makedirs(home, exist_ok=True)
        return home

    def _ensure_session(self, target: DeploymentTarget) -> None:
        """Log in once per target: cf api, cf auth, cf target."""
        with self._lock_for(target):
            if target.name in self._sessions:
                return

            foundation = target.foundation
            logger.info(f"[cf {target.name}] logging in to {foundation.api} as {foundation.username}")

            self._exec(target, ["api", foundation.api], "login")
            self._exec(
                target,
                ["auth"],
                "login",
                extra_env={
                    "CF_USERNAME": foundation.username,
                    "CF_PASSWORD": foundation.password,
                },
            )
            self._exec(target, ["target", "-o", target.org, "-s", target.space], "login")

            self._sessions.add(target.name)

    def _cf(self, target: DeploymentTarget, args: Sequence[str], operation: str) -> str:
        self._ensure_session(target)
        return self._exec(target, args, operation)

    def _curl(self, target: DeploymentTarget, path: str, operation: str) -> Dict[str, Any]:
        output = self._cf(target, ["curl", path], operation)
        try:
            payload = json.loads(output or "{}")
        except ValueError as e:
            raise PlatformOperationError(operation, f"unparseable response from {path}: {e}") from e

        if payload.get("errors"):
            detail = "; ".join(err.get("detail", "") for err in payload["errors"])
            raise PlatformOperationError(operation, f"{path}: {detail}")

        return payload

    def _exec(
        self,
        target: DeploymentTarget,
        args: Sequence[str],
        operation: str,
        extra_env: Optional[Dict[str, str]] = None,
    ) -> str:
        env = dict(os.environ)
        env["CF_HOME"] = self._home_for(target)
        if extra_env:
            env.update(extra_env)

        try:
            completed = subprocess.run(
                [self._cf_binary, *args],
                env=env,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise PlatformOperationError(operation, f"cf {args[0]} could not run: {e}") from e

        if completed.returncode != 0:
            output = (completed.stderr or completed.stdout or "").strip()
            raise PlatformOperationError(
                operation,
                f"cf {args[0]} exited {completed.returncode}: {output}",
            )

        return completed.stdout
