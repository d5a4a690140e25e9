# promotion_engine/platform/interfaces.py
"""Target platform contract used by the cutover executor."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from promotion_engine.core.models import DeploymentTarget


class InstanceHealth(Enum):
    """Readiness of a pushed instance."""
    STARTING = "STARTING"
    HEALTHY = "HEALTHY"
    UNHEALTHY = "UNHEALTHY"


@dataclass(frozen=True)
class HealthReport:
    """Result of one readiness query."""
    status: InstanceHealth
    running: int = 0
    total: int = 0
    detail: str = ""

    @property
    def healthy(self) -> bool:
        return self.status == InstanceHealth.HEALTHY


class TargetPlatform(ABC):
    """
    Opaque operations on the target platform.

    Every method blocks until the platform has answered and raises
    PlatformOperationError on failure. Implementations must be safe to call
    from several threads at once for different instances.
    """

    @abstractmethod
    def get_routed_instances(
        self,
        target: DeploymentTarget,
        app_name: str,
        route: str,
    ) -> List[str]:
        """Instances of the application currently mapped to the route."""
        raise NotImplementedError

    @abstractmethod
    def push_instance(
        self,
        target: DeploymentTarget,
        manifest_path: str,
        identity: str,
        artifact_path: Optional[str],
        no_route: bool,
    ) -> None:
        """Push an instance under the given identity."""
        raise NotImplementedError

    @abstractmethod
    def query_health(self, target: DeploymentTarget, instance: str) -> HealthReport:
        """Current readiness of an instance."""
        raise NotImplementedError

    @abstractmethod
    def map_route(self, target: DeploymentTarget, route: str, instance: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def unmap_route(self, target: DeploymentTarget, route: str, instance: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop_instance(self, target: DeploymentTarget, instance: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_instance(self, target: DeploymentTarget, instance: str) -> None:
        raise NotImplementedError
