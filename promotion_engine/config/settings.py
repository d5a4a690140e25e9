#promotion_engine/config/settings.py

from typing import List, Optional, Tuple

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from promotion_engine.core.errors import ConfigurationError
from promotion_engine.core.models import (
    ApplicationDefinition,
    DeploymentTarget,
    Foundation,
    TargetEnvironment,
    TargetTopology,
)
from promotion_engine.executor.config import HealthCheckPolicy


DEFAULT_MANIFEST = "manifest.yml"
DEFAULT_ARTIFACT_PATTERN = "{name}-{version}.zip"


class PromotionSettings(BaseSettings):
    """
    Promotion configuration from environment variables.

    Family selection:
    - CF_NONPROD_API set -> dual foundation (nonprod + prod targets)
    - otherwise          -> single foundation (dev + prod spaces)
    - APP1_NAME set      -> multi-application, otherwise APP_NAME
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Upstream
    app_upstream_repo: Optional[str] = None

    # Single application
    app_name: Optional[str] = None
    app_manifest_path: str = DEFAULT_MANIFEST
    app_artifact_pattern: str = DEFAULT_ARTIFACT_PATTERN

    # Multi application
    app1_name: Optional[str] = None
    app1_manifest_path: str = DEFAULT_MANIFEST
    app1_artifact_pattern: str = DEFAULT_ARTIFACT_PATTERN
    app1_route_nonprod: Optional[str] = None
    app1_route_prod: Optional[str] = None

    app2_name: Optional[str] = None
    app2_manifest_path: str = DEFAULT_MANIFEST
    app2_artifact_pattern: str = DEFAULT_ARTIFACT_PATTERN
    app2_route_nonprod: Optional[str] = None
    app2_route_prod: Optional[str] = None
    app2_depends_on_app1: bool = False

    # Single foundation
    cf_api: Optional[str] = None
    cf_username: Optional[str] = None
    cf_password: Optional[SecretStr] = None
    cf_org: Optional[str] = None
    cf_dev_space: Optional[str] = None

    # Dual foundation
    cf_nonprod_api: Optional[str] = None
    cf_nonprod_username: Optional[str] = None
    cf_nonprod_password: Optional[SecretStr] = None
    cf_nonprod_org: Optional[str] = None
    cf_nonprod_space: Optional[str] = None

    cf_prod_api: Optional[str] = None
    cf_prod_username: Optional[str] = None
    cf_prod_password: Optional[SecretStr] = None
    cf_prod_org: Optional[str] = None
    # Shared by both families
    cf_prod_space: Optional[str] = None

    app_route_nonprod: Optional[str] = None
    app_route_prod: Optional[str] = None

    # Approval
    ghe_host: Optional[str] = None
    ghe_token: Optional[SecretStr] = None
    approval_reviewers: Optional[str] = None

    # Health check
    health_max_attempts: int = 10
    health_initial_delay_seconds: float = 2.0
    health_max_delay_seconds: float = 30.0
    health_backoff_multiplier: float = 2.0
    health_required_consecutive: int = 3
    health_deadline_seconds: float = 300.0

    # Runtime
    artifact_dir: str = "artifacts"
    cf_binary: str = "cf"
    cf_home_root: str = ".cf"
    cf_command_timeout_seconds: int = 900
    max_finished_runs: int = 200
    log_level: str = "INFO"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # -------------------------
    # DERIVED CONFIG
    # -------------------------

    @property
    def dual_foundation(self) -> bool:
        return bool(self.cf_nonprod_api)

    @property
    def nonprod_target_name(self) -> str:
        return "nonprod" if self.dual_foundation else "dev"

    def applications(self) -> List[ApplicationDefinition]:
        """Configured applications in position order (app1, app2)."""
        nonprod = self.nonprod_target_name

        if self.app1_name or self.app2_name:
            self._require("app1_name")

            app1 = ApplicationDefinition(
                name=self.app1_name,
                manifest_path=self.app1_manifest_path,
                artifact_pattern=self.app1_artifact_pattern,
                routes=_routes(nonprod, self.app1_route_nonprod, self.app1_route_prod),
            )
            if not self.app2_name:
                return [app1]

            app2 = ApplicationDefinition(
                name=self.app2_name,
                manifest_path=self.app2_manifest_path,
                artifact_pattern=self.app2_artifact_pattern,
                depends_on=self.app1_name if self.app2_depends_on_app1 else None,
                routes=_routes(nonprod, self.app2_route_nonprod, self.app2_route_prod),
            )
            return [app1, app2]

        self._require("app_name")
        return [
            ApplicationDefinition(
                name=self.app_name,
                manifest_path=self.app_manifest_path,
                artifact_pattern=self.app_artifact_pattern,
            )
        ]

    def topology(self) -> TargetTopology:
        if self.dual_foundation:
            self._require(
                "cf_nonprod_api", "cf_nonprod_username", "cf_nonprod_password",
                "cf_nonprod_org", "cf_nonprod_space",
                "cf_prod_api", "cf_prod_username", "cf_prod_password",
                "cf_prod_org", "cf_prod_space",
            )
            self._require_routes()
            nonprod_foundation = Foundation(
                name="nonprod",
                api=self.cf_nonprod_api,
                username=self.cf_nonprod_username,
                password=self.cf_nonprod_password.get_secret_value(),
            )
            prod_foundation = Foundation(
                name="prod",
                api=self.cf_prod_api,
                username=self.cf_prod_username,
                password=self.cf_prod_password.get_secret_value(),
            )
            return TargetTopology(
                nonprod=DeploymentTarget(
                    name="nonprod",
                    environment=TargetEnvironment.NONPROD,
                    foundation=nonprod_foundation,
                    org=self.cf_nonprod_org,
                    space=self.cf_nonprod_space,
                    route=self.app_route_nonprod,
                ),
                prod=DeploymentTarget(
                    name="prod",
                    environment=TargetEnvironment.PROD,
                    foundation=prod_foundation,
                    org=self.cf_prod_org,
                    space=self.cf_prod_space,
                    route=self.app_route_prod,
                ),
                dual_foundation=True,
            )

        self._require(
            "cf_api", "cf_username", "cf_password",
            "cf_org", "cf_dev_space", "cf_prod_space",
        )
        foundation = Foundation(
            name="default",
            api=self.cf_api,
            username=self.cf_username,
            password=self.cf_password.get_secret_value(),
        )
        return TargetTopology(
            nonprod=DeploymentTarget(
                name="dev",
                environment=TargetEnvironment.NONPROD,
                foundation=foundation,
                org=self.cf_org,
                space=self.cf_dev_space,
                route=self.app_route_nonprod,
            ),
            prod=DeploymentTarget(
                name="prod",
                environment=TargetEnvironment.PROD,
                foundation=foundation,
                org=self.cf_org,
                space=self.cf_prod_space,
                route=self.app_route_prod,
            ),
            dual_foundation=False,
        )

    def health_policy(self) -> HealthCheckPolicy:
        return HealthCheckPolicy(
            max_attempts=self.health_max_attempts,
            initial_delay_seconds=self.health_initial_delay_seconds,
            max_delay_seconds=self.health_max_delay_seconds,
            backoff_multiplier=self.health_backoff_multiplier,
            required_consecutive=self.health_required_consecutive,
            deadline_seconds=self.health_deadline_seconds,
        )

    def reviewers(self) -> List[str]:
        if not self.approval_reviewers:
            return []
        return [r.strip() for r in self.approval_reviewers.split(",") if r.strip()]

    def github_token(self) -> Optional[str]:
        return self.ghe_token.get_secret_value() if self.ghe_token else None

    def upstream_repo(self) -> str:
        self._require("app_upstream_repo")
        return self.app_upstream_repo

    def _require_routes(self) -> None:
        """Dual foundation is blue-green only: every application needs a route on both targets."""
        shared = {"nonprod": self.app_route_nonprod, "prod": self.app_route_prod}
        prefixes = ("APP1", "APP2") if (self.app1_name or self.app2_name) else (None,)

        missing = []
        for app, prefix in zip(self.applications(), prefixes):
            for target in ("nonprod", "prod"):
                if app.route_for(target) or shared[target]:
                    continue
                name = f"APP_ROUTE_{target.upper()}"
                missing.append(f"{prefix}_ROUTE_{target.upper()} or {name}" if prefix else name)

        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    def _require(self, *names: str) -> None:
        missing = [name.upper() for name in names if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def _routes(nonprod: str, route_nonprod: Optional[str], route_prod: Optional[str]) -> Tuple[Tuple[str, str], ...]:
    routes = []
    if route_nonprod:
        routes.append((nonprod, route_nonprod))
    if route_prod:
        routes.append(("prod", route_prod))
    return tuple(routes)
