# promotion_engine/approval/notifier.py
"""Gate visibility: announce pending and resolved approvals."""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

import requests

from promotion_engine.approval.gate import ApprovalResolution, GatePending
from promotion_engine.core.models import ApprovalDecision
from promotion_engine.release.github import github_api_base, github_headers

logger = logging.getLogger(__name__)


class NotificationEmitter(ABC):
    """Fire-and-forget announcements. Never affects orchestration."""

    @abstractmethod
    def notify_gate_pending(self, notice: GatePending) -> None:
        pass

    @abstractmethod
    def notify_gate_resolved(self, notice: GatePending, resolution: ApprovalResolution) -> None:
        pass


class LoggingNotifier(NotificationEmitter):
    def notify_gate_pending(self, notice: GatePending) -> None:
        logger.info(
            f"[notify] approval required for run {notice.run_id} "
            f"({notice.release_tag}): {notice.stage_description}"
        )

    def notify_gate_resolved(self, notice: GatePending, resolution: ApprovalResolution) -> None:
        logger.info(f"[notify] run {notice.run_id} {resolution.decision.value.lower()}")


# Deployment status reported once the gate resolves
_RESOLVED_STATES = {
    ApprovalDecision.APPROVED: "in_progress",
    ApprovalDecision.REJECTED: "failure",
    ApprovalDecision.CANCELLED: "error",
}


class GitHubDeploymentNotifier(NotificationEmitter):
    """
    Mirrors the gate as a GitHub deployment on the upstream repository.

    A deployment is created for the production environment when the gate
    opens; a deployment status is posted when it resolves.
    """

    def __init__(
        self,
        repo: str,
        token: str,
        host: Optional[str] = None,
        reviewers: Sequence[str] = (),
        environment: str = "production",
        timeout: int = 15,
        session: Optional[requests.Session] = None,
    ):
        self.repo = repo
        self.base_url = github_api_base(host)
        self.environment = environment
        self.timeout = timeout
        self._token = token
        self._reviewers = list(reviewers)
        self._session = session or requests.Session()

        self._deployments: Dict[str, int] = {}

    def notify_gate_pending(self, notice: GatePending) -> None:
        description = f"Awaiting approval: {notice.stage_description}"
        if self._reviewers:
            description += f" (reviewers: {', '.join(self._reviewers)})"

        payload = {
            "ref": notice.release_tag or "main",
            "environment": self.environment,
            "auto_merge": False,
            "required_contexts": [],
            "description": description[:140],
            "payload": {"run_id": notice.run_id},
        }
        data = self._post(f"/repos/{self.repo}/deployments", payload)
        self._deployments[notice.run_id] = data["id"]

        logger.info(f"[notify] github deployment {data['id']} created for run {notice.run_id}")

    def notify_gate_resolved(self, notice: GatePending, resolution: ApprovalResolution) -> None:
        deployment_id = self._deployments.pop(notice.run_id, None)
        if deployment_id is None:
            logger.debug(f"[notify] no github deployment recorded for run {notice.run_id}")
            return

        description = resolution.decision.value.lower()
        if resolution.reviewer:
            description += f" by {resolution.reviewer}"
        if resolution.reason:
            description += f": {resolution.reason}"

        self._post(
            f"/repos/{self.repo}/deployments/{deployment_id}/statuses",
            {
                "state": _RESOLVED_STATES[resolution.decision],
                "description": description[:140],
            },
        )

    def _post(self, path: str, payload: dict) -> dict:
        response = self._session.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=github_headers(self._token),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()
