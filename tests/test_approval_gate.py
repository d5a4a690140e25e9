#tests/test_approval_gate.py

"""Test approval gate suspension and signals."""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest

from promotion_engine.approval.gate import ApprovalGate, ApprovalResolution, GatePending
from promotion_engine.approval.notifier import GitHubDeploymentNotifier
from promotion_engine.core.errors import NoPendingApprovalError, UnauthorizedReviewerError
from promotion_engine.core.models import ApprovalDecision


async def _wait_until_pending(gate, run_id):
    for _ in range(200):
        if gate.is_waiting(run_id):
            return
        await asyncio.sleep(0.01)
    raise AssertionError(f"{run_id} never reached the gate")


class RecordingNotifier:
    def __init__(self, fail=False):
        self.pending = []
        self.resolved = []
        self.fail = fail

    def notify_gate_pending(self, notice):
        if self.fail:
            raise RuntimeError("notification service down")
        self.pending.append(notice)

    def notify_gate_resolved(self, notice, resolution):
        self.resolved.append((notice.run_id, resolution.decision))


class TestApprovalGate:

    @pytest.mark.asyncio
    async def test_approve_resumes_waiter(self, gate, events):
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        assert [p.run_id for p in gate.pending()] == ["run-1"]

        gate.approve("run-1", "alice")
        resolution = await task

        assert resolution.decision == ApprovalDecision.APPROVED
        assert resolution.reviewer == "alice"
        assert gate.pending() == []
        assert [e.event_type for e in events.events] == ["gate.pending", "gate.resolved"]

    @pytest.mark.asyncio
    async def test_reject_carries_reason(self, gate):
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        gate.reject("run-1", "bob", "change freeze")
        resolution = await task

        assert resolution.decision == ApprovalDecision.REJECTED
        assert resolution.reason == "change freeze"

    @pytest.mark.asyncio
    async def test_cancel(self, gate):
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        assert gate.cancel("run-1")
        resolution = await task

        assert resolution.decision == ApprovalDecision.CANCELLED
        assert not gate.cancel("run-1")

    @pytest.mark.asyncio
    async def test_signal_from_another_thread(self, gate):
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        worker = threading.Thread(target=gate.approve, args=("run-1", "alice"))
        worker.start()
        resolution = await asyncio.wait_for(task, timeout=5)
        worker.join()

        assert resolution.approved

    @pytest.mark.asyncio
    async def test_concurrent_runs_resolve_independently(self, gate):
        first = asyncio.create_task(gate.await_approval("run-1", "prod: api"))
        second = asyncio.create_task(gate.await_approval("run-2", "prod: web"))
        await _wait_until_pending(gate, "run-1")
        await _wait_until_pending(gate, "run-2")

        gate.reject("run-2", "bob")
        assert (await second).decision == ApprovalDecision.REJECTED
        assert not first.done()

        gate.approve("run-1", "alice")
        assert (await first).decision == ApprovalDecision.APPROVED

    @pytest.mark.asyncio
    async def test_only_first_signal_counts(self, gate):
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        gate.approve("run-1", "alice")
        with pytest.raises(NoPendingApprovalError):
            gate.reject("run-1", "bob")

        assert (await task).approved

    def test_signal_for_unknown_run(self, gate):
        with pytest.raises(NoPendingApprovalError):
            gate.approve("nope", "alice")
        assert not gate.cancel("nope")

    @pytest.mark.asyncio
    async def test_unauthorized_reviewer(self, events):
        gate = ApprovalGate(reviewers=["alice", " carol "], emitter=events)
        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")

        with pytest.raises(UnauthorizedReviewerError):
            gate.approve("run-1", "mallory")
        assert gate.is_waiting("run-1")

        gate.approve("run-1", "carol")
        assert (await task).reviewer == "carol"


class TestGateNotifications:

    @pytest.mark.asyncio
    async def test_notifier_sees_pending_and_resolution(self):
        notifier = RecordingNotifier()
        gate = ApprovalGate(notifier=notifier)

        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app", "v1.2.0"))
        await _wait_until_pending(gate, "run-1")
        gate.approve("run-1", "alice")
        await task

        assert notifier.pending[0].release_tag == "v1.2.0"
        assert notifier.resolved == [("run-1", ApprovalDecision.APPROVED)]

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_block_gate(self):
        gate = ApprovalGate(notifier=RecordingNotifier(fail=True))

        task = asyncio.create_task(gate.await_approval("run-1", "prod: my-app"))
        await _wait_until_pending(gate, "run-1")
        gate.approve("run-1", "alice")

        assert (await task).approved


class TestGitHubDeploymentNotifier:

    def _notifier(self, session):
        return GitHubDeploymentNotifier(
            "acme/my-app", token="t0ken", host="github.acme.com", reviewers=["alice"], session=session
        )

    def test_pending_creates_deployment_and_resolution_posts_status(self):
        session = MagicMock()
        session.post.return_value.json.return_value = {"id": 42}
        notifier = self._notifier(session)
        notice = GatePending(run_id="run-1", stage_description="prod: my-app", release_tag="v1.2.0")

        notifier.notify_gate_pending(notice)
        notifier.notify_gate_resolved(
            notice, ApprovalResolution(ApprovalDecision.REJECTED, reviewer="bob", reason="freeze")
        )

        (create_url,), create_kwargs = session.post.call_args_list[0]
        (status_url,), status_kwargs = session.post.call_args_list[1]
        assert create_url == "https://github.acme.com/api/v3/repos/acme/my-app/deployments"
        assert create_kwargs["json"]["ref"] == "v1.2.0"
        assert "alice" in create_kwargs["json"]["description"]
        assert status_url.endswith("/deployments/42/statuses")
        assert status_kwargs["json"]["state"] == "failure"
        assert status_kwargs["json"]["description"] == "rejected by bob: freeze"

    def test_resolution_without_deployment_is_ignored(self):
        session = MagicMock()
        notifier = self._notifier(session)

        notifier.notify_gate_resolved(
            GatePending(run_id="run-1", stage_description="prod: my-app"),
            ApprovalResolution(ApprovalDecision.APPROVED, reviewer="alice"),
        )

        session.post.assert_not_called()
