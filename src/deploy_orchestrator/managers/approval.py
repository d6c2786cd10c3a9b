"""Manual approval gates."""

import asyncio
import builtins
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from ..strategies.enums import ApprovalStatus
from ..strategies.models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class ApprovalRequest:
    """A pending or decided approval."""

    request_id: str
    deployment_id: str
    stage: str
    approvers: builtins.list[str] = field(default_factory=list)
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_at: datetime = field(default_factory=utc_now)
    decided_at: datetime | None = None
    decided_by: str | None = None
    comment: str | None = None


class ApprovalManager:
    """Tracks approval requests and wakes waiters when they are decided."""

    def __init__(self, poll_interval: float = 1.0):
        self.poll_interval = poll_interval
        self._requests: builtins.dict[str, ApprovalRequest] = {}
        self._decided: builtins.dict[str, asyncio.Event] = {}

    async def request_approval(
        self, deployment_id: str, stage: str, approvers: builtins.list[str] | None = None
    ) -> ApprovalRequest:
        """Open an approval request for ``stage`` of a deployment."""
        request = ApprovalRequest(
            request_id=str(uuid.uuid4()),
            deployment_id=deployment_id,
            stage=stage,
            approvers=list(approvers or []),
        )
        self._requests[request.request_id] = request
        self._decided[request.request_id] = asyncio.Event()
        logger.info(f"Approval requested for deployment {deployment_id} stage {stage} ({request.request_id})")
        return request

    def approve(self, request_id: str, approver: str, comment: str | None = None) -> bool:
        return self._decide(request_id, ApprovalStatus.APPROVED, approver, comment)

    def reject(self, request_id: str, approver: str, comment: str | None = None) -> bool:
        return self._decide(request_id, ApprovalStatus.REJECTED, approver, comment)

    def cancel_request(self, request_id: str) -> bool:
        return self._decide(request_id, ApprovalStatus.CANCELLED, None, "cancelled")

    def cancel_deployment_requests(self, deployment_id: str) -> int:
        """Cancel every pending request of a deployment."""
        pending = self.pending_requests(deployment_id)
        for request in pending:
            self.cancel_request(request.request_id)
        return len(pending)

    def forget_deployment(self, deployment_id: str) -> int:
        """Drop every request of a deployment, pending ones are cancelled first."""
        self.cancel_deployment_requests(deployment_id)
        forgotten = [
            request_id
            for request_id, request in self._requests.items()
            if request.deployment_id == deployment_id
        ]
        for request_id in forgotten:
            del self._requests[request_id]
            del self._decided[request_id]
        return len(forgotten)

    def _decide(
        self, request_id: str, status: ApprovalStatus, approver: str | None, comment: str | None
    ) -> bool:
        request = self._requests.get(request_id)
        if request is None or request.status is not ApprovalStatus.PENDING:
            return False
        if approver is not None and request.approvers and approver not in request.approvers:
            logger.warning(f"{approver} is not an approver for request {request_id}")
            return False

        request.status = status
        request.decided_at = utc_now()
        request.decided_by = approver
        request.comment = comment
        self._decided[request_id].set()
        logger.info(f"Approval request {request_id} {status.value} by {approver or 'system'}")
        return True

    def get_approval_status(self, request_id: str) -> ApprovalStatus | None:
        request = self._requests.get(request_id)
        return request.status if request else None

    def get_request(self, request_id: str) -> ApprovalRequest | None:
        return self._requests.get(request_id)

    def pending_requests(self, deployment_id: str | None = None) -> builtins.list[ApprovalRequest]:
        return [
            request
            for request in self._requests.values()
            if request.status is ApprovalStatus.PENDING
            and (deployment_id is None or request.deployment_id == deployment_id)
        ]

    async def wait_for_decision(self, request_id: str, timeout: float) -> ApprovalStatus:
        """Wait until the request is decided or ``timeout`` seconds pass.

        A request still pending at the timeout is cancelled.
        """
        event = self._decided.get(request_id)
        if event is None:
            raise KeyError(f"Unknown approval request: {request_id}")

        deadline = time.monotonic() + timeout
        while not event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Approval request {request_id} timed out after {timeout}s")
                self.cancel_request(request_id)
                break
            try:
                await asyncio.wait_for(event.wait(), timeout=min(self.poll_interval, remaining))
            except asyncio.TimeoutError:
                continue

        return self._requests[request_id].status
