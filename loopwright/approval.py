"""Human approval of risky tool actions."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from loopwright.logging import get_logger
from loopwright.wire import WireEvent

log = get_logger(__name__)


class ApprovalResponse(str, Enum):
    APPROVE = "approve"
    APPROVE_FOR_SESSION = "approve_for_session"
    REJECT = "reject"


@dataclass
class ApprovalRequest(WireEvent):
    """Pending approval; observers answer it through :meth:`resolve`."""

    tool_call_id: str
    action: str
    description: str
    future: asyncio.Future[ApprovalResponse] | None = field(default=None, repr=False, compare=False)

    event_type = "approval_request"

    def resolve(self, response: ApprovalResponse) -> None:
        if self.future is not None and not self.future.done():
            self.future.set_result(response)

    @property
    def resolved(self) -> bool:
        return self.future is not None and self.future.done()


class Approval:
    """Approval service shared by the tools of one agent.

    ``fork`` creates a sibling that shares the yolo flag and the session-level
    approval cache but has its own subscribers, so a subagent's requests flow
    through the subagent's own wire.
    """

    def __init__(self, yolo: bool = False, session_approvals: set[str] | None = None):
        self.yolo = yolo
        self._session_approvals: set[str] = session_approvals if session_approvals is not None else set()
        self._subscribers: list[Callable[[ApprovalRequest], None]] = []

    def fork(self) -> "Approval":
        return Approval(yolo=self.yolo, session_approvals=self._session_approvals)

    def subscribe(self, callback: Callable[[ApprovalRequest], None]) -> Callable[[], None]:
        """Register a request observer; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def request_approval(
        self,
        tool_call_id: str,
        action: str,
        description: str,
    ) -> ApprovalResponse:
        if self.yolo:
            log.debug("Yolo mode: auto-approving action", action=action)
            return ApprovalResponse.APPROVE

        if action in self._session_approvals:
            log.debug("Action already approved for session", action=action)
            return ApprovalResponse.APPROVE

        if not self._subscribers:
            log.warning(
                "Approval required but nobody is listening; allowing",
                action=action,
                description=description,
            )
            return ApprovalResponse.APPROVE

        loop = asyncio.get_running_loop()
        request = ApprovalRequest(
            tool_call_id=tool_call_id,
            action=action,
            description=description,
            future=loop.create_future(),
        )
        for callback in list(self._subscribers):
            callback(request)
        log.debug("Approval request sent", action=action)

        response = await request.future
        if response == ApprovalResponse.APPROVE_FOR_SESSION:
            self._session_approvals.add(action)
            log.info("Action approved for session", action=action)
        return response

    @property
    def session_approval_count(self) -> int:
        return len(self._session_approvals)
