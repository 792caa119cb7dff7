"""Wire: ordered event channel between the agent runtime and its observers."""

from dataclasses import dataclass
from typing import Callable

from loopwright.logging import get_logger

log = get_logger(__name__)


class WireEvent:
    """Marker base for everything sent over the wire."""

    event_type: str = "event"


@dataclass
class StepBegin(WireEvent):
    step_no: int
    is_subagent: bool = False
    agent_name: str = ""

    event_type = "step_begin"


@dataclass
class ContentPartEvent(WireEvent):
    text: str

    event_type = "content_part"


@dataclass
class CheckpointCreated(WireEvent):
    checkpoint_id: int

    event_type = "checkpoint"


@dataclass
class CompactionBegin(WireEvent):
    token_count: int = 0

    event_type = "compaction_begin"


@dataclass
class CompactionEnd(WireEvent):
    compacted: bool = True

    event_type = "compaction_end"


@dataclass
class StepInterrupted(WireEvent):
    error: str = ""

    event_type = "step_interrupted"


WireCallback = Callable[[WireEvent], None]


class Subscription:
    """Handle returned by :meth:`Wire.subscribe`; closing it stops delivery."""

    def __init__(self, wire: "Wire", callback: WireCallback):
        self._wire = wire
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._wire._unsubscribe(self)


class Wire:
    """Append-only, ordered event channel.

    ``send`` delivers synchronously to every subscriber in subscription order,
    so events reach each observer in exactly the order they were emitted.
    """

    def __init__(self, name: str = "main"):
        self.name = name
        self._subscriptions: list[Subscription] = []
        self._completed = False

    def subscribe(self, callback: WireCallback) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def send(self, event: WireEvent) -> None:
        if self._completed:
            log.debug("Dropping event on completed wire", wire=self.name, event_type=event.event_type)
            return
        for subscription in list(self._subscriptions):
            try:
                subscription.callback(event)
            except Exception as e:
                log.warning(
                    "Wire subscriber failed",
                    wire=self.name,
                    event_type=event.event_type,
                    error=str(e),
                )

    def complete(self) -> None:
        """Stop accepting events and release all subscribers."""
        self._completed = True
        for subscription in list(self._subscriptions):
            subscription.close()
