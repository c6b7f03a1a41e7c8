"""Dialogue phases, events and the transition table.

Every node of the agent reports what happened as an ``Event``; where the turn
goes next, and which bookkeeping happens on the way, is decided here and
nowhere else::

    router --both tools--> getlist --(chain check)--> check --> report --> end
       |                       \\--(chain report)-----------------^
       |--check only--> check --no targets--> getlist
       |--text / nothing--> end
       '--transport failure--> error --retry--> router
                                   '--budget spent--> end
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from camwatch.exceptions import CamwatchError
from camwatch.llm import Message, ToolCall
from camwatch.tools.cameras import Target


class Phase(str, Enum):
    ROUTER = "router"
    GETLIST = "getlist"
    CHECK = "check"
    REPORT = "report"
    ERROR = "error"
    END = "end"


class Event(str, Enum):
    # router
    LIST_AND_CHECK = "list_and_check"
    LIST_ONLY = "list_only"
    CHECK_ONLY = "check_only"
    OTHER_TOOLS = "other_tools"
    TEXT_REPLY = "text_reply"
    UNROUTABLE = "unroutable"
    TRANSPORT_FAILURE = "transport_failure"
    # getlist
    LISTED_THEN_CHECK = "listed_then_check"
    LISTED_THEN_REPORT = "listed_then_report"
    # check
    CHECKED = "checked"
    NO_TARGETS = "no_targets"
    # report
    REPORTED = "reported"
    REPORT_NEEDS_LIST = "report_needs_list"
    REPORT_NEEDS_LIST_AND_CHECK = "report_needs_list_and_check"
    REPORT_NEEDS_CHECK = "report_needs_check"
    # error
    RETRY = "retry"
    RETRIES_EXHAUSTED = "retries_exhausted"


class Effect(str, Enum):
    CHAIN_CHECK = "chain_check"
    CHAIN_REPORT = "chain_report"
    RESET_RETRY = "reset_retry"
    INCREMENT_RETRY = "increment_retry"
    MARK_VALID = "mark_valid"
    MARK_INVALID = "mark_invalid"


@dataclass(frozen=True)
class Transition:
    next_phase: Phase
    effects: tuple[Effect, ...] = ()


class InvalidTransitionError(CamwatchError):
    def __init__(self, phase: Phase, event: Event):
        super().__init__(f"No transition from {phase.value} on {event.value}")
        self.phase = phase
        self.event = event


_ROUTED = (Effect.RESET_RETRY, Effect.MARK_VALID)

TRANSITIONS: dict[tuple[Phase, Event], Transition] = {
    (Phase.ROUTER, Event.LIST_AND_CHECK): Transition(Phase.GETLIST, (Effect.CHAIN_CHECK, *_ROUTED)),
    (Phase.ROUTER, Event.LIST_ONLY): Transition(Phase.GETLIST, (Effect.CHAIN_REPORT, *_ROUTED)),
    (Phase.ROUTER, Event.CHECK_ONLY): Transition(Phase.CHECK, _ROUTED),
    (Phase.ROUTER, Event.OTHER_TOOLS): Transition(Phase.ROUTER, (Effect.MARK_VALID,)),
    (Phase.ROUTER, Event.TEXT_REPLY): Transition(Phase.END, _ROUTED),
    (Phase.ROUTER, Event.UNROUTABLE): Transition(Phase.END, (Effect.RESET_RETRY, Effect.MARK_INVALID)),
    (Phase.ROUTER, Event.TRANSPORT_FAILURE): Transition(Phase.ERROR),
    (Phase.GETLIST, Event.LISTED_THEN_CHECK): Transition(Phase.CHECK),
    (Phase.GETLIST, Event.LISTED_THEN_REPORT): Transition(Phase.REPORT),
    (Phase.CHECK, Event.CHECKED): Transition(Phase.REPORT),
    (Phase.CHECK, Event.NO_TARGETS): Transition(Phase.GETLIST, (Effect.CHAIN_CHECK,)),
    (Phase.REPORT, Event.REPORTED): Transition(Phase.END),
    (Phase.REPORT, Event.REPORT_NEEDS_LIST): Transition(Phase.GETLIST, (Effect.CHAIN_REPORT,)),
    (Phase.REPORT, Event.REPORT_NEEDS_LIST_AND_CHECK): Transition(Phase.GETLIST, (Effect.CHAIN_CHECK,)),
    (Phase.REPORT, Event.REPORT_NEEDS_CHECK): Transition(Phase.CHECK),
    (Phase.ERROR, Event.RETRY): Transition(Phase.ROUTER, (Effect.INCREMENT_RETRY, Effect.MARK_INVALID)),
    (Phase.ERROR, Event.RETRIES_EXHAUSTED): Transition(Phase.END, (Effect.RESET_RETRY, Effect.MARK_INVALID)),
}


def transition(phase: Phase, event: Event) -> Transition:
    """Look up where ``event`` takes the turn from ``phase``."""
    try:
        return TRANSITIONS[(phase, event)]
    except KeyError:
        raise InvalidTransitionError(phase, event) from None


@dataclass
class CheckResult:
    name: str
    status: str  # "success" | "error"
    detail: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "status": self.status, "detail": self.detail}


@dataclass
class AgentState:
    """State of one user turn. Created per turn, dropped at ``end``."""

    user_input: str
    messages: list[Message] = field(default_factory=list)
    phase: Phase = Phase.ROUTER
    retry_count: int = 0
    pending_targets: list[Target] = field(default_factory=list)
    results: list[CheckResult] = field(default_factory=list)
    valid_flow: bool = False
    next_action: Phase = Phase.REPORT
    open_calls: list[ToolCall] = field(default_factory=list)
    visited: list[Phase] = field(default_factory=list)
    listed: bool = False
    steps: int = 0
    usage: dict[str, int] = field(default_factory=dict)

    def append(self, message: Message) -> None:
        self.messages.append(message)

    @property
    def reply(self) -> str:
        """Content of the last message; the turn's answer once at ``end``."""
        if not self.messages:
            return ""
        return self.messages[-1].content or ""

    def apply(self, step: Transition) -> None:
        """Apply a transition's effects and move to its phase."""
        for effect in step.effects:
            if effect is Effect.CHAIN_CHECK:
                self.next_action = Phase.CHECK
            elif effect is Effect.CHAIN_REPORT:
                self.next_action = Phase.REPORT
            elif effect is Effect.RESET_RETRY:
                self.retry_count = 0
            elif effect is Effect.INCREMENT_RETRY:
                self.retry_count += 1
            elif effect is Effect.MARK_VALID:
                self.valid_flow = True
            elif effect is Effect.MARK_INVALID:
                self.valid_flow = False
        self.phase = step.next_phase

    def add_usage(self, usage: dict[str, int]) -> None:
        for key, value in (usage or {}).items():
            self.usage[key] = self.usage.get(key, 0) + int(value or 0)
