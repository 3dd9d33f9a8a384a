from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Protocol
from pydantic import BaseModel


class CallStatus(str, Enum):
    NEW = "new"
    CREATE = "create"
    INVITE = "invite"
    ACCEPTED = "accepted"
    BYE = "bye"
    REJECTED_A = "rejected_a"
    REJECTED_B = "rejected_b"


# A call in one of these states is still being set up.
PENDING_STATUSES = frozenset({CallStatus.NEW, CallStatus.CREATE, CallStatus.INVITE})


class Call(BaseModel):
    id: str
    status: CallStatus
    number: str | None = None
    active: bool = False


class CallService(Protocol):
    """What the session needs from the call subsystem."""

    def init_services(self) -> None: ...

    def disconnect(self, reconnect: bool = True) -> None: ...


def new_call_allowed(calls: Mapping[str, Call] | Iterable[Call]) -> bool:
    """Only one call may be in the set-up phase at any time."""
    if isinstance(calls, Mapping):
        calls = calls.values()
    return not any(CallStatus(call.status) in PENDING_STATUSES for call in calls)
