"""Publisher session state machine.

Pure transition table, independent of any store, sensor or UI binding.
"""

from __future__ import annotations

from enum import StrEnum

from buspresence.exceptions import InvalidTransitionError


class PublisherState(StrEnum):
    IDLE = "idle"
    STARTING = "starting"
    SHARING = "sharing"
    STOPPING = "stopping"


class PublisherEvent(StrEnum):
    START_REQUESTED = "start_requested"
    START_SUCCEEDED = "start_succeeded"
    START_FAILED = "start_failed"
    STOP_REQUESTED = "stop_requested"
    STOP_COMPLETED = "stop_completed"
    FATAL_ERROR = "fatal_error"


_TRANSITIONS: dict[tuple[PublisherState, PublisherEvent], PublisherState] = {
    (PublisherState.IDLE, PublisherEvent.START_REQUESTED): PublisherState.STARTING,
    (PublisherState.STARTING, PublisherEvent.START_SUCCEEDED): PublisherState.SHARING,
    (PublisherState.STARTING, PublisherEvent.START_FAILED): PublisherState.IDLE,
    # Restart: the previous subscription is torn down before re-acquiring.
    (PublisherState.SHARING, PublisherEvent.START_REQUESTED): PublisherState.STARTING,
    (PublisherState.SHARING, PublisherEvent.STOP_REQUESTED): PublisherState.STOPPING,
    (PublisherState.SHARING, PublisherEvent.FATAL_ERROR): PublisherState.IDLE,
    (PublisherState.STOPPING, PublisherEvent.STOP_COMPLETED): PublisherState.IDLE,
}


def transition(state: PublisherState, event: PublisherEvent) -> PublisherState:
    """Return the state reached from *state* on *event*.

    Raises
    ------
    InvalidTransitionError
        When *event* is not allowed in *state*.
    """
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(f"Cannot apply {event.value} while {state.value}") from None


def can_transition(state: PublisherState, event: PublisherEvent) -> bool:
    return (state, event) in _TRANSITIONS
