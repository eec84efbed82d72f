from __future__ import annotations

import pytest

from buspresence.exceptions import InvalidTransitionError
from buspresence.state.machine import PublisherEvent, PublisherState, can_transition, transition


@pytest.mark.parametrize(
    ("state", "event", "expected"),
    [
        (PublisherState.IDLE, PublisherEvent.START_REQUESTED, PublisherState.STARTING),
        (PublisherState.STARTING, PublisherEvent.START_SUCCEEDED, PublisherState.SHARING),
        (PublisherState.STARTING, PublisherEvent.START_FAILED, PublisherState.IDLE),
        (PublisherState.SHARING, PublisherEvent.START_REQUESTED, PublisherState.STARTING),
        (PublisherState.SHARING, PublisherEvent.STOP_REQUESTED, PublisherState.STOPPING),
        (PublisherState.SHARING, PublisherEvent.FATAL_ERROR, PublisherState.IDLE),
        (PublisherState.STOPPING, PublisherEvent.STOP_COMPLETED, PublisherState.IDLE),
    ],
)
def test_allowed_transitions(state: PublisherState, event: PublisherEvent, expected: PublisherState) -> None:
    assert can_transition(state, event)
    assert transition(state, event) is expected


@pytest.mark.parametrize(
    ("state", "event"),
    [
        (PublisherState.IDLE, PublisherEvent.STOP_REQUESTED),
        (PublisherState.IDLE, PublisherEvent.FATAL_ERROR),
        (PublisherState.STARTING, PublisherEvent.START_REQUESTED),
        (PublisherState.STOPPING, PublisherEvent.START_REQUESTED),
        (PublisherState.STOPPING, PublisherEvent.FATAL_ERROR),
    ],
)
def test_rejected_transitions(state: PublisherState, event: PublisherEvent) -> None:
    assert not can_transition(state, event)
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(state, event)
    assert state.value in str(exc_info.value)
