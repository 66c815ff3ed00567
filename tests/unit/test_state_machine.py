import pytest

from livechat.domain.enums import (
    ConnectionAction,
    ConnectionState,
    SessionAction,
    SessionStatus,
)
from livechat.domain.exceptions import InvalidConnectionTransition
from livechat.domain.state_machine import ConnectionLifecycle, SessionLifecycle


def test_connected_to_initializing_on_init() -> None:
    next_state = ConnectionLifecycle.transition(
        ConnectionState.CONNECTED, ConnectionAction.INIT
    )
    assert next_state == ConnectionState.INITIALIZING


def test_initializing_to_bound() -> None:
    next_state = ConnectionLifecycle.transition(
        ConnectionState.INITIALIZING, ConnectionAction.BIND
    )
    assert next_state == ConnectionState.BOUND


def test_failed_init_returns_to_connected() -> None:
    next_state = ConnectionLifecycle.transition(
        ConnectionState.INITIALIZING, ConnectionAction.FAIL
    )
    assert next_state == ConnectionState.CONNECTED


def test_bound_connection_can_reinitialize() -> None:
    next_state = ConnectionLifecycle.transition(
        ConnectionState.BOUND, ConnectionAction.INIT
    )
    assert next_state == ConnectionState.INITIALIZING


@pytest.mark.parametrize(
    "state",
    [ConnectionState.CONNECTED, ConnectionState.INITIALIZING, ConnectionState.BOUND],
)
def test_close_from_any_open_state(state: ConnectionState) -> None:
    assert (
        ConnectionLifecycle.transition(state, ConnectionAction.CLOSE)
        == ConnectionState.CLOSED
    )


def test_repeated_close_is_idempotent() -> None:
    next_state = ConnectionLifecycle.transition(
        ConnectionState.CLOSED, ConnectionAction.CLOSE
    )
    assert next_state == ConnectionState.CLOSED


@pytest.mark.parametrize(
    ("state", "action"),
    [
        (ConnectionState.CONNECTED, ConnectionAction.BIND),
        (ConnectionState.INITIALIZING, ConnectionAction.INIT),
        (ConnectionState.BOUND, ConnectionAction.BIND),
        (ConnectionState.CLOSED, ConnectionAction.INIT),
    ],
)
def test_invalid_transition_raises(
    state: ConnectionState, action: ConnectionAction
) -> None:
    with pytest.raises(InvalidConnectionTransition) as exc_info:
        ConnectionLifecycle.transition(state, action)
    assert exc_info.value.current == state
    assert exc_info.value.action == action


def test_only_bound_connections_accept_chat() -> None:
    assert ConnectionLifecycle.accepts_chat(ConnectionState.BOUND)
    assert not ConnectionLifecycle.accepts_chat(ConnectionState.CONNECTED)
    assert not ConnectionLifecycle.accepts_chat(ConnectionState.INITIALIZING)
    assert ConnectionLifecycle.is_terminal(ConnectionState.CLOSED)


def test_session_reactivation_and_close_are_idempotent() -> None:
    assert (
        SessionLifecycle.transition(SessionStatus.CLOSED, SessionAction.REACTIVATE)
        == SessionStatus.ACTIVE
    )
    assert (
        SessionLifecycle.transition(SessionStatus.ACTIVE, SessionAction.REACTIVATE)
        == SessionStatus.ACTIVE
    )
    assert (
        SessionLifecycle.transition(SessionStatus.CLOSED, SessionAction.CLOSE)
        == SessionStatus.CLOSED
    )

