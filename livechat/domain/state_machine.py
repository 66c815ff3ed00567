from livechat.domain.enums import (
    ConnectionAction,
    ConnectionState,
    SessionAction,
    SessionStatus,
)
from livechat.domain.exceptions import InvalidConnectionTransition


class ConnectionLifecycle:
    """State machine for a live connection: connected -> initializing -> bound -> closed."""

    _allowed_transitions: dict[tuple[ConnectionState, ConnectionAction], ConnectionState] = {
        (ConnectionState.CONNECTED, ConnectionAction.INIT): ConnectionState.INITIALIZING,
        (ConnectionState.BOUND, ConnectionAction.INIT): ConnectionState.INITIALIZING,
        (ConnectionState.INITIALIZING, ConnectionAction.BIND): ConnectionState.BOUND,
        (ConnectionState.INITIALIZING, ConnectionAction.FAIL): ConnectionState.CONNECTED,
        (ConnectionState.CONNECTED, ConnectionAction.CLOSE): ConnectionState.CLOSED,
        (ConnectionState.INITIALIZING, ConnectionAction.CLOSE): ConnectionState.CLOSED,
        (ConnectionState.BOUND, ConnectionAction.CLOSE): ConnectionState.CLOSED,
    }

    @classmethod
    def transition(cls, current: ConnectionState, action: ConnectionAction) -> ConnectionState:
        # Transport close may be reported more than once.
        if current == ConnectionState.CLOSED and action == ConnectionAction.CLOSE:
            return ConnectionState.CLOSED

        next_state = cls._allowed_transitions.get((current, action))
        if not next_state:
            raise InvalidConnectionTransition(current=current, action=action)
        return next_state

    @staticmethod
    def accepts_chat(state: ConnectionState) -> bool:
        return state == ConnectionState.BOUND

    @staticmethod
    def is_terminal(state: ConnectionState) -> bool:
        return state == ConnectionState.CLOSED


class SessionLifecycle:
    """Durable session status: active <-> closed. Repeated actions are no-ops."""

    _targets: dict[SessionAction, SessionStatus] = {
        SessionAction.REACTIVATE: SessionStatus.ACTIVE,
        SessionAction.CLOSE: SessionStatus.CLOSED,
    }

    @classmethod
    def transition(cls, current: SessionStatus, action: SessionAction) -> SessionStatus:
        return cls._targets.get(action, current)
