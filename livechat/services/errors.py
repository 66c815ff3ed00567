from uuid import UUID

from livechat.domain.enums import ConnectionState


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: UUID | str) -> None:
        super().__init__(f"Chat session '{session_id}' not found")
        self.session_id = session_id


class SessionAccessDeniedError(PermissionError):
    def __init__(self, session_id: UUID) -> None:
        super().__init__(
            f"Chat session '{session_id}' does not belong to the authenticated customer"
        )
        self.session_id = session_id


class ConnectionNotBoundError(RuntimeError):
    def __init__(self, state: ConnectionState) -> None:
        super().__init__(
            f"Connection is '{state.value}'. Send 'init' before chatting."
        )
        self.state = state


class InvalidApiKeyError(PermissionError):
    def __init__(self) -> None:
        super().__init__("Invalid API key")
