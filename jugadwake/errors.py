from __future__ import annotations


class JugadWakeError(Exception):
    """Base class for errors raised by the listening service."""


class SessionAlreadyActive(JugadWakeError):
    def __init__(self, session_id: int) -> None:
        super().__init__(f"recognition session {session_id} is still live")
        self.session_id = session_id


class EngineError(JugadWakeError):
    """The recognition engine could not open or close a session."""


class LeaseError(JugadWakeError):
    """The exclusivity resource provider failed to grant or release a lease."""


__all__ = ["JugadWakeError", "SessionAlreadyActive", "EngineError", "LeaseError"]
