"""Exception hierarchy raised by the signaling core.

Handlers raise these and the dispatcher decides whether the failure is
surfaced to the client (join/rejoin) or only logged.
"""

from __future__ import annotations


class SignalingError(Exception):
    """Base class for recoverable, per-connection signaling failures."""

    code: str = "SIGNALING_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class MalformedMessage(SignalingError):
    """Inbound frame could not be decoded into an envelope."""

    code = "MALFORMED_MESSAGE"


class ValidationFailure(SignalingError):
    """Required payload fields are missing or invalid."""

    code = "VALIDATION_FAILED"


class UnknownMessageType(SignalingError):
    """Envelope type is not handled by this server."""

    code = "UNKNOWN_TYPE"


class Unauthorized(SignalingError):
    """Privileged action attempted by an identity that does not own the room."""

    code = "UNAUTHORIZED"


class NotFound(SignalingError):
    """Target identity or room is not reachable."""

    code = "NOT_FOUND"


class RoomNotFound(NotFound):
    """Room does not exist."""

    code = "ROOM_NOT_FOUND"


class PasswordIncorrect(SignalingError):
    """Room password does not match."""

    code = "PASSWORD_INCORRECT"


class RejoinRejected(SignalingError):
    """Room is gone or owned by another identity."""

    code = "REJOIN_REJECTED"


class InvalidState(SignalingError):
    """Operation is not allowed in the caller's current state."""

    code = "INVALID_STATE"


__all__ = [
    "SignalingError",
    "MalformedMessage",
    "ValidationFailure",
    "UnknownMessageType",
    "Unauthorized",
    "NotFound",
    "RoomNotFound",
    "PasswordIncorrect",
    "RejoinRejected",
    "InvalidState",
]
