"""Session error taxonomy.

Every error carries a human-readable message that is shown to the user as-is.
"""


class SessionError(Exception):
    """Base class for errors surfaced through the session state."""

    default_message = "Something went wrong."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidHandshake(SessionError):
    """Token is malformed or undecodable; the user needs a fresh one."""

    default_message = "Invalid transmission link."


class IncorrectSecret(SessionError):
    """Submitted secret does not match the offer's digest."""

    default_message = "Incorrect secret code."


class TransportFailure(SessionError):
    """Connection failed or dropped. Terminal for the session."""

    default_message = "Connection failed. Please try again."


class PendingPayloadMissing(SessionError):
    """Authentication was attempted with no stored offer."""

    default_message = "Transmission data not found. Please use the original link."


class StorageFailure(SessionError):
    """Received file could not be written to the save directory."""

    default_message = "Could not save the received file."
