"""Pydantic models for the transfer session."""

from enum import Enum
from pydantic import BaseModel


class AppState(str, Enum):
    """All possible states of a session."""
    IDLE = "idle"
    GENERATING_OFFER = "generatingOffer"
    AWAITING_ANSWER = "awaitingAnswer"
    PROCESSING_OFFER = "processingOffer"
    AWAITING_PASSWORD = "awaitingPassword"
    GENERATING_ANSWER = "generatingAnswer"
    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    TRANSFER_COMPLETE = "transferComplete"
    ERROR = "error"


TERMINAL_STATES = (AppState.TRANSFER_COMPLETE, AppState.ERROR)


class TransferDirection(str, Enum):
    SENDING = "sending"
    RECEIVING = "receiving"


class SessionInfo(BaseModel):
    """Full state of the current session, exposed to the frontend."""
    state: AppState = AppState.IDLE
    direction: TransferDirection | None = None
    file_name: str | None = None
    file_size: int = 0
    transferred_bytes: int = 0
    progress_percent: int = 0
    speed_bps: float = 0.0
    token: str | None = None
    link: str | None = None
    error_message: str | None = None
    saved_path: str | None = None


class ControlMessage(BaseModel):
    """Text message sent over the data channel after the last frame."""
    type: str


DONE_TYPE = "done"
