"""Durable holding slot for a password-gated offer awaiting its secret."""

import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from config import PENDING_OFFER_FILE
from handshake.models import OfferPayload

logger = logging.getLogger(__name__)


class PendingSlot:
    """
    Single-entry store for the offer that is waiting on a secret.

    The payload is written to disk unencrypted, so it is only as private
    as the local config directory.
    """

    def __init__(self, path: Path | None = None):
        self._path = Path(path) if path else PENDING_OFFER_FILE

    @property
    def path(self) -> Path:
        return self._path

    def save(self, payload: OfferPayload) -> None:
        self._path.write_text(payload.model_dump_json(by_alias=True, exclude_none=True))
        logger.info(f"Stored pending offer for '{payload.file_name}'")

    def load(self) -> Optional[OfferPayload]:
        """Return the held offer, or None when the slot is empty or unreadable."""
        if not self._path.exists():
            return None

        try:
            return OfferPayload.model_validate_json(
                self._path.read_text(), by_alias=True, by_name=False
            )
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to load pending offer: {e}")
            return None

    def clear(self) -> None:
        self._path.unlink(missing_ok=True)
