"""
Handshake codec.

Turns handshake payloads into self-contained, URL-safe tokens and back.
A token is the payload's JSON form wrapped in unpadded URL-safe base64.
Offer tokens carry an OfferPayload; answer tokens a bare answer
SessionDescription. Decoding either never returns a partial payload: any
failure raises InvalidHandshake.
"""

import base64
import binascii

from pydantic import BaseModel, ValidationError

from errors import InvalidHandshake
from handshake.models import OfferPayload, SessionDescription


def encode(payload: BaseModel) -> str:
    """Serialize a handshake payload into a token."""
    raw = payload.model_dump_json(by_alias=True, exclude_none=True)
    token = base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")
    return token.rstrip("=")


def _unwrap(token: str) -> bytes:
    token = token.strip()
    if not token:
        raise InvalidHandshake()
    padded = token + "=" * (-len(token) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidHandshake() from e


def decode_offer(token: str) -> OfferPayload:
    """Decode an offer token. Raises InvalidHandshake."""
    raw = _unwrap(token)
    try:
        return OfferPayload.model_validate_json(raw, by_alias=True, by_name=False)
    except ValidationError as e:
        raise InvalidHandshake() from e


def decode_answer(token: str) -> SessionDescription:
    """Decode an answer token. Raises InvalidHandshake."""
    raw = _unwrap(token)
    try:
        description = SessionDescription.model_validate_json(raw)
    except ValidationError as e:
        raise InvalidHandshake() from e
    if description.type != "answer":
        raise InvalidHandshake()
    return description


def build_link(base_url: str, token: str) -> str:
    """Place a token in the fragment of a shareable link."""
    return f"{base_url.split('#', 1)[0]}#{token}"


def token_from_link(text: str) -> str:
    """Accept a full link or a bare token and return the token."""
    text = text.strip()
    if "#" in text:
        return text.split("#", 1)[1]
    return text
