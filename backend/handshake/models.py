"""Pydantic models for the copy-pasted handshake."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SessionDescription(BaseModel):
    """One endpoint's transport parameters (an SDP blob plus its kind)."""
    model_config = ConfigDict(frozen=True, strict=True, extra="forbid")

    type: Literal["offer", "answer"]
    sdp: str


class OfferPayload(BaseModel):
    """Everything the responder needs, packed into the offer token."""
    # Built by field name in code; tokens only ever decode by alias
    model_config = ConfigDict(
        frozen=True,
        strict=True,
        extra="forbid",
        validate_by_name=True,
        validate_by_alias=True,
        serialize_by_alias=True,
    )

    sdp: SessionDescription
    file_name: str = Field(alias="fileName")
    file_size: int = Field(alias="fileSize", ge=0)
    password_hash: str | None = Field(
        default=None, alias="passwordHash", min_length=1
    )

    @field_validator("sdp")
    @classmethod
    def _must_be_offer(cls, value: SessionDescription) -> SessionDescription:
        if value.type != "offer":
            raise ValueError("offer payload must carry an offer description")
        return value

    @property
    def requires_secret(self) -> bool:
        return self.password_hash is not None
