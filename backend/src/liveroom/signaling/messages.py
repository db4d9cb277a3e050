"""Schemas for inbound signaling envelopes and their payloads."""

from __future__ import annotations

import json
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MalformedMessage, ValidationFailure

PayloadT = TypeVar("PayloadT", bound="SignalPayload")


class Envelope(BaseModel):
    """Every frame is ``{"type": ..., "payload": {...}}``."""

    model_config = ConfigDict(extra="ignore")

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class SignalPayload(BaseModel):
    """Base for payload schemas: camelCase on the wire, unknown keys ignored."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        coerce_numbers_to_str=True,
        str_strip_whitespace=True,
    )


class RegisterPayload(SignalPayload):
    identity: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)


class CreateRoomPayload(SignalPayload):
    room_name: str = Field(..., alias="roomName", min_length=1)
    password: str | None = None


class RejoinRoomPayload(SignalPayload):
    # A missing room id is answered as an unknown room, not dropped.
    room_id: str | None = Field(default=None, alias="roomId")
    room_name: str | None = Field(default=None, alias="roomName")
    password: str | None = None


class JoinRoomPayload(SignalPayload):
    room_id: str | None = Field(default=None, alias="roomId")
    password: str | None = None


class TargetPayload(SignalPayload):
    """Payload of mute-viewer, unmute-viewer and kick-user."""

    target_id: str = Field(..., alias="targetId", min_length=1)


class AnchorMutePayload(SignalPayload):
    anchor_id: str | None = Field(default=None, alias="anchorId")
    is_muted: bool | None = Field(default=None, alias="isMuted")


def parse_envelope(raw: str | bytes) -> Envelope:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise MalformedMessage("Failed to parse message") from exc
    if not isinstance(data, dict):
        raise MalformedMessage("Message must be a JSON object")
    if data.get("payload") is None:
        data["payload"] = {}
    try:
        return Envelope.model_validate(data)
    except ValidationError as exc:
        raise MalformedMessage(f"Invalid envelope: {exc.errors()[0]['msg']}") from exc


def parse_payload(model: Type[PayloadT], payload: dict[str, Any]) -> PayloadT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(
            ".".join(str(part) for part in error["loc"]) or "payload" for error in exc.errors()
        )
        raise ValidationFailure(f"Invalid {model.__name__}: {fields}") from exc


__all__ = [
    "AnchorMutePayload",
    "CreateRoomPayload",
    "Envelope",
    "JoinRoomPayload",
    "RegisterPayload",
    "RejoinRoomPayload",
    "SignalPayload",
    "TargetPayload",
    "parse_envelope",
    "parse_payload",
]
