"""Authorization-checked mute state for viewers and the room's anchor."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..errors import NotFound, Unauthorized

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .outbox import Outbox
    from .rooms import Room, RoomDirectory


logger = logging.getLogger(__name__)

ANCHOR_MUTE = "live.anchor.mute"
ANCHOR_UNMUTE = "live.anchor.unmute"


class MuteController:
    def __init__(self, rooms: "RoomDirectory") -> None:
        self._rooms = rooms

    def _authorize(self, actor: str, target: str | None) -> "tuple[Room, str]":
        if not target:
            raise NotFound("targetId must be provided")
        room = self._rooms.room_of(target)
        if room is None or target not in room.viewers:
            raise NotFound(f"{target} is not a viewer of any room")
        if room.owner != actor:
            raise Unauthorized(f"{actor} does not own the room of {target}")
        return room, target

    def set_viewer_muted(self, actor: str, target: str | None, muted: bool, outbox: "Outbox") -> "Room":
        """Mute or unmute *target*; re-applying the same state still notifies."""

        room, viewer = self._authorize(actor, target)
        if muted:
            room.muted_viewers.add(viewer)
        else:
            room.muted_viewers.discard(viewer)
        payload = {"viewerId": viewer, "isMuted": muted}
        outbox.send_to(viewer, "viewer-muted-status", payload)
        outbox.send_to(room.owner, "viewer-muted-status", payload)
        logger.info("Viewer %s %s in room %s", viewer, "muted" if muted else "unmuted", room.id)
        return room

    def set_anchor_mute(self, anchor: str, is_muted: bool, outbox: "Outbox") -> "Room":
        room = self._rooms.owned_room(anchor)
        if room is None:
            raise Unauthorized(f"{anchor} does not own a room")
        room.anchor_muted = is_muted
        message_type = ANCHOR_MUTE if is_muted else ANCHOR_UNMUTE
        outbox.notify_viewers(room, message_type, {"anchorId": anchor, "isMuted": is_muted})
        logger.info("Anchor %s of room %s set muted=%s", anchor, room.id, is_muted)
        return room


__all__ = ["ANCHOR_MUTE", "ANCHOR_UNMUTE", "MuteController"]
