"""Room entities, the identity → room index and the room state machine.

A room is created ``ACTIVE``. When its broadcaster's connection closes it
becomes ``PENDING_REJOIN`` and a grace timer starts; a rejoin by the same
identity brings it back to ``ACTIVE``, an expired timer removes it. Removal is
the implicit terminal state: the room simply disappears from the directory.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Set

from passlib.context import CryptContext

from ..errors import InvalidState, PasswordIncorrect, RejoinRejected, RoomNotFound, ValidationFailure
from ..monitoring.metrics import signaling_room_events_total, signaling_rooms
from .connections import ClientRole

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from .connections import ConnectionRegistry
    from .outbox import Outbox
    from .supervisor import ReconnectSupervisor, ScheduledCall


logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class RoomStatus(str, Enum):
    ACTIVE = "active"
    PENDING_REJOIN = "pending-rejoin"


@dataclass(eq=False)
class Room:
    id: str
    name: str
    owner: str
    password_hash: str | None = None
    viewers: Set[str] = field(default_factory=set)
    muted_viewers: Set[str] = field(default_factory=set)
    # Mute preference of viewers that left explicitly; restored when they return.
    departed_muted: Set[str] = field(default_factory=set)
    anchor_muted: bool = False
    status: RoomStatus = RoomStatus.ACTIVE
    reconnect_timer: "ScheduledCall | None" = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None

    def set_password(self, password: str | None) -> None:
        self.password_hash = pwd_context.hash(password) if password else None

    def check_password(self, password: str | None) -> bool:
        if self.password_hash is None:
            return True
        if not password:
            return False
        return pwd_context.verify(password, self.password_hash)

    def suspend(self, timer: "ScheduledCall") -> None:
        if self.status is RoomStatus.PENDING_REJOIN:
            raise InvalidState(f"Room {self.id} is already waiting for its broadcaster")
        self.status = RoomStatus.PENDING_REJOIN
        self.reconnect_timer = timer

    def resume(self) -> "ScheduledCall | None":
        """Return to ``ACTIVE`` and hand back the timer handle that was cleared."""

        timer, self.reconnect_timer = self.reconnect_timer, None
        self.status = RoomStatus.ACTIVE
        return timer

    def add_viewer(self, identity: str) -> bool:
        self.viewers.add(identity)
        if identity in self.departed_muted:
            self.departed_muted.discard(identity)
            self.muted_viewers.add(identity)
        return identity in self.muted_viewers

    def remove_viewer(self, identity: str, *, keep_mute: bool) -> None:
        self.viewers.discard(identity)
        if identity in self.muted_viewers:
            self.muted_viewers.discard(identity)
            if keep_mute:
                self.departed_muted.add(identity)
        if not keep_mute:
            self.departed_muted.discard(identity)


class RoomDirectory:
    """All rooms plus the identity → room membership index.

    Methods are synchronous; they must run inside the hub's critical section and
    report notifications through the given :class:`Outbox`.
    """

    def __init__(
        self,
        connections: "ConnectionRegistry",
        supervisor: "ReconnectSupervisor",
        *,
        name_max_length: int = 128,
    ) -> None:
        self._connections = connections
        self._supervisor = supervisor
        self._name_max_length = name_max_length
        self._rooms: Dict[str, Room] = {}
        self._membership: Dict[str, str] = {}
        # identity -> ids of rooms holding its mute from an explicit leave
        self._departed: Dict[str, Set[str]] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get(self, room_id: str | None) -> Room | None:
        if not room_id:
            return None
        return self._rooms.get(room_id)

    def room_of(self, identity: str | None) -> Room | None:
        if not identity:
            return None
        return self._rooms.get(self._membership.get(identity, ""))

    def owned_room(self, identity: str | None) -> Room | None:
        room = self.room_of(identity)
        if room is not None and room.owner == identity:
            return room
        return None

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms

    def list_rooms(self) -> list[dict[str, Any]]:
        listing = []
        for room in self._rooms.values():
            owner_connection = self._connections.resolve(room.owner)
            listing.append(
                {
                    "roomId": room.id,
                    "roomName": room.name,
                    "broadcasterName": owner_connection.username if owner_connection else None,
                    "viewerCount": len(room.viewers),
                    "isPasswordProtected": room.is_password_protected,
                }
            )
        return listing

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def _clean_name(self, name: str | None) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationFailure("roomName must be provided")
        if len(cleaned) > self._name_max_length:
            raise ValidationFailure(f"roomName exceeds {self._name_max_length} characters")
        return cleaned

    def create_room(
        self, owner: str, name: str | None, password: str | None, outbox: "Outbox"
    ) -> Room:
        cleaned = self._clean_name(name)
        current = self.room_of(owner)
        if current is not None:
            if current.owner == owner:
                logger.info("Broadcaster %s opened a new room; closing %s", owner, current.id)
                self.close_room(current, outbox, event="replaced")
            else:
                self.leave_room(owner, outbox, keep_mute=True)

        room = Room(id=str(uuid.uuid4()), name=cleaned, owner=owner)
        room.set_password(password)
        self._rooms[room.id] = room
        self._membership[owner] = room.id
        signaling_room_events_total.labels("created").inc()
        self._refresh_gauges()
        logger.info("Room %s (%s) created by %s", room.id, room.name, owner)
        return room

    def join_room(
        self,
        viewer: str,
        room_id: str | None,
        password: str | None,
        outbox: "Outbox",
        *,
        username: str | None = None,
    ) -> tuple[Room, bool]:
        """Add *viewer* to the room and return it with the viewer's mute status."""

        room = self.get(room_id)
        if room is None:
            raise RoomNotFound("Room not found")
        if not room.check_password(password):
            raise PasswordIncorrect("Incorrect room password")
        if room.owner == viewer or self.owned_room(viewer) is not None:
            raise InvalidState("A broadcaster cannot join a room as a viewer")

        current = self.room_of(viewer)
        if current is not None and current is not room:
            self.leave_room(viewer, outbox, keep_mute=True)

        is_muted = room.add_viewer(viewer)
        self._discard_departed(viewer, room.id)
        self._membership[viewer] = room.id
        outbox.send_to(
            room.owner,
            "new-viewer",
            {"viewerId": viewer, "username": username, "isMuted": is_muted},
        )
        logger.info("Viewer %s joined room %s", viewer, room.id)
        return room, is_muted

    def leave_room(self, identity: str, outbox: "Outbox", *, keep_mute: bool) -> Room | None:
        """Remove a viewer from its room; ``keep_mute`` is True for explicit leaves."""

        room = self.room_of(identity)
        if room is None or identity not in room.viewers:
            return None
        room.remove_viewer(identity, keep_mute=keep_mute)
        if identity in room.departed_muted:
            self._departed.setdefault(identity, set()).add(room.id)
        else:
            self._discard_departed(identity, room.id)
        self._membership.pop(identity, None)
        outbox.send_to(room.owner, "viewer-left", {"viewerId": identity})
        logger.info("Viewer %s left room %s", identity, room.id)
        return room

    def broadcaster_disconnected(self, room: Room, outbox: "Outbox") -> None:
        if room.status is RoomStatus.PENDING_REJOIN:
            return
        self._supervisor.start(room)
        outbox.notify_viewers(
            room,
            "broadcaster-disconnected",
            {"roomId": room.id, "gracePeriodSeconds": self._supervisor.grace_seconds},
        )
        signaling_room_events_total.labels("suspended").inc()
        self._refresh_gauges()

    def rejoin_room(
        self,
        identity: str,
        room_id: str | None,
        name: str | None,
        password: str | None,
        outbox: "Outbox",
        *,
        update_password: bool = False,
    ) -> Room:
        room = self.get(room_id)
        if room is None:
            raise RejoinRejected("Room no longer exists")
        if room.owner != identity:
            raise RejoinRejected("Room is owned by another broadcaster")
        new_name = None
        if name and name.strip():
            try:
                new_name = self._clean_name(name)
            except ValidationFailure as exc:
                raise RejoinRejected(exc.message) from exc

        # A rejected rejoin must leave the grace timer running.
        self._supervisor.cancel(room)

        current = self.room_of(identity)
        if current is not None and current is not room:
            self.leave_room(identity, outbox, keep_mute=True)
        self._membership[identity] = room.id

        if new_name is not None:
            room.name = new_name
        if update_password:
            room.set_password(password)

        outbox.notify_viewers(room, "broadcaster-rejoined", {"roomId": room.id}, excluding={identity})
        signaling_room_events_total.labels("rejoined").inc()
        self._refresh_gauges()
        logger.info("Broadcaster %s rejoined room %s", identity, room.id)
        return room

    def expire(self, room_id: str, timer: "ScheduledCall", outbox: "Outbox") -> bool:
        """Close the room if *timer* is still its live grace timer."""

        room = self._rooms.get(room_id)
        if room is None or room.status is not RoomStatus.PENDING_REJOIN:
            return False
        if not self._supervisor.is_current(room, timer):
            return False
        room.resume()
        logger.info("Broadcaster %s did not return; closing room %s", room.owner, room.id)
        self.close_room(room, outbox, event="expired")
        return True

    def close_room(self, room: Room, outbox: "Outbox", *, event: str = "closed") -> None:
        self._supervisor.cancel(room)
        outbox.notify_viewers(room, "room-closed", {"roomId": room.id})
        for viewer in list(room.viewers):
            if self._membership.get(viewer) == room.id:
                del self._membership[viewer]
            connection = self._connections.resolve(viewer)
            if connection is not None and connection.role is ClientRole.VIEWER:
                connection.role = ClientRole.NONE
        if self._membership.get(room.owner) == room.id:
            del self._membership[room.owner]
        for identity in room.departed_muted:
            self._discard_departed(identity, room.id)
        self._rooms.pop(room.id, None)
        signaling_room_events_total.labels(event).inc()
        self._refresh_gauges()

    def forget_departed(self, identity: str) -> None:
        """Drop mute state kept for *identity* by rooms it left explicitly."""

        for room_id in self._departed.pop(identity, set()):
            room = self._rooms.get(room_id)
            if room is not None:
                room.departed_muted.discard(identity)

    def _discard_departed(self, identity: str, room_id: str) -> None:
        rooms = self._departed.get(identity)
        if rooms is None:
            return
        rooms.discard(room_id)
        if not rooms:
            del self._departed[identity]

    def _refresh_gauges(self) -> None:
        pending = sum(1 for room in self._rooms.values() if room.status is RoomStatus.PENDING_REJOIN)
        signaling_rooms.labels(RoomStatus.ACTIVE.value).set(len(self._rooms) - pending)
        signaling_rooms.labels(RoomStatus.PENDING_REJOIN.value).set(pending)


__all__ = ["Room", "RoomDirectory", "RoomStatus", "pwd_context"]
