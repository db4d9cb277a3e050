"""Room registry, connection bindings and the signaling hub."""

from .connections import ClientRole, Connection, ConnectionRegistry, IdentityIndex  # noqa: F401
from .dispatcher import Dispatcher  # noqa: F401
from .hub import SignalingHub  # noqa: F401
from .rooms import Room, RoomDirectory, RoomStatus  # noqa: F401
from .supervisor import AsyncioScheduler, ReconnectSupervisor  # noqa: F401

__all__ = [
    "AsyncioScheduler",
    "ClientRole",
    "Connection",
    "ConnectionRegistry",
    "Dispatcher",
    "IdentityIndex",
    "ReconnectSupervisor",
    "Room",
    "RoomDirectory",
    "RoomStatus",
    "SignalingHub",
]
