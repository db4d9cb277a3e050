"""Live connection registry and the identity index."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator

from ..errors import ValidationFailure

logger = logging.getLogger(__name__)


class ClientRole(str, Enum):
    """Role a connection plays inside its current room."""

    NONE = "none"
    BROADCASTER = "broadcaster"
    VIEWER = "viewer"


@dataclass(eq=False)
class Connection:
    """A single socket's session. Lives exactly as long as the socket."""

    id: str
    websocket: Any
    identity: str | None = None
    username: str | None = None
    role: ClientRole = ClientRole.NONE


class IdentityIndex:
    """Map a stable client identity to its current transient connection id."""

    def __init__(self) -> None:
        self._bindings: Dict[str, str] = {}

    def bind(self, identity: str, transient_id: str) -> str | None:
        """Point *identity* at *transient_id*; return the superseded id, if any."""

        previous = self._bindings.get(identity)
        self._bindings[identity] = transient_id
        return previous if previous != transient_id else None

    def lookup(self, identity: str) -> str | None:
        return self._bindings.get(identity)

    def release(self, identity: str, transient_id: str) -> bool:
        # A reconnected identity must keep its fresh binding when the old
        # socket's close event arrives late.
        if self._bindings.get(identity) != transient_id:
            return False
        del self._bindings[identity]
        return True

    def __len__(self) -> int:
        return len(self._bindings)

    def __contains__(self, identity: object) -> bool:
        return identity in self._bindings


class ConnectionRegistry:
    """Own the set of live connections and the identity index pointing into it."""

    def __init__(self, identities: IdentityIndex | None = None) -> None:
        self._connections: Dict[str, Connection] = {}
        self.identities = identities or IdentityIndex()

    def register(self, websocket: Any) -> Connection:
        connection = Connection(id=uuid.uuid4().hex, websocket=websocket)
        self._connections[connection.id] = connection
        logger.info("Client connected, assigned id %s", connection.id)
        return connection

    def get(self, transient_id: str) -> Connection | None:
        return self._connections.get(transient_id)

    def bind(self, transient_id: str, identity: str | None, username: str | None) -> Connection:
        connection = self._connections.get(transient_id)
        if connection is None:
            raise ValidationFailure(f"Connection {transient_id} is not registered")
        identity = (identity or "").strip()
        username = (username or "").strip()
        if not identity or not username:
            raise ValidationFailure("register requires both identity and username")

        if connection.identity and connection.identity != identity:
            self.identities.release(connection.identity, connection.id)
        connection.identity = identity
        connection.username = username
        superseded = self.identities.bind(identity, transient_id)
        if superseded is not None:
            logger.info(
                "Identity %s rebound from connection %s to %s", identity, superseded, transient_id
            )
        logger.info("Registered connection %s as %s (%s)", transient_id, identity, username)
        return connection

    def rebind(self, connection: Connection) -> None:
        """Make *connection* the active one for its identity again."""

        if connection.identity is None:
            raise ValidationFailure("Connection has no bound identity")
        self.identities.bind(connection.identity, connection.id)

    def resolve(self, identity: str | None) -> Connection | None:
        if not identity:
            return None
        transient_id = self.identities.lookup(identity)
        if transient_id is None:
            return None
        return self._connections.get(transient_id)

    def remove(self, transient_id: str) -> Connection | None:
        """Drop the connection; the caller decides whether to release its identity."""

        connection = self._connections.pop(transient_id, None)
        if connection is not None:
            logger.info("Client disconnected: %s", transient_id)
        return connection

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __len__(self) -> int:
        return len(self._connections)


__all__ = ["ClientRole", "Connection", "ConnectionRegistry", "IdentityIndex"]
