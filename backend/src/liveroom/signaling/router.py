"""Point-to-point relay of WebRTC negotiation messages.

The router never looks at room membership: any registered identity may
address any other. Delivery is best effort; peers retry negotiation on their
own when a message is lost.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping

from ..errors import NotFound, ValidationFailure

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from ..realtime.connections import ConnectionRegistry
    from ..realtime.outbox import Outbox


logger = logging.getLogger(__name__)

RELAY_KINDS = frozenset({"offer", "answer", "candidate"})
TARGET_FIELD = "targetId"
SENDER_FIELD = "senderId"


def build_relay_payload(sender: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy the negotiation body, drop the routing target and stamp the sender."""

    body: Dict[str, Any] = {key: value for key, value in payload.items() if key != TARGET_FIELD}
    body[SENDER_FIELD] = sender
    return body


class SignalingRouter:
    def __init__(self, connections: "ConnectionRegistry") -> None:
        self._connections = connections

    def relay(
        self,
        sender: str,
        kind: str,
        payload: Mapping[str, Any],
        outbox: "Outbox",
    ) -> None:
        if kind not in RELAY_KINDS:
            raise ValidationFailure(f"{kind} is not a relayable message")
        target = payload.get(TARGET_FIELD)
        if not isinstance(target, str) or not target:
            raise ValidationFailure(f"{kind} from {sender} is missing {TARGET_FIELD}")
        connection = self._connections.resolve(target)
        if connection is None:
            raise NotFound(f"Could not find target client {target}")
        outbox.send(connection, kind, build_relay_payload(sender, payload))
        logger.debug("Routing %s from %s to %s", kind, sender, target)


__all__ = ["RELAY_KINDS", "SignalingRouter", "build_relay_payload"]
