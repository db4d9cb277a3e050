"""Metric definitions for the signaling relay."""

from __future__ import annotations

from .registry import registry


signaling_connections = registry.gauge(
    "signaling_active_connections",
    "Number of open websocket connections.",
)

signaling_rooms = registry.gauge(
    "signaling_active_rooms",
    "Number of rooms currently held in memory.",
    label_names=("status",),
)

signaling_messages_total = registry.counter(
    "signaling_messages_total",
    "Count of signaling envelopes processed.",
    label_names=("type", "direction"),
)

signaling_dropped_total = registry.counter(
    "signaling_dropped_messages_total",
    "Inbound envelopes dropped without a client-visible reply.",
    label_names=("type", "reason"),
)

signaling_room_events_total = registry.counter(
    "signaling_room_events_total",
    "Room lifecycle transitions.",
    label_names=("event",),
)
