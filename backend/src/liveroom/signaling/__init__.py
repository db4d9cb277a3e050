"""Wire schemas and peer-to-peer relay of negotiation messages."""

from .router import RELAY_KINDS, SignalingRouter, build_relay_payload  # noqa: F401

__all__ = ["RELAY_KINDS", "SignalingRouter", "build_relay_payload"]
