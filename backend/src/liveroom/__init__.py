"""Signaling relay for one-broadcaster, many-viewer WebRTC rooms."""

__version__ = "0.1.0"
