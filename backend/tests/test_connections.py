from __future__ import annotations

import pytest

from liveroom.errors import ValidationFailure
from liveroom.realtime.connections import ClientRole, ConnectionRegistry

from support import DummyWebSocket


def test_register_creates_unbound_connection() -> None:
    registry = ConnectionRegistry()
    connection = registry.register(DummyWebSocket())

    assert connection.identity is None
    assert connection.role is ClientRole.NONE
    assert registry.get(connection.id) is connection
    assert len(registry) == 1


@pytest.mark.parametrize(
    ("identity", "username"),
    [(None, "Alice"), ("alice", None), ("", "Alice"), ("alice", "   ")],
)
def test_bind_requires_identity_and_username(identity, username) -> None:
    registry = ConnectionRegistry()
    connection = registry.register(DummyWebSocket())

    with pytest.raises(ValidationFailure):
        registry.bind(connection.id, identity, username)

    assert connection.identity is None
    assert len(registry.identities) == 0


def test_resolve_follows_latest_binding() -> None:
    registry = ConnectionRegistry()
    first = registry.register(DummyWebSocket())
    second = registry.register(DummyWebSocket())

    registry.bind(first.id, "alice", "Alice")
    assert registry.resolve("alice") is first

    registry.bind(second.id, "alice", "Alice again")
    assert registry.resolve("alice") is second
    assert registry.resolve("nobody") is None


def test_stale_close_keeps_fresh_binding() -> None:
    """An old socket closing after its identity reconnected must not unbind the new one."""

    registry = ConnectionRegistry()
    old = registry.register(DummyWebSocket())
    new = registry.register(DummyWebSocket())
    registry.bind(old.id, "alice", "Alice")
    registry.bind(new.id, "alice", "Alice")

    registry.remove(old.id)
    assert registry.identities.release("alice", old.id) is False
    assert registry.resolve("alice") is new

    registry.remove(new.id)
    assert registry.identities.release("alice", new.id) is True
    assert registry.resolve("alice") is None


def test_resolve_returns_none_once_connection_removed() -> None:
    registry = ConnectionRegistry()
    connection = registry.register(DummyWebSocket())
    registry.bind(connection.id, "alice", "Alice")

    registry.remove(connection.id)

    assert registry.resolve("alice") is None


def test_rebinding_connection_to_new_identity_releases_old_one() -> None:
    registry = ConnectionRegistry()
    connection = registry.register(DummyWebSocket())
    registry.bind(connection.id, "alice", "Alice")
    registry.bind(connection.id, "bob", "Bob")

    assert registry.resolve("alice") is None
    assert registry.resolve("bob") is connection
