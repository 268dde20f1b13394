"""
Subscription registry: which connection listens to which channel.

The registry is plain data and holds no lock of its own.  It is only ever
changed on the event loop, and connection add/remove goes through
``ConnectionManager`` under the manager lock, so a connection's entry
disappears in the same step as the connection itself.

``subscribers(channel)`` returns a copy, so a broadcast iterates a stable
list even if subscriptions change while it runs.
"""

from __future__ import annotations

from collections.abc import Iterable

__all__ = ["SubscriptionRegistry"]


class SubscriptionRegistry:
    """Per-connection channel sets.

    Example::

        registry = SubscriptionRegistry()
        registry.add("client-1")
        registry.subscribe("client-1", ["files"])      # -> {"files"}
        registry.subscribe("client-1", ["files"])      # -> set()  (no-op)
        registry.subscribers("files")                  # -> ["client-1"]
    """

    def __init__(self) -> None:
        # dicts keep insertion order, which keeps fan-out order stable
        self._channels: dict[str, dict[str, None]] = {}

    def add(self, connection_id: str) -> None:
        self._channels.setdefault(connection_id, {})

    def discard(self, connection_id: str) -> None:
        self._channels.pop(connection_id, None)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._channels

    def subscribe(self, connection_id: str, channels: Iterable[str]) -> set[str]:
        """Add ``channels``; returns only the channels that were newly added.

        Unknown connections are ignored and get an empty result.
        """
        return set(self.subscribe_ordered(connection_id, channels))

    def subscribe_ordered(self, connection_id: str, channels: Iterable[str]) -> list[str]:
        """Like :meth:`subscribe` but preserves request order of new channels."""
        current = self._channels.get(connection_id)
        if current is None:
            return []
        added = []
        for channel in channels:
            if channel not in current:
                current[channel] = None
                added.append(channel)
        return added

    def unsubscribe(self, connection_id: str, channels: Iterable[str]) -> set[str]:
        """Remove ``channels``; returns the remaining subscription set."""
        current = self._channels.get(connection_id)
        if current is None:
            return set()
        for channel in channels:
            current.pop(channel, None)
        return set(current)

    def channels_of(self, connection_id: str) -> frozenset[str]:
        return frozenset(self._channels.get(connection_id, ()))

    def ordered_channels_of(self, connection_id: str) -> list[str]:
        return list(self._channels.get(connection_id, ()))

    def subscribers(self, channel: str) -> list[str]:
        return [cid for cid, chans in self._channels.items() if channel in chans]

    def __len__(self) -> int:
        return len(self._channels)
