"""Ordered set of active subscriptions."""

from __future__ import annotations

from kanuni.streaming.models import ChannelType, Subscription


__all__ = ["SubscriptionRegistry"]


class SubscriptionRegistry:
    """Insertion-ordered set of subscriptions.

    The registry is what gets replayed after a reconnect. Methods are plain
    synchronous calls, so under asyncio each one completes without
    interleaving with other tasks.
    """

    def __init__(self) -> None:
        # dict preserves insertion order; values are unused
        self._entries: dict[Subscription, None] = {}

    def add(self, channel_type: ChannelType, entity_id: str) -> bool:
        """Add a subscription.

        Returns:
            True if it was not present before.
        """
        key = Subscription(ChannelType(channel_type), entity_id)
        if key in self._entries:
            return False
        self._entries[key] = None
        return True

    def remove(self, channel_type: ChannelType, entity_id: str) -> bool:
        """Remove a subscription; removing a non-member is a no-op.

        Returns:
            True if it was present.
        """
        key = Subscription(ChannelType(channel_type), entity_id)
        if key not in self._entries:
            return False
        del self._entries[key]
        return True

    def snapshot(self) -> list[Subscription]:
        """Return the subscriptions in the order they were first added."""
        return list(self._entries)

    def __contains__(self, item: object) -> bool:
        return item in self._entries

    def __len__(self) -> int:
        return len(self._entries)
