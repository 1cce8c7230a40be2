#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Bookkeeping for notifications, keyed by USN.

An SsdpProtocol keeps two NotificationCache instances: the notifications it
announces itself, which are renewed before they expire, and the notifications
it has seen on the network, which are dropped once they expire.
"""

from __future__ import annotations

from .internal_types import *
from .ssdp_message import SsdpNotification

class NotificationCacheEntry:
    """A cached notification, its expiration time and its serialized form."""

    notification: SsdpNotification
    """The cached notification"""

    expiration_time: float
    """The clock time after which the notification is no longer valid. Refreshed by poke()."""

    message_data: bytes
    """The serialized notification, ready to send. Refreshed by build()."""

    def __init__(self, notification: SsdpNotification, now: float):
        self.notification = notification
        self.poke(now)
        self.build()

    def __str__(self) -> str:
        return f"NotificationCacheEntry(usn='{self.notification.usn}', expiration_time={self.expiration_time})"

    def __repr__(self) -> str:
        return str(self)

    def poke(self, now: float) -> None:
        """The notification was seen (or sent) at time now; restart its max-age countdown."""
        self.expiration_time = now + self.notification.max_age

    def build(self) -> None:
        """Serialize the notification again after its content changed."""
        self.message_data = self.notification.to_bytes()

    def time_to_expiry(self, now: float) -> float:
        """Seconds until expiration; negative once expired."""
        return self.expiration_time - now

class NotificationCache:
    """A USN-keyed collection of NotificationCacheEntry. Iteration order is insertion order."""

    _entries: Dict[str, NotificationCacheEntry]

    def __init__(self):
        self._entries = {}

    def __str__(self) -> str:
        return f"NotificationCache({list(self._entries.values())})"

    def __repr__(self) -> str:
        return str(self)

    def __contains__(self, usn: object) -> bool:
        return usn in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def get(self, usn: str) -> Optional[NotificationCacheEntry]:
        return self._entries.get(usn)

    def add(self, notification: SsdpNotification, now: float) -> NotificationCacheEntry:
        """Create an entry for a notification, replacing any entry with the same USN."""
        entry = NotificationCacheEntry(notification, now)
        self._entries[notification.usn] = entry
        return entry

    def remove(self, usn: str) -> Optional[NotificationCacheEntry]:
        """Remove and return the entry for a USN; None if there is none."""
        return self._entries.pop(usn, None)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> List[NotificationCacheEntry]:
        """A snapshot of the entries; safe to iterate while the cache is modified."""
        return list(self._entries.values())

    def items(self) -> List[Tuple[str, NotificationCacheEntry]]:
        return list(self._entries.items())

    def notifications(self) -> List[SsdpNotification]:
        return [entry.notification for entry in self._entries.values()]

class PendingNotification:
    """A notify() request made before the protocol was started."""

    notification: SsdpNotification
    persist: bool

    def __init__(self, notification: SsdpNotification, persist: bool=False):
        self.notification = notification
        self.persist = persist

    def __repr__(self) -> str:
        return f"PendingNotification(usn='{self.notification.usn}', persist={self.persist})"
