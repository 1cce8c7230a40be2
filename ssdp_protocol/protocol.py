#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpProtocol -- An SSDP endpoint that can:

  1. Listen on the SSDP multicast address (typically 239.255.255.250:1900) for announcements and
     search requests, and on a unicast socket for responses to its own searches
  2. Announce local devices or services, optionally renewing the announcements before they expire
     and withdrawing them (ssdp:byebye) when stopped
  3. Respond to search requests that match the locally announced devices or services
  4. Collect, maintain, and expire announcements broadcast by other devices on the network, and
     report changes to any number of notification handlers

The host application drives the protocol by calling update() periodically. update() processes
received messages (unless ImmediateMessageProcessing is set), renews local announcements and
expires remote ones. There is no internal timer.
"""

from __future__ import annotations

import asyncio
import enum
import threading
import time
from collections import deque

from .internal_types import *
from .pkg_logging import logger
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    DEFAULT_MAX_AGE,
    DEFAULT_EXPIRATION_LEEWAY,
    NTS_ALIVE,
    NTS_BYEBYE,
    SEARCH_ALL,
    SSDP_DISCOVER,
  )
from .exceptions import SsdpParseError
from .ssdp_message import SsdpMessage, SsdpNotification, SsdpSearchRequest, SsdpSearchResponse
from .ssdp_codec import parse_message
from .notification_cache import NotificationCache, PendingNotification
from .ssdp_socket import SsdpSocket, MulticastSsdpSocket, UnicastSsdpSocket
from .util import get_default_signature

class NotificationEventReason(enum.Enum):
    """Why a notification handler is called."""

    ADDED = "added"
    """A new device or service has appeared."""

    UPDATED = "updated"
    """The announcement of an already known device or service has changed."""

    REMOVED = "removed"
    """A removal notification (ssdp:byebye) was received."""

    EXPIRED = "expired"
    """A known device or service was not announced again before its max-age elapsed."""

    OTHER = "other"
    """Any other notification."""

class ProtocolOptions(enum.IntFlag):
    """Option flags for SsdpProtocol."""

    NONE = 0

    IMMEDIATE_MESSAGE_PROCESSING = 1 << 0
    """Process received messages as they arrive instead of in update()."""

    NOTIFY_LOOPBACK = 1 << 1
    """Also report the notifications this protocol sends itself, when they come back from the network."""

    NOTIFY_ALL = 1 << 2
    """Report every received notification, including unchanged re-announcements of known ones."""

SsdpNotificationHandler = Callable[[SsdpNotification, NotificationEventReason], None]
"""A callback for notification events."""

SsdpErrorHandler = Callable[[str, Exception], None]
"""A callback for transport errors; receives the socket name and the error."""

def should_emit(is_owned: bool, notify_loopback: bool, notify_all: bool) -> bool:
    """Returns True if a received notification should be reported to notification handlers.

    Notifications about devices or services announced by other hosts are always reported.
    Our own announcements coming back from the network are only reported with NotifyLoopback
    (or NotifyAll).
    """
    return notify_all or not is_owned or notify_loopback

class SsdpProtocol(AsyncContextManager['SsdpProtocol']):
    """
    An SSDP endpoint. See module documentation.

    Usage:
        async with SsdpProtocol() as protocol:
            protocol.add_notification_handler(lambda n, reason: print(reason, n.usn))
            protocol.search("upnp:rootdevice")
            while True:
                protocol.update()
                await asyncio.sleep(0.033)
    """

    multicast_address: str = SSDP_MULTICAST_ADDRESS
    """The multicast address to listen on and send to."""

    multicast_port: int = SSDP_PORT
    """The multicast port to listen on and send to."""

    interface_address: Optional[str] = None
    """The local IP address of the interface to use, or None for any interface."""

    expiration_leeway: float = DEFAULT_EXPIRATION_LEEWAY
    """Local announcements are renewed when they are due to expire within this many seconds;
       remote announcements are dropped when they expired more than this many seconds ago."""

    application_notifications: NotificationCache
    """Notifications announced by this protocol with persistence, by USN. Do not modify."""

    active_notifications: NotificationCache
    """Notifications received from the network, by USN. Do not modify."""

    notification_handlers: Dict[int, SsdpNotificationHandler]
    """Handlers called for notification events, indexed by ID number."""

    error_handlers: Dict[int, SsdpErrorHandler]
    """Handlers called for transport errors, indexed by ID number."""

    _i_next_handler: int = 0
    _options: ProtocolOptions
    _started: bool = False
    _signature: str
    _clock: Callable[[], float]
    _lock: threading.RLock
    _lifecycle_lock: asyncio.Lock
    _messages: Deque[SsdpMessage]
    _pending_notifications: List[PendingNotification]
    _pending_searches: List[SsdpSearchRequest]
    _multicast_socket: Optional[SsdpSocket] = None
    _unicast_socket: Optional[SsdpSocket] = None
    _receive_tasks: List[asyncio.Task[None]]

    def __init__(
            self,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            options: ProtocolOptions=ProtocolOptions.NONE,
            expiration_leeway: float=DEFAULT_EXPIRATION_LEEWAY,
            interface_address: Optional[str]=None,
            signature: Optional[str]=None,
            clock: Callable[[], float]=time.monotonic,
          ) -> None:
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port
        self._options = ProtocolOptions(options)
        self.expiration_leeway = expiration_leeway
        self.interface_address = interface_address
        self._signature = get_default_signature() if signature is None else signature
        self._clock = clock
        self._lock = threading.RLock()
        self._lifecycle_lock = asyncio.Lock()
        self._messages = deque()
        self.application_notifications = NotificationCache()
        self.active_notifications = NotificationCache()
        self._pending_notifications = []
        self._pending_searches = []
        self._receive_tasks = []
        self.notification_handlers = {}
        self.error_handlers = {}

    def __str__(self) -> str:
        return f"SsdpProtocol({self.multicast_address}:{self.multicast_port}, options={self._options!r}, started={self._started})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def multicast_endpoint(self) -> HostAndPort:
        return (self.multicast_address, self.multicast_port)

    @property
    def host_header_value(self) -> str:
        """The HOST header of the messages created by this protocol."""
        return f"{self.multicast_address}:{self.multicast_port}"

    @property
    def signature(self) -> str:
        """The SERVER and USER-AGENT headers of the messages created by this protocol."""
        return self._signature

    @signature.setter
    def signature(self, value: str) -> None:
        self._signature = value

    @property
    def options(self) -> ProtocolOptions:
        return self._options

    @options.setter
    def options(self, value: ProtocolOptions) -> None:
        with self._lock:
            self._options = ProtocolOptions(value)

    @property
    def started(self) -> bool:
        with self._lock:
            return self._started

    @property
    def pending_notifications(self) -> List[PendingNotification]:
        """A snapshot of the notifications that will be sent by the next start()."""
        with self._lock:
            return list(self._pending_notifications)

    @property
    def pending_searches(self) -> List[SsdpSearchRequest]:
        """A snapshot of the search requests that will be sent by the next start()."""
        with self._lock:
            return list(self._pending_searches)

    def add_notification_handler(self, handler: SsdpNotificationHandler) -> int:
        """Adds a handler to be called with (notification, reason) for notification events.
           Returns an ID that can be passed to remove_notification_handler()."""
        with self._lock:
            i = self._i_next_handler
            self._i_next_handler += 1
            self.notification_handlers[i] = handler
        return i

    def remove_notification_handler(self, i: int) -> None:
        """Removes a previously added notification handler."""
        with self._lock:
            del self.notification_handlers[i]

    def add_error_handler(self, handler: SsdpErrorHandler) -> int:
        """Adds a handler to be called with (socket_name, exception) for transport errors.
           Returns an ID that can be passed to remove_error_handler()."""
        with self._lock:
            i = self._i_next_handler
            self._i_next_handler += 1
            self.error_handlers[i] = handler
        return i

    def remove_error_handler(self, i: int) -> None:
        """Removes a previously added error handler."""
        with self._lock:
            del self.error_handlers[i]

    # ======================= Message builders

    def create_notification(self, search_response: Optional[SsdpSearchResponse]=None) -> SsdpNotification:
        """Create a notification.

        Without a search response, the notification only has HOST and SERVER headers; the caller
        sets the subject, USN, max-age, etc.

        With a search response, the notification describes the same device or service: all headers
        are copied with upper-cased names (ST becomes NT, S and repeated fields are dropped) and the
        address the response came from becomes the notification's address.
        """
        n = SsdpNotification()
        if search_response is None:
            n.headers.add("HOST", self.host_header_value)
            n.headers.add("SERVER", self.signature)
            return n

        for name, value in search_response.headers.items():
            name = name.upper()
            if name == "S":
                continue
            if name == "ST":
                name = "NT"
            if name in n.headers:
                continue
            n.headers.add(name, value)
        if search_response.endpoint is not None:
            n.address = search_response.endpoint[0]
        return n

    def create_search_request(self, subject: str=SEARCH_ALL) -> SsdpSearchRequest:
        """Create a search request for a device or service type, or "ssdp:all"."""
        sr = SsdpSearchRequest()
        sr.subject = subject
        sr.headers.add("HOST", self.host_header_value)
        sr.headers.add("USER-AGENT", self.signature)
        sr.headers.add("MAN", SSDP_DISCOVER)
        sr.headers.add("MX", "1")
        return sr

    def create_search_response(
            self,
            subject_or_notification: Union[str, SsdpNotification],
            usn: Optional[str]=None
          ) -> SsdpSearchResponse:
        """Create a search response.

        create_search_response(subject, usn) creates a minimal response for the given search
        target and USN.

        create_search_response(notification) creates the response describing an announced device
        or service: NT is translated to ST, NTS is dropped, and all other headers of the
        notification are copied.
        """
        r = SsdpSearchResponse()
        if isinstance(subject_or_notification, SsdpNotification):
            n = subject_or_notification
            r.subject = n.subject
            r.usn = n.usn
            r.headers.add("EXT", "")
            for name, value in n.headers.items():
                key = name.upper()
                if key in ("NT", "NTS"):
                    continue
                if key in r.headers:
                    continue
                r.headers.add(name, value)
            if not "HOST" in r.headers:
                r.headers.add("HOST", self.host_header_value)
            if not "CACHE-CONTROL" in r.headers:
                r.max_age = DEFAULT_MAX_AGE
            return r

        if usn is None:
            raise TypeError("create_search_response(subject, usn) requires a usn")
        r.subject = subject_or_notification
        r.headers.add("HOST", self.host_header_value)
        r.headers.add("EXT", "")
        r.max_age = DEFAULT_MAX_AGE
        r.usn = usn
        return r

    # ======================= Transport

    def create_multicast_socket(self) -> SsdpSocket:
        """Create the socket that receives multicast announcements and search requests.
           Subclasses can override to provide a different transport."""
        return MulticastSsdpSocket(
            self.multicast_address,
            self.multicast_port,
            interface_address=self.interface_address
          )

    def create_unicast_socket(self) -> SsdpSocket:
        """Create the socket that sends all messages and receives search responses.
           Subclasses can override to provide a different transport."""
        return UnicastSsdpSocket(interface_address=self.interface_address)

    @property
    def unicast_address(self) -> Optional[HostAndPort]:
        """The local address search responses are received on, while started."""
        return None if self._unicast_socket is None else self._unicast_socket.local_address

    def _send_data(self, data: bytes, addr: HostAndPort) -> None:
        ssdp_socket = self._unicast_socket
        if ssdp_socket is None:
            logger.debug(f"Protocol is stopped; not sending to {addr}: {data!r}")
            return
        ssdp_socket.sendto(data, addr)

    def _send_message(self, message: SsdpMessage, addr: HostAndPort) -> None:
        self._send_data(message.to_bytes(), addr)

    def _on_transport_error(self, ssdp_socket: SsdpSocket, exc: Exception) -> None:
        logger.warning(f"Transport error on {ssdp_socket}: {exc}")
        for handler in list(self.error_handlers.values()):
            try:
                handler(ssdp_socket.name, exc)
            except Exception as e:
                logger.warning(f"Error handler raised exception processing transport error {exc}: {e}")

    # ======================= Lifecycle

    async def start(self) -> None:
        """Open the sockets, start receiving, and send the notifications and searches
           requested while the protocol was stopped. Does nothing if already started."""
        async with self._lifecycle_lock:
            if self.started:
                return
            multicast_socket = self.create_multicast_socket()
            unicast_socket = self.create_unicast_socket()
            multicast_socket.error_handler = self._on_transport_error
            unicast_socket.error_handler = self._on_transport_error
            try:
                await multicast_socket.start()
                await unicast_socket.start()
            except BaseException:
                multicast_socket.close()
                unicast_socket.close()
                raise

            with self._lock:
                self._multicast_socket = multicast_socket
                self._unicast_socket = unicast_socket
                self._started = True
                self._receive_tasks = [
                    asyncio.create_task(self._run_receive_loop(multicast_socket)),
                    asyncio.create_task(self._run_receive_loop(unicast_socket)),
                  ]
                logger.debug(f"Started {self}")

                pending_notifications = self._pending_notifications
                self._pending_notifications = []
                pending_searches = self._pending_searches
                self._pending_searches = []
                for p in pending_notifications:
                    self.notify(p.notification, p.persist)
                for sr in pending_searches:
                    self.search(sr)

    async def stop(self, keep_persistent_notifications: bool=True) -> None:
        """Withdraw (ssdp:byebye) all persistent notifications, then close the sockets.

        If keep_persistent_notifications is True, the persistent notifications are announced
        again by the next start(). Does nothing if not started.
        """
        async with self._lifecycle_lock:
            with self._lock:
                if not self._started:
                    return
                for entry in self.application_notifications.entries():
                    if keep_persistent_notifications:
                        self._pending_notifications.append(
                            PendingNotification(entry.notification.copy(), persist=True))
                    entry.notification.notification_type = NTS_BYEBYE
                    entry.build()
                    self._send_data(entry.message_data, self.multicast_endpoint)
                self.application_notifications.clear()
                self._messages.clear()
                self._started = False
                sockets = [ s for s in (self._multicast_socket, self._unicast_socket) if s is not None ]
                self._multicast_socket = None
                self._unicast_socket = None
                receive_tasks = self._receive_tasks
                self._receive_tasks = []

            for ssdp_socket in sockets:
                ssdp_socket.close()
            for task in receive_tasks:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.warning(f"Exception while cancelling receive task: {e}")
            logger.debug(f"Stopped {self}")

    async def __aenter__(self) -> SsdpProtocol:
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: Optional[type[BaseException]],
            exc: Optional[BaseException],
            tb: Optional[TracebackType]
      ) -> bool:
        await self.stop(keep_persistent_notifications=False)
        return False

    # ======================= Public operations

    def notify(self, notification: SsdpNotification, persist: bool=False) -> None:
        """Multicast a notification.

        If persist is True and the notification is an ssdp:alive, it is kept and renewed by update()
        until stop(), and it is used to answer search requests. Any previous persistent notification
        with the same USN is dropped, so notifying an ssdp:byebye withdraws it.

        If the protocol is not started, the notification is sent by the next start().
        """
        with self._lock:
            if not self._started:
                self._pending_notifications.append(PendingNotification(notification, persist))
                return
            key = notification.usn
            self.application_notifications.remove(key)
            if persist and notification.notification_type == NTS_ALIVE:
                entry = self.application_notifications.add(notification, self._clock())
                data = entry.message_data
            else:
                data = notification.to_bytes()
            self._send_data(data, self.multicast_endpoint)

    def withdraw(self, usn: str) -> bool:
        """Multicast an ssdp:byebye for a persistent notification and forget it.
           Returns False if there is no persistent notification with this USN."""
        with self._lock:
            entry = self.application_notifications.get(usn)
            if entry is None:
                return False
            byebye = entry.notification.copy()
            byebye.notification_type = NTS_BYEBYE
            self.notify(byebye)
            return True

    def search(
            self,
            subject_or_request: Union[str, SsdpSearchRequest, None]=None,
            handler: Optional[SsdpNotificationHandler]=None
          ) -> None:
        """Multicast a search request. Responses are reported to notification handlers as
           they arrive (reason ADDED for devices or services not seen before).

        subject_or_request may be a search target (default "ssdp:all") or a complete request.

        If handler is given, it is called right away, with reason ADDED, for every known device or
        service matching the search target.

        If the protocol is not started, the request is sent by the next start().
        """
        if isinstance(subject_or_request, SsdpSearchRequest):
            request = subject_or_request
        else:
            request = self.create_search_request(SEARCH_ALL if subject_or_request is None else subject_or_request)

        with self._lock:
            if handler is not None:
                subject = request.subject
                for n in self.active_notifications.notifications():
                    if subject == SEARCH_ALL or n.subject == subject:
                        # TODO: a distinct reason for replayed notifications
                        handler(n, NotificationEventReason.ADDED)
            if not self._started:
                self._pending_searches.append(request)
                return
            self._send_message(request, self.multicast_endpoint)

    def update(self) -> None:
        """Process received messages, renew persistent notifications that are about to expire,
           and expire the notifications of remote devices and services that were not renewed.

           Must be called periodically by the host application.
        """
        with self._lock:
            while len(self._messages) > 0:
                self._process_message(self._messages.popleft())

            now = self._clock()
            for entry in self.application_notifications.entries():
                if entry.time_to_expiry(now) < self.expiration_leeway:
                    entry.poke(now)
                    logger.debug(f"Renewing {entry}")
                    self._send_data(entry.message_data, self.multicast_endpoint)

            for usn, entry in self.active_notifications.items():
                if usn in self.application_notifications:
                    continue
                if entry.time_to_expiry(now) < -self.expiration_leeway:
                    logger.debug(f"Expiring {entry}")
                    self.active_notifications.remove(usn)
                    entry.notification.notification_type = NTS_BYEBYE
                    self._emit(entry.notification, NotificationEventReason.EXPIRED)

    # ======================= Message processing

    async def _run_receive_loop(self, ssdp_socket: SsdpSocket) -> None:
        logger.debug(f"Receive loop starting on {ssdp_socket}")
        try:
            async for addr, data in ssdp_socket.iter_datagrams():
                if not self.started:
                    break
                try:
                    self._handle_datagram(ssdp_socket, addr, data)
                except Exception as e:
                    logger.warning(f"Error processing datagram from {addr} on {ssdp_socket}, raw=[{data!r}]: {e}")
        except asyncio.CancelledError:
            logger.debug(f"Receive loop on {ssdp_socket} cancelled; exiting")
            raise
        logger.debug(f"Receive loop on {ssdp_socket} exiting")

    def _handle_datagram(self, ssdp_socket: SsdpSocket, addr: HostAndPort, data: bytes) -> None:
        try:
            message = parse_message(data)
        except SsdpParseError as e:
            logger.debug(f"Ignoring datagram from {addr} on {ssdp_socket}: {e}")
            return
        if isinstance(message, SsdpNotification):
            message.address = addr[0]
        elif isinstance(message, (SsdpSearchRequest, SsdpSearchResponse)):
            message.endpoint = addr

        with self._lock:
            if not self._started:
                return
            if self._options & ProtocolOptions.IMMEDIATE_MESSAGE_PROCESSING:
                self._process_message(message)
            else:
                self._messages.append(message)

    def _emit(self, notification: SsdpNotification, reason: NotificationEventReason) -> None:
        for handler in list(self.notification_handlers.values()):
            try:
                handler(notification, reason)
            except Exception as e:
                logger.warning(f"Notification handler raised exception processing {reason.name} {notification.usn}: {e}")

    def _process_message(self, message: SsdpMessage) -> None:
        if isinstance(message, SsdpNotification):
            self._process_notification(message)
        elif isinstance(message, SsdpSearchRequest):
            self._process_search_request(message)
        elif isinstance(message, SsdpSearchResponse):
            self._process_search_response(message)

    def _process_notification(self, n: SsdpNotification) -> None:
        key = n.usn
        entry = self.active_notifications.get(key)
        notify_all = bool(self._options & ProtocolOptions.NOTIFY_ALL)
        emit = should_emit(
            key in self.application_notifications,
            bool(self._options & ProtocolOptions.NOTIFY_LOOPBACK),
            notify_all
          )
        notification_type = n.notification_type

        if notification_type == NTS_BYEBYE:
            self.active_notifications.remove(key)
            if emit:
                self._emit(n, NotificationEventReason.REMOVED)
            return

        if notification_type != NTS_ALIVE:
            if emit:
                self._emit(n, NotificationEventReason.OTHER)
            return

        if entry is None:
            self.active_notifications.add(n, self._clock())
            reason = NotificationEventReason.ADDED
        else:
            if entry.notification.serialize() != n.serialize():
                entry.notification = n
                entry.build()
                reason = NotificationEventReason.UPDATED
            else:
                reason = NotificationEventReason.OTHER
                emit = notify_all
            # expiration follows the max-age of the notification now cached
            entry.poke(self._clock())
        if emit:
            self._emit(n, reason)

    def _process_search_request(self, sr: SsdpSearchRequest) -> None:
        if sr.endpoint is None:
            logger.debug(f"Ignoring search request with no sender address: {sr!r}")
            return
        subject = sr.subject
        for n in self.application_notifications.notifications():
            if subject == SEARCH_ALL or n.subject == subject:
                self._send_message(self.create_search_response(n), sr.endpoint)

    def _process_search_response(self, sr: SsdpSearchResponse) -> None:
        n = self.create_notification(sr)
        key = n.usn
        if key in self.active_notifications:
            return
        self.active_notifications.add(n, self._clock())
        self._emit(n, NotificationEventReason.ADDED)
