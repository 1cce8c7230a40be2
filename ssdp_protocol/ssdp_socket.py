#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
SsdpSocket -- An abstract base class for an SSDP UDP socket that can:

  1. Receive raw datagrams (truncated to the SSDP maximum message length) and queue them
     for a single async consumer
  2. Send raw datagrams to a remote multicast or unicast address

  The consumer interface is a simple async iterator that returns a sequence of (HostAndPort, bytes)
  tuples until the socket is closed.

  Subclasses must implement the create_socket() method to create and bind the socket that will be used to
  receive and send datagrams. Two are provided:

    MulticastSsdpSocket  -- bound to the SSDP port and joined to the multicast group; receives
                            announcements and search requests from the network.
    UnicastSsdpSocket    -- bound to an ephemeral port; used for everything that is sent, and
                            receives the unicast responses to our search requests.
"""

from __future__ import annotations

import asyncio
import socket
import sys
from abc import ABC, abstractmethod

from .internal_types import *
from .pkg_logging import logger
from .constants import SSDP_MULTICAST_ADDRESS, SSDP_PORT, MAX_MESSAGE_LENGTH, MAX_QUEUE_SIZE
from .exceptions import SsdpTransportError

IP_MULTICAST_ALL = 49

SsdpSocketErrorHandler = Callable[['SsdpSocket', Exception], None]
"""A callback for send/receive errors reported by the OS for a socket."""

class _SsdpSocketProtocol(asyncio.DatagramProtocol):
    """An adapter between the asyncio transport and SsdpSocket."""

    ssdp_socket: SsdpSocket

    def __init__(self, ssdp_socket: SsdpSocket):
        self.ssdp_socket = ssdp_socket

    def connection_made(self, transport: asyncio.BaseTransport):
        """Called when a connection is made."""
        # Note: asyncio datagram transports do not inherit from asyncio.DatagramTransport
        self.ssdp_socket.connection_made(transport) # type: ignore[arg-type]

    def datagram_received(self, data: bytes, addr: Tuple[str, int]):
        """Called when some datagram is received."""
        self.ssdp_socket.datagram_received((addr[0], addr[1]), data)

    def error_received(self, exc: Exception):
        """Called when a send or receive operation raises an OSError.

        (Other than BlockingIOError or InterruptedError.)
        """
        self.ssdp_socket.error_received(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        self.ssdp_socket.connection_lost(exc)

class SsdpSocket(ABC):
    """
    An abstract async SSDP socket. See module documentation.
    """

    name: str
    """The name of the socket as it should be displayed in logs, etc"""

    transport: Optional[asyncio.DatagramTransport] = None
    """The asyncio transport, set while the socket is open."""

    queue: asyncio.Queue[Optional[Tuple[HostAndPort, bytes]]]
    """Received (source address, datagram) tuples. None marks the end of the stream."""

    eos: bool = False
    """True once the socket has been closed; no more datagrams will be queued."""

    max_message_length: int
    """Received datagrams are truncated to this many bytes."""

    error_handler: Optional[SsdpSocketErrorHandler] = None
    """Called with errors reported by the OS while the socket is open."""

    local_address: Optional[HostAndPort] = None
    """The address the socket is bound to, once started."""

    def __init__(
            self,
            name: str,
            max_message_length: int=MAX_MESSAGE_LENGTH,
            max_queue_size: int=MAX_QUEUE_SIZE,
            error_handler: Optional[SsdpSocketErrorHandler]=None
          ):
        self.name = name
        self.max_message_length = max_message_length
        self.queue = asyncio.Queue(max_queue_size)
        self.error_handler = error_handler

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.name})"

    def __repr__(self) -> str:
        return str(self)

    @abstractmethod
    def create_socket(self) -> socket.socket:
        """Abstract method that creates, configures and binds the low-level socket.
           Must be overridden by subclasses."""
        raise NotImplementedError()

    async def start(self) -> None:
        """Create the socket and attach it to the running event loop."""
        loop = asyncio.get_running_loop()
        try:
            sock = self.create_socket()
        except OSError as e:
            raise SsdpTransportError(f"Unable to create {self}: {e}") from e
        try:
            sock.setblocking(False)
            await loop.create_datagram_endpoint(lambda: _SsdpSocketProtocol(self), sock=sock)
        except BaseException as e:
            sock.close()
            if isinstance(e, OSError):
                raise SsdpTransportError(f"Unable to start {self}: {e}") from e
            raise
        logger.debug(f"Started {self} on {self.local_address}")

    def close(self) -> None:
        """Close the socket. A pending receive() returns None once the transport is gone."""
        if self.transport is not None:
            try:
                self.transport.close()
            except BaseException as e:
                logger.error(f"Error closing transport on {self}: {e}")
            # connection_lost() will follow and end the stream
        else:
            self.on_end_of_stream()

    @property
    def is_open(self) -> bool:
        return self.transport is not None and not self.transport.is_closing()

    def sendto(self, data: bytes, addr: HostAndPort) -> None:
        """Send a datagram without waiting. Failures are logged, never raised."""
        if not self.is_open:
            logger.debug(f"Not sending via closed {self} to {addr}")
            return
        assert self.transport is not None
        logger.debug(f"Sending via {self} to {addr}: {data!r}")
        try:
            self.transport.sendto(data, addr)
        except OSError as e:
            logger.warning(f"Failed sending via {self} to {addr}: {e}")

    async def receive(self) -> Optional[Tuple[HostAndPort, bytes]]:
        """Wait for the next datagram. Returns None once the socket is closed."""
        if self.eos and self.queue.empty():
            return None
        result = await self.queue.get()
        self.queue.task_done()
        if result is None:
            # let other waiters see the end of the stream too
            self._put_end_of_stream()
        return result

    async def iter_datagrams(self) -> AsyncIterator[Tuple[HostAndPort, bytes]]:
        while True:
            result = await self.receive()
            if result is None:
                break
            yield result

    def __aiter__(self) -> AsyncIterator[Tuple[HostAndPort, bytes]]:
        return self.iter_datagrams()

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:
        """Called when a connection is made."""
        self.transport = transport
        sockname = transport.get_extra_info('sockname')
        if sockname is not None:
            self.local_address = (sockname[0], sockname[1])
        logger.debug(f"Connection made: {self}")

    def datagram_received(self, addr: HostAndPort, data: bytes) -> None:
        """Called when some datagram is received."""
        if self.eos:
            return
        if len(data) > self.max_message_length:
            logger.debug(f"Truncating {len(data)}-byte datagram from {addr} on {self}")
            data = data[:self.max_message_length]
        logger.debug(f"Received datagram from {addr} on {self}: {data!r}")
        try:
            self.queue.put_nowait((addr, data))
        except asyncio.QueueFull:
            logger.warning(f"Queue full, dropping datagram from {addr} on {self}")

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError."""
        logger.info(f"Error received from transport {self}: {exc}")
        if self.error_handler is not None:
            try:
                self.error_handler(self, exc)
            except Exception as e:
                logger.warning(f"Error handler raised exception processing transport error on {self}: {e}")

    def connection_lost(self, exc: Optional[Exception]) -> None:
        """Called when the connection is lost or closed."""
        logger.debug(f"Connection to transport lost on {self}, exc={exc}")
        self.transport = None
        if exc is not None:
            self.error_received(exc)
        self.on_end_of_stream()

    def on_end_of_stream(self) -> None:
        if not self.eos:
            self.eos = True
            self._put_end_of_stream()

    def _put_end_of_stream(self) -> None:
        try:
            # wake up any waiting tasks
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            # queue is full so waiters will wake up soon
            pass

def _get_ipv4_address_family(multicast_address: str, multicast_port: int) -> socket.AddressFamily:
    addrinfo = socket.getaddrinfo(multicast_address, multicast_port, socket.AF_INET, socket.SOCK_DGRAM)[0]
    return addrinfo[0]

class MulticastSsdpSocket(SsdpSocket):
    """A socket bound to the SSDP port and joined to the SSDP multicast group."""

    multicast_address: str
    multicast_port: int
    interface_address: Optional[str]
    """The local IP address of the interface on which to join the group; None for any interface."""

    def __init__(
            self,
            multicast_address: str=SSDP_MULTICAST_ADDRESS,
            multicast_port: int=SSDP_PORT,
            interface_address: Optional[str]=None,
            **kwargs: Any
          ):
        super().__init__(kwargs.pop('name', 'multicast'), **kwargs)
        self.multicast_address = multicast_address
        self.multicast_port = multicast_port
        self.interface_address = interface_address

    #@override
    def create_socket(self) -> socket.socket:
        address_family = _get_ipv4_address_family(self.multicast_address, self.multicast_port)
        group_bin = socket.inet_aton(self.multicast_address)
        interface_bin = socket.inet_aton(self.interface_address or '0.0.0.0')
        logger.debug(f"Creating multicast socket for {self.multicast_address}:{self.multicast_port} on {self.interface_address or 'any interface'}")
        sock = socket.socket(address_family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if sys.platform not in ( 'win32', 'cygwin' ) and hasattr(socket, 'SO_REUSEPORT'):
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            # On Linux, a socket bound to 0.0.0.0:<port> otherwise receives traffic for every
            # multicast group joined by any socket on the host.
            if sys.platform in ('linux', 'linux2'):
                sock.setsockopt(socket.IPPROTO_IP, IP_MULTICAST_ALL, 0)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, 1)
            # Multicast listeners MUST bind to 0.0.0.0:<port> to receive multicast packets
            sock.bind(('', self.multicast_port))
            mreq = group_bin + interface_bin
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
        except BaseException:
            sock.close()
            raise
        return sock

class UnicastSsdpSocket(SsdpSocket):
    """A socket bound to an ephemeral port, used to send all messages and to receive search responses."""

    interface_address: Optional[str]
    """The local IP address to bind to and send multicasts from; None for any interface."""

    def __init__(self, interface_address: Optional[str]=None, **kwargs: Any):
        super().__init__(kwargs.pop('name', 'unicast'), **kwargs)
        self.interface_address = interface_address

    #@override
    def create_socket(self) -> socket.socket:
        logger.debug(f"Creating unicast socket on {self.interface_address or 'any interface'}")
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.interface_address or '', 0))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 1)
            if self.interface_address is not None:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(self.interface_address))
        except BaseException:
            sock.close()
            raise
        return sock
