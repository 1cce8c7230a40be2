"""Fixtures shared by the ssdp_protocol tests: an in-memory transport and a manual clock."""

import asyncio
import socket

import pytest

from ssdp_protocol import SsdpProtocol, SsdpSocket

REMOTE_ADDR = ('192.168.1.20', 1900)
"""Where injected multicast traffic comes from"""

REMOTE_SEARCHER = ('192.168.1.30', 50123)
"""Where injected search requests come from"""


class FakeClock:
    """A clock that only moves when told to"""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeSsdpSocket(SsdpSocket):
    """An SsdpSocket that records what is sent and receives what the test injects"""

    def __init__(self, name, local_address):
        super().__init__(name)
        self.fake_local_address = local_address
        self.sent = []
        self.started = False
        self.closed = False

    def create_socket(self) -> socket.socket:
        raise NotImplementedError("FakeSsdpSocket has no OS socket")

    async def start(self) -> None:
        self.started = True
        self.local_address = self.fake_local_address

    @property
    def is_open(self) -> bool:
        return self.started and not self.closed

    def sendto(self, data, addr) -> None:
        if self.is_open:
            self.sent.append((addr, data))

    def close(self) -> None:
        self.closed = True
        self.on_end_of_stream()

    def inject(self, data, addr=REMOTE_ADDR):
        if isinstance(data, str):
            data = data.encode('utf-8')
        self.datagram_received(addr, data)

    def sent_text(self):
        return [(addr, data.decode('utf-8')) for addr, data in self.sent]


class FakeSsdpProtocol(SsdpProtocol):
    """An SsdpProtocol on FakeSsdpSockets. The sockets of the most recent start() are
       kept in .multicast and .unicast even after stop()."""

    multicast = None
    unicast = None

    def create_multicast_socket(self):
        self.multicast = FakeSsdpSocket('multicast', ('0.0.0.0', self.multicast_port))
        return self.multicast

    def create_unicast_socket(self):
        self.unicast = FakeSsdpSocket('unicast', ('192.168.1.10', 40000))
        return self.unicast


async def settle():
    """Let the receive loops run until they have consumed everything injected"""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_protocol(clock):
    """Returns a factory for FakeSsdpProtocol instances sharing the clock fixture"""
    def factory(**kwargs):
        kwargs.setdefault("signature", "TestOS/1.0 UPnP/1.0 ssdp-protocol/test")
        kwargs.setdefault("clock", clock)
        return FakeSsdpProtocol(**kwargs)
    return factory


@pytest.fixture
def protocol(make_protocol):
    return make_protocol()


@pytest.fixture
def events(protocol):
    """Every (notification, reason) reported by the protocol fixture"""
    received = []
    protocol.add_notification_handler(lambda n, reason: received.append((n, reason)))
    return received


@pytest.fixture
def settled():
    return settle
