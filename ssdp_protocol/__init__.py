# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Package ssdp_protocol implements a Simple Service Discovery Protocol (SSDP) endpoint.

SSDP is the UDP multicast announce/search protocol used by UPnP devices to advertise
and discover services on a local network without a central directory. Devices and
services announce themselves (NOTIFY ssdp:alive) on the multicast group
239.255.255.250:1900, renew the announcement before its max-age elapses, and
withdraw it (NOTIFY ssdp:byebye) when they leave. Clients may also multicast a
search request (M-SEARCH) and collect the unicast 200 OK responses.

SsdpProtocol does both: it announces local devices or services and answers searches
for them, and it tracks the devices and services announced by other hosts, reporting
additions, updates, removals and expirations to notification handlers.
"""

from .version import __version__

from .internal_types import Jsonable, JsonableDict, HostAndPort

from .exceptions import (
    SsdpError,
    SsdpHeaderError,
    SsdpParseError,
    UnsupportedMessageType,
    DanglingContinuation,
    MalformedHeaderLine,
    SsdpTransportError,
  )

from .header_store import HeaderStore
from .ssdp_message import SsdpMessage, SsdpNotification, SsdpSearchRequest, SsdpSearchResponse
from .ssdp_codec import parse_message, serialize_message
from .notification_cache import NotificationCache, NotificationCacheEntry, PendingNotification
from .ssdp_socket import SsdpSocket, MulticastSsdpSocket, UnicastSsdpSocket
from .protocol import (
    SsdpProtocol,
    ProtocolOptions,
    NotificationEventReason,
    SsdpNotificationHandler,
    SsdpErrorHandler,
    should_emit,
  )
from .util import CaseInsensitiveDict
from .constants import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    MAX_MESSAGE_LENGTH,
    DEFAULT_MAX_AGE,
    DEFAULT_EXPIRATION_LEEWAY,
    SEARCH_ALL,
    NTS_ALIVE,
    NTS_BYEBYE,
  )

__all__ = [
    '__version__',
    'Jsonable', 'JsonableDict', 'HostAndPort',
    'SsdpError', 'SsdpHeaderError', 'SsdpParseError', 'UnsupportedMessageType',
    'DanglingContinuation', 'MalformedHeaderLine', 'SsdpTransportError',
    'HeaderStore',
    'SsdpMessage', 'SsdpNotification', 'SsdpSearchRequest', 'SsdpSearchResponse',
    'parse_message', 'serialize_message',
    'NotificationCache', 'NotificationCacheEntry', 'PendingNotification',
    'SsdpSocket', 'MulticastSsdpSocket', 'UnicastSsdpSocket',
    'SsdpProtocol', 'ProtocolOptions', 'NotificationEventReason',
    'SsdpNotificationHandler', 'SsdpErrorHandler', 'should_emit',
    'CaseInsensitiveDict',
    'SSDP_MULTICAST_ADDRESS', 'SSDP_PORT', 'MAX_MESSAGE_LENGTH', 'DEFAULT_MAX_AGE',
    'DEFAULT_EXPIRATION_LEEWAY', 'SEARCH_ALL', 'NTS_ALIVE', 'NTS_BYEBYE',
]
