# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Constants used by this package"""

SSDP_MULTICAST_ADDRESS = "239.255.255.250"
"""The multicast address used by SSDP for UDP multicast."""

SSDP_PORT = 1900
"""The port number used by SSDP for UDP multicast."""

MAX_MESSAGE_LENGTH = 2048
"""Size of the receive buffer. Longer datagrams are truncated."""

MAX_QUEUE_SIZE = 1000
"""Maximum number of received datagrams buffered per socket before new ones are dropped."""

DEFAULT_MAX_AGE = 30
"""The max-age (in seconds) assumed when a message has no CACHE-CONTROL max-age directive."""

DEFAULT_EXPIRATION_LEEWAY = 5.0
"""Grace period (in seconds) applied before renewing owned notifications and after
   the expiration of notifications received from the network."""

SEARCH_ALL = "ssdp:all"
"""Search target matching every device and service."""

NTS_ALIVE = "ssdp:alive"
"""NTS header value of an announcement."""

NTS_BYEBYE = "ssdp:byebye"
"""NTS header value of a removal notification."""

SSDP_DISCOVER = '"ssdp:discover"'
"""MAN header value of a search request (the quotes are part of the value)."""

NOTIFY_START_LINE = "NOTIFY * HTTP/1.1"
SEARCH_REQUEST_START_LINE = "M-SEARCH * HTTP/1.1"
SEARCH_RESPONSE_START_LINE = "HTTP/1.1 200 OK"
