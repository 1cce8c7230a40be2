#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Typed views of the three SSDP message kinds:

  SsdpNotification    NOTIFY * HTTP/1.1     (NTS, NT, USN, CACHE-CONTROL)
  SsdpSearchRequest   M-SEARCH * HTTP/1.1   (ST, MAN, MX)
  SsdpSearchResponse  HTTP/1.1 200 OK       (ST, USN, CACHE-CONTROL)

Each message owns a HeaderStore. Attributes that do not travel on the wire
(the address a message was received from) are kept beside the headers and are
never serialized.
"""

from __future__ import annotations

from .internal_types import *
from .constants import (
    DEFAULT_MAX_AGE,
    NTS_ALIVE,
    SEARCH_ALL,
    NOTIFY_START_LINE,
    SEARCH_REQUEST_START_LINE,
    SEARCH_RESPONSE_START_LINE,
  )
from .header_store import HeaderStore
from .util import normalize_line_endings, parse_max_age, replace_max_age

class SsdpMessage:
    """Base class for SSDP messages: a start line and a HeaderStore."""

    start_line: str = ""
    """The first line of the message as it is serialized; e.g., "NOTIFY * HTTP/1.1"."""

    headers: HeaderStore
    """The header fields of the message."""

    def __init__(self, headers: Optional[HeaderStore]=None):
        self.headers = HeaderStore() if headers is None else headers

    def __str__(self) -> str:
        return self.serialize()

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.start_line}', headers={list(self.headers.items())})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpMessage):
            return NotImplemented
        # Out-of-band attributes (where the message came from) are not compared
        return type(self) is type(other) and self.serialize() == other.serialize()

    def _serialized_header_lines(self) -> List[str]:
        return [f"{name}: {value}" for name, value in self.headers.items()]

    def serialize(self) -> str:
        """Returns the wire form of the message: start line, header lines and an empty line,
           each terminated with CRLF."""
        lines = [self.start_line] + self._serialized_header_lines()
        return normalize_line_endings('\r\n'.join(lines) + '\r\n\r\n')

    def to_bytes(self) -> bytes:
        """Returns the serialized message encoded for transmission."""
        return self.serialize().encode('utf-8')

    def _copy_extra_to(self, other: Self) -> None:
        """Subclasses copy attributes that are not headers."""
        pass

    def copy(self) -> Self:
        """Returns a copy that shares nothing mutable with this message."""
        result = type(self)(self.headers.copy())
        self._copy_extra_to(result)
        return result

    def _get_max_age(self) -> int:
        result = parse_max_age(self.headers.first("CACHE-CONTROL"))
        return DEFAULT_MAX_AGE if result is None else result

    def _set_max_age(self, value: int) -> None:
        assert isinstance(value, int) and value >= 0
        self.headers.replace("CACHE-CONTROL", replace_max_age(self.headers.first("CACHE-CONTROL"), value))

class SsdpNotification(SsdpMessage):
    """A NOTIFY message announcing (ssdp:alive) or withdrawing (ssdp:byebye) a device or service."""

    start_line = NOTIFY_START_LINE

    address: Optional[str] = None
    """The IP address the notification was received from. None for locally created notifications."""

    def _copy_extra_to(self, other: SsdpNotification) -> None:
        other.address = self.address

    def _serialized_header_lines(self) -> List[str]:
        lines = super()._serialized_header_lines()
        if not "NTS" in self.headers:
            lines.insert(0, f"NTS: {NTS_ALIVE}")
        return lines

    @property
    def notification_type(self) -> str:
        """The NTS header; "ssdp:alive" if there is none."""
        result = self.headers.first("NTS", NTS_ALIVE)
        assert result is not None
        return result

    @notification_type.setter
    def notification_type(self, value: str) -> None:
        self.headers.replace("NTS", value)

    @property
    def subject(self) -> str:
        """The notification type (NT header), e.g., "upnp:rootdevice". "" if there is none."""
        result = self.headers.first("NT", "")
        assert result is not None
        return result

    @subject.setter
    def subject(self, value: str) -> None:
        self.headers.replace("NT", value)

    @property
    def usn(self) -> str:
        """The unique service name (USN header) identifying the device or service. "" if there is none."""
        result = self.headers.first("USN", "")
        assert result is not None
        return result

    @usn.setter
    def usn(self, value: str) -> None:
        self.headers.replace("USN", value)

    @property
    def max_age(self) -> int:
        """Seconds the notification remains valid (CACHE-CONTROL max-age). 30 if not specified."""
        return self._get_max_age()

    @max_age.setter
    def max_age(self, value: int) -> None:
        self._set_max_age(value)

class SsdpSearchRequest(SsdpMessage):
    """An M-SEARCH request for devices or services of a given type."""

    start_line = SEARCH_REQUEST_START_LINE

    endpoint: Optional[HostAndPort] = None
    """The address and port the request was received from, where responses are unicast.
       None for locally created requests."""

    def _copy_extra_to(self, other: SsdpSearchRequest) -> None:
        other.endpoint = self.endpoint

    @property
    def subject(self) -> str:
        """The search target (ST header). "ssdp:all" if there is none."""
        result = self.headers.first("ST", SEARCH_ALL)
        assert result is not None
        return result

    @subject.setter
    def subject(self, value: str) -> None:
        self.headers.replace("ST", value)

    @property
    def man(self) -> Optional[str]:
        return self.headers.first("MAN")

    @man.setter
    def man(self, value: str) -> None:
        self.headers.replace("MAN", value)

    @property
    def mx(self) -> Optional[int]:
        """The maximum response delay in seconds (MX header); None if missing or not an integer."""
        value = self.headers.first("MX")
        if value is None:
            return None
        try:
            return int(value.strip())
        except ValueError:
            return None

    @mx.setter
    def mx(self, value: int) -> None:
        self.headers.replace("MX", str(value))

class SsdpSearchResponse(SsdpMessage):
    """A unicast 200 OK reply to an M-SEARCH request, describing one device or service."""

    start_line = SEARCH_RESPONSE_START_LINE

    endpoint: Optional[HostAndPort] = None
    """The address and port the response was received from. None for locally created responses."""

    def _copy_extra_to(self, other: SsdpSearchResponse) -> None:
        other.endpoint = self.endpoint

    @property
    def subject(self) -> str:
        """The search target (ST header) this response matches. "ssdp:all" if there is none."""
        result = self.headers.first("ST", SEARCH_ALL)
        assert result is not None
        return result

    @subject.setter
    def subject(self, value: str) -> None:
        self.headers.replace("ST", value)

    @property
    def usn(self) -> str:
        result = self.headers.first("USN", "")
        assert result is not None
        return result

    @usn.setter
    def usn(self, value: str) -> None:
        self.headers.replace("USN", value)

    @property
    def max_age(self) -> int:
        return self._get_max_age()

    @max_age.setter
    def max_age(self, value: int) -> None:
        self._set_max_age(value)
