#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Conversion between the text of an SSDP datagram and SsdpMessage objects.

Parsing is strict about the start line and about the shape of header lines,
and lenient about individual header fields: a field that cannot be stored is
dropped and the rest of the message is kept.
"""

from __future__ import annotations

import re

from .internal_types import *
from .pkg_logging import logger
from .exceptions import (
    SsdpHeaderError,
    UnsupportedMessageType,
    DanglingContinuation,
    MalformedHeaderLine,
  )
from .ssdp_message import SsdpMessage, SsdpNotification, SsdpSearchRequest, SsdpSearchResponse
from .util import split_lines_at_lf_or_crlf

_request_line_re = re.compile(
    r"^(?P<method>[!#$%&'*+.^_`|~0-9A-Za-z-]+)\s+\*\s+HTTP/[0-9]+\.[0-9]+$",
    re.IGNORECASE
  )
_status_line_re = re.compile(r'^HTTP/[0-9]+\.[0-9]+\s+200(\s.*)?$', re.IGNORECASE)

def _create_message_for_start_line(start_line: str) -> SsdpMessage:
    m = _request_line_re.match(start_line)
    if m:
        method = m.group('method').upper()
        if method == 'NOTIFY':
            return SsdpNotification()
        if method == 'M-SEARCH':
            return SsdpSearchRequest()
    elif _status_line_re.match(start_line):
        return SsdpSearchResponse()
    raise UnsupportedMessageType(f"Unsupported message type: {start_line!r}")

def _add_header(message: SsdpMessage, name: str, value: str) -> None:
    if len(value) == 0:
        logger.debug(f"Dropping empty header field {name!r}")
        return
    try:
        message.headers.add(name, value)
    except SsdpHeaderError as e:
        logger.debug(f"Dropping invalid header field {name!r}: {e}")

def parse_message(data: Union[str, bytes]) -> SsdpMessage:
    """Parse the text of an SSDP datagram.

    Lines may be terminated with CRLF or LF. Parsing stops at the first empty line;
    anything after it is ignored.

    Header fields with an empty value, or a name that is not a valid token, are dropped.

    Returns an SsdpNotification, SsdpSearchRequest or SsdpSearchResponse.

    Raises UnsupportedMessageType if the start line is not recognized, DanglingContinuation
    if a continuation line precedes the first header field, or MalformedHeaderLine if a header
    line has no colon or no field name.
    """
    text = data.decode('utf-8', errors='replace') if isinstance(data, bytes) else data
    lines = split_lines_at_lf_or_crlf(text)
    message = _create_message_for_start_line(lines[0])

    name = ""
    value = ""
    for line in lines[1:]:
        if len(line) == 0:
            break
        if line[0] in ' \t':
            if len(name) == 0:
                raise DanglingContinuation(f"Continuation line before any header field: {line!r}")
            value += line
            continue
        if len(name) > 0:
            _add_header(message, name, value)
        colon = line.find(':')
        if colon <= 0:
            raise MalformedHeaderLine(f"Invalid header field line: {line!r}")
        name = line[:colon]
        value = line[colon + 1:].lstrip()

    if len(name) > 0:
        _add_header(message, name, value)

    return message

def serialize_message(message: SsdpMessage) -> str:
    """Returns the wire form of an SSDP message, with CRLF line endings."""
    return message.serialize()
