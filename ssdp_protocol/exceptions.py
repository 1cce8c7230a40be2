#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Exceptions defined by this package"""

class SsdpError(Exception):
  """Base class for all error exceptions defined by this package."""
  pass

class SsdpHeaderError(SsdpError, ValueError):
  """A header field name or value cannot be stored in a HeaderStore."""
  pass

class SsdpParseError(SsdpError):
  """A datagram could not be decoded as an SSDP message."""
  pass

class UnsupportedMessageType(SsdpParseError):
  """The start line is neither a NOTIFY/M-SEARCH request line nor a 200 status line."""
  pass

class DanglingContinuation(SsdpParseError):
  """A header continuation line appeared before any header field."""
  pass

class MalformedHeaderLine(SsdpParseError):
  """A header line has no colon, or an empty field name."""
  pass

class SsdpTransportError(SsdpError):
  """A UDP socket could not be created, or a datagram could not be sent."""
  pass
