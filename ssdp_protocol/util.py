#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Simple utility functions used by this package
"""

from __future__ import annotations

from typing_extensions import SupportsIndex

import netifaces
import platform
import re
import socket
from ipaddress import IPv4Address, IPv6Address

from .internal_types import *
from .version import __version__

from requests.structures import CaseInsensitiveDict

_token_re = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")

_max_age_re = re.compile(r'^\s*max-age\s*=\s*"?(?P<value>[0-9]+)"?\s*$', re.IGNORECASE)

def split_lines_at_lf_or_crlf(text: str, maxsplit: SupportsIndex = -1) -> List[str]:
    """Split a string at LF or CRLF.

    If maxsplit is given, at most maxsplit splits are done.

    Returns a List[str] representing the delimited lines with the delimiters removed.
    """
    parts = text.split('\n', maxsplit)
    if len(parts) > 1:
        for i, part in enumerate(parts[:-1]):
            if part.endswith('\r'):
                parts[i] = part[:-1]
    return parts

def normalize_line_endings(text: str) -> str:
    """Replace every LF or CRLF in text with CRLF."""
    return re.sub(r'\r?\n', '\r\n', text)

def is_http_token(name: str) -> bool:
    """Returns True iff name is a valid RFC 2616 token (e.g., a header field name)."""
    return _token_re.fullmatch(name) is not None

def parse_max_age(cache_control: Optional[str]) -> Optional[int]:
    """Returns the max-age directive of a CACHE-CONTROL header value, in seconds.

    Returns None if there is no valid max-age directive.
    """
    if cache_control is None:
        return None
    for directive in cache_control.split(','):
        m = _max_age_re.match(directive)
        if m:
            return int(m.group('value'))
    return None

def replace_max_age(cache_control: Optional[str], max_age: int) -> str:
    """Returns a CACHE-CONTROL header value with the max-age directive set to max_age.

    Other directives are preserved in their original order.
    """
    directives: List[str] = []
    replaced = False
    if cache_control is not None:
        for directive in cache_control.split(','):
            directive = directive.strip()
            if len(directive) == 0:
                continue
            if _max_age_re.match(directive):
                if replaced:
                    continue
                directive = f"max-age={max_age}"
                replaced = True
            directives.append(directive)
    if not replaced:
        directives.append(f"max-age={max_age}")
    return ', '.join(directives)

def get_default_signature() -> str:
    """Returns the value used in SERVER and USER-AGENT headers; e.g.,
       "Linux/6.1.0 UPnP/1.0 ssdp-protocol/1.0.3"."""
    system = platform.system() or "Unknown"
    release = platform.release()
    os_part = system if len(release) == 0 else f"{system}/{release}"
    return f"{os_part} UPnP/1.0 ssdp-protocol/{__version__}"

def get_local_ip_addresses_and_interfaces(
        address_family: Union[socket.AddressFamily, int]=socket.AF_INET,
        include_loopback: bool=True
    ) -> List[Tuple[str, str]]:
    """Returns a list of Tuple[ip_address: str, interface_name: str] for the IP addresses of the local host
       in a requested address family. The result is sorted in a way that attempts to place the "preferred"
       canonical IP address first in the list, according to the following scheme:
           1. Addresses on the default gateway interface precede all other addresses.
           2. Non-loopback addresses precede loopback addresses.
           3. IPV4 addresses that begin with 172. follow other IPV4 addresses. This is a hack to
              deprioritize local docker network addresses.
    """
    result_with_priority: List[Tuple[int, str, str]] = []
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    is_ipv6 = int(address_family) == int(socket.AF_INET6)
    _, default_gateway_ifname = get_default_ip_gateway(address_family)
    netiface_family = netifaces.AF_INET6 if is_ipv6 else netifaces.AF_INET
    for ifname in netifaces.interfaces():
        ifinfo = netifaces.ifaddresses(ifname)
        if netiface_family in ifinfo:
            for addrinfo in ifinfo[netiface_family]:
              ip_str = addrinfo['addr']
              assert isinstance(ip_str, str)
              if ifname == default_gateway_ifname:
                  priority = 0
              elif is_ipv6 and IPv6Address(ip_str.split('%', 1)[0]).is_loopback:
                  if not include_loopback:
                      continue
                  priority = 3
              elif not is_ipv6 and IPv4Address(ip_str).is_loopback:
                  if not include_loopback:
                      continue
                  priority = 3
              elif not is_ipv6 and ip_str.startswith('172.'):
                  priority = 2
              else:
                  priority = 1

              result_with_priority.append((priority, ip_str, ifname))
    return [ (ip, ifname) for _, ip, ifname in sorted(result_with_priority)]

def get_local_ip_addresses(address_family: Union[socket.AddressFamily, int]=socket.AF_INET, include_loopback: bool=True) -> List[str]:
    """Returns a List[ip_address: str] for the IP addresses of the local host
       in a requested address family, preferred address first (see get_local_ip_addresses_and_interfaces)."""
    return [ ip for ip, _ in get_local_ip_addresses_and_interfaces(address_family, include_loopback=include_loopback)]

def get_preferred_local_ip_address(address_family: Union[socket.AddressFamily, int]=socket.AF_INET) -> str:
    """Returns the canonical local IP address that other hosts are most likely to reach us on.

    Falls back to the loopback address if the host has no other address.
    """
    addresses = get_local_ip_addresses(address_family, include_loopback=True)
    if len(addresses) == 0:
        return '::1' if int(address_family) == int(socket.AF_INET6) else '127.0.0.1'
    return addresses[0]

def get_default_ip_gateway(address_family: socket.AddressFamily | int=socket.AF_INET) -> Tuple[Optional[str], Optional[str]]:
    """Returns the (gateway_ip_address: str, gateway_interface_name: str) for the default IP gateway in the
       requested family, if any.
       returns (None, None) if there is no default gateway in the requested family."""
    assert int(address_family) in (int(socket.AF_INET), int(socket.AF_INET6))
    netiface_family = netifaces.AF_INET if int(address_family) == int(socket.AF_INET) else netifaces.AF_INET6
    gws = netifaces.gateways()
    if "default" in gws:
        default_gateway_infos = gws["default"]
        if netiface_family in default_gateway_infos:
            gw_ip, gw_interface_name = default_gateway_infos[netiface_family][:2]
            return (gw_ip, gw_interface_name)
    return (None, None)
