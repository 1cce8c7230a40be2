#!/usr/bin/env python3

# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

from __future__ import annotations

import sys
import argparse
import json
import time
import uuid
import asyncio
import logging
from signal import SIGINT, SIGTERM

from ssdp_protocol.internal_types import *

from ssdp_protocol import (
    __version__ as pkg_version,
    SsdpProtocol,
    SsdpNotification,
    ProtocolOptions,
    NotificationEventReason,
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    SEARCH_ALL,
  )
from ssdp_protocol.util import get_preferred_local_ip_address

UPDATE_INTERVAL = 0.033
"""Seconds between calls to SsdpProtocol.update()"""

DEFAULT_SEARCH_WAIT_TIME = 4.0

class CmdExitError(RuntimeError):
    exit_code: int

    def __init__(self, exit_code: int, msg: Optional[str]=None):
        if msg is None:
            msg = f"Command exited with return code {exit_code}"
        super().__init__(msg)
        self.exit_code = exit_code

class ArgparseExitError(CmdExitError):
    pass

class NoExitArgumentParser(argparse.ArgumentParser):
    def exit(self, status=0, message=None):
        if message:
            self._print_message(message, sys.stderr)
        raise ArgparseExitError(status, message)

def notification_summary(notification: SsdpNotification, reason: NotificationEventReason) -> JsonableDict:
    headers: Dict[str, List[str]] = {}
    for name, value in notification.headers.items():
        headers.setdefault(name, []).append(value)
    return {
        "reason": reason.name,
        "address": notification.address,
        "type": notification.notification_type,
        "subject": notification.subject,
        "usn": notification.usn,
        "headers": headers,
    }

def print_notification(notification: SsdpNotification, reason: NotificationEventReason) -> None:
    print(json.dumps(notification_summary(notification, reason), indent=2, sort_keys=True))
    sys.stdout.flush()

class CommandHandler:
    _argv: Optional[Sequence[str]]
    _parser: argparse.ArgumentParser
    _args: argparse.Namespace
    _provide_traceback: bool = True

    def __init__(self, argv: Optional[Sequence[str]]=None):
        self._argv = argv

    async def cmd_bare(self) -> int:
        print("A command is required", file=sys.stderr)
        return 1

    def _parse_arg_headers(self, arg_headers: List[str]) -> List[Tuple[str, str]]:
        headers: List[Tuple[str, str]] = []
        for header_assignment in arg_headers:
            if not '=' in header_assignment:
                raise CmdExitError(1, f"Header must be <name>=<value>: {header_assignment}")
            name, value = header_assignment.split('=', 1)
            headers.append((name, value))
        return headers

    def _create_protocol(self) -> SsdpProtocol:
        options = ProtocolOptions.NONE
        if self._args.immediate:
            options |= ProtocolOptions.IMMEDIATE_MESSAGE_PROCESSING
        if self._args.notify_loopback:
            options |= ProtocolOptions.NOTIFY_LOOPBACK
        if self._args.notify_all:
            options |= ProtocolOptions.NOTIFY_ALL
        protocol = SsdpProtocol(
            multicast_address=self._args.address,
            multicast_port=self._args.port,
            options=options,
            interface_address=self._args.bind_address,
          )
        protocol.add_error_handler(
            lambda socket_name, exc: print(f"ssdp: transport error on {socket_name}: {exc}", file=sys.stderr))
        return protocol

    async def _run_until(self, protocol: SsdpProtocol, end_time: Optional[float]=None) -> None:
        """Pump protocol.update() until end_time (time.monotonic()), or until SIGINT/SIGTERM."""
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        if not self._provide_traceback:
            for signal in (SIGINT, SIGTERM):
                loop.add_signal_handler(signal, stop_event.set)
        try:
            while not stop_event.is_set():
                protocol.update()
                if end_time is not None and time.monotonic() >= end_time:
                    break
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=UPDATE_INTERVAL)
                except asyncio.TimeoutError:
                    pass
        finally:
            if not self._provide_traceback:
                for signal in (SIGINT, SIGTERM):
                    loop.remove_signal_handler(signal)

    async def cmd_monitor(self) -> int:
        protocol = self._create_protocol()
        protocol.add_notification_handler(print_notification)
        search_subject: Optional[str] = self._args.search
        if search_subject is not None:
            protocol.search(search_subject)
        async with protocol:
            await self._run_until(protocol)
        return 0

    async def cmd_notify(self) -> int:
        protocol = self._create_protocol()
        protocol.add_notification_handler(print_notification)
        subject: str = self._args.subject
        me = protocol.create_notification()
        me.subject = subject
        me.usn = self._args.usn if self._args.usn is not None else f"uuid:{uuid.uuid4()}::{subject}"
        me.max_age = self._args.max_age
        location: Optional[str] = self._args.location
        if location is None:
            location = f"http://{get_preferred_local_ip_address()}/"
        me.headers.add("LOCATION", location)
        for name, value in self._parse_arg_headers(self._args.headers):
            me.headers.add(name, value)
        logging.debug(f"Notify: {me}")
        protocol.notify(me, persist=True)
        if self._args.search:
            protocol.search(subject)
        async with protocol:
            await self._run_until(protocol)
        return 0

    async def cmd_search(self) -> int:
        protocol = self._create_protocol()
        protocol.add_notification_handler(print_notification)
        protocol.search(self._args.subject)
        async with protocol:
            await self._run_until(protocol, time.monotonic() + self._args.wait_time)
        return 0

    async def cmd_version(self) -> int:
        print(pkg_version)
        return 0

    async def arun(self) -> int:
        """Run the ssdp command-line tool with provided arguments

        Args:
            argv (Optional[Sequence[str]], optional):
                A list of commandline arguments (NOT including the program as argv[0]!),
                or None to use sys.argv[1:]. Defaults to None.

        Returns:
            int: The exit code that would be returned if this were run as a standalone command.
        """
        parser = NoExitArgumentParser(description="Announce and discover services with SSDP.")


        # ======================= Main command

        self._parser = parser
        parser.add_argument('--traceback', "--tb", action='store_true', default=False,
                            help='Display detailed exception information')
        parser.add_argument('--log-level', dest='log_level', default='warning',
                            choices=['debug', 'info', 'warning', 'error', 'critical'],
                            help='''The logging level to use. Default: warning''')
        parser.add_argument('--address', default=SSDP_MULTICAST_ADDRESS,
                            help=f'''The SSDP multicast address. Default: {SSDP_MULTICAST_ADDRESS}''')
        parser.add_argument('--port', type=int, default=SSDP_PORT,
                            help=f'''The SSDP multicast port. Default: {SSDP_PORT}''')
        parser.add_argument('-b', '--bind', dest="bind_address", default=None,
                            help='''The local IP address of the interface to use. Default: any interface.''')
        parser.add_argument('--notify-loopback', dest='notify_loopback', action='store_true', default=False,
                            help='Also report our own announcements when they come back from the network')
        parser.add_argument('--notify-all', dest='notify_all', action='store_true', default=False,
                            help='Report every received announcement, including unchanged ones')
        parser.add_argument('--immediate', action='store_true', default=False,
                            help='Process received messages as they arrive instead of on the next update')
        parser.set_defaults(func=self.cmd_bare)

        subparsers = parser.add_subparsers(
                            title='Commands',
                            description='Valid commands',
                            help='Additional help available with "<command-name> -h"')


        # ======================= monitor

        parser_monitor = subparsers.add_parser('monitor', description="Report SSDP announcements until interrupted")
        parser_monitor.add_argument('--search', default=None,
                            help='''Also search for a device or service type (e.g., "ssdp:all") at startup''')
        parser_monitor.set_defaults(func=self.cmd_monitor)

        # ======================= notify

        parser_notify = subparsers.add_parser('notify', description="Announce a service until interrupted")
        parser_notify.add_argument('--subject', required=True,
                            help='''The announced device or service type (NT header)''')
        parser_notify.add_argument('--usn', default=None,
                            help='''The unique service name. Default: uuid:<random uuid>::<subject>''')
        parser_notify.add_argument('--max-age', dest='max_age', type=int, default=60,
                            help='''The announcement max-age in seconds. Default: 60''')
        parser_notify.add_argument('--location', default=None,
                            help='''The LOCATION header. Default: http://<local ip address>/''')
        parser_notify.add_argument('-H', '--header', dest="headers", action='append', default=[],
                            help='''A <name>=<value> header to include in the announcement. May be repeated.''')
        parser_notify.add_argument('--search', action='store_true', default=False,
                            help='''Also search for other services of the same type''')
        parser_notify.set_defaults(func=self.cmd_notify)

        # ======================= search

        parser_search = subparsers.add_parser('search', description="Search for SSDP devices and services")
        parser_search.add_argument('--subject', default=SEARCH_ALL,
                            help=f'''The device or service type to search for. Default: "{SEARCH_ALL}"''')
        parser_search.add_argument('--wait-time', dest='wait_time', type=float, default=DEFAULT_SEARCH_WAIT_TIME,
                            help=f'''The amount of time to wait for responses, in seconds. Default: {DEFAULT_SEARCH_WAIT_TIME}''')
        parser_search.set_defaults(func=self.cmd_search)

        # ======================= version

        parser_version = subparsers.add_parser('version',
                                description='''Display version information.''')
        parser_version.set_defaults(func=self.cmd_version)

        # =========================================================

        try:
            args = parser.parse_args(self._argv)
        except ArgparseExitError as ex:
            return ex.exit_code
        traceback: bool = args.traceback
        self._provide_traceback = traceback

        try:
            logging.basicConfig(
                level=logging.getLevelName(args.log_level.upper()),
            )
            self._args = args
            func: Callable[[], Awaitable[int]] = args.func
            logging.debug(f"Running command {func.__name__}, tb = {traceback}")
            rc = await func()
            logging.debug(f"Command {func.__name__} returned {rc}")
        except Exception as ex:
            if isinstance(ex, CmdExitError):
                rc = ex.exit_code
            else:
                rc = 1
            if rc != 0:
                if traceback:
                    raise
            print(f"ssdp: error: {ex}", file=sys.stderr)
        except BaseException as ex:
            print(f"ssdp: Unhandled exception: {ex}", file=sys.stderr)
            raise

        return rc

    def run(self) -> int:
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            rc = loop.run_until_complete(self.arun())
        finally:
            loop.close()
        return rc

def run(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = CommandHandler(argv).run()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

async def arun(argv: Optional[Sequence[str]]=None) -> int:
    try:
        rc = await CommandHandler(argv).arun()
    except CmdExitError as ex:
        rc = ex.exit_code
    return rc

def main() -> int:
    return run()

# allow running with "python3 -m", or as a standalone script
if __name__ == "__main__":
    sys.exit(run())
