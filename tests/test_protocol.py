"""
Tests for SsdpProtocol - announcing, searching, and tracking remote notifications.

Tests cover:
- Notifications and searches requested before start()
- Answering search requests from the locally announced notifications
- Tracking, updating, removing and expiring remote notifications
- Renewal of local notifications
- The loopback and notify-all emission options
- Withdrawal of local notifications on stop()
- Robustness against malformed datagrams and failing handlers
"""
import pytest

from ssdp_protocol import (
    NotificationEventReason,
    ProtocolOptions,
    SsdpNotification,
    SsdpSearchRequest,
    SsdpSearchResponse,
    parse_message,
    should_emit,
)

MULTICAST = ("239.255.255.250", 1900)
REMOTE_ADDR = ("192.168.1.20", 1900)
REMOTE_SEARCHER = ("192.168.1.30", 50123)
SUBJECT = "urn:schemas-acme-com:service:test:1"

ADDED = NotificationEventReason.ADDED
UPDATED = NotificationEventReason.UPDATED
REMOVED = NotificationEventReason.REMOVED
EXPIRED = NotificationEventReason.EXPIRED
OTHER = NotificationEventReason.OTHER


def alive(usn="uuid:remote-1::" + SUBJECT, subject=SUBJECT, max_age=30, location="http://192.168.1.20/desc.xml"):
    return (
        "NOTIFY * HTTP/1.1\r\n"
        "HOST: 239.255.255.250:1900\r\n"
        f"CACHE-CONTROL: max-age={max_age}\r\n"
        f"LOCATION: {location}\r\n"
        f"NT: {subject}\r\n"
        "NTS: ssdp:alive\r\n"
        f"USN: {usn}\r\n"
        "\r\n"
    )


def byebye(usn="uuid:remote-1::" + SUBJECT, subject=SUBJECT):
    return (
        "NOTIFY * HTTP/1.1\r\n"
        "HOST: 239.255.255.250:1900\r\n"
        f"NT: {subject}\r\n"
        "NTS: ssdp:byebye\r\n"
        f"USN: {usn}\r\n"
        "\r\n"
    )


def search_request(subject="ssdp:all"):
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        "HOST: 239.255.255.250:1900\r\n"
        "MAN: \"ssdp:discover\"\r\n"
        "MX: 1\r\n"
        f"ST: {subject}\r\n"
        "\r\n"
    )


def search_response(usn="uuid:remote-2::upnp:rootdevice", subject="upnp:rootdevice"):
    return (
        "HTTP/1.1 200 OK\r\n"
        "CACHE-CONTROL: max-age=1800\r\n"
        "EXT:\r\n"
        "LOCATION: http://192.168.1.20:80/description.xml\r\n"
        "SERVER: Linux/5.10 UPnP/1.0 test/1.0\r\n"
        f"ST: {subject}\r\n"
        f"USN: {usn}\r\n"
        "\r\n"
    )


def local_notification(protocol, usn="uuid:local-1::" + SUBJECT, subject=SUBJECT, max_age=30):
    n = protocol.create_notification()
    n.subject = subject
    n.usn = usn
    n.max_age = max_age
    n.headers.add("LOCATION", "http://192.168.1.10/desc.xml")
    return n


def sent_messages(fake_socket):
    return [(addr, parse_message(data)) for addr, data in fake_socket.sent]


def reasons(events):
    return [reason for _, reason in events]


class TestBuilders:
    def test_create_notification(self, protocol):
        n = protocol.create_notification()
        assert isinstance(n, SsdpNotification)
        assert n.headers.first("HOST") == "239.255.255.250:1900"
        assert n.headers.first("SERVER") == "TestOS/1.0 UPnP/1.0 ssdp-protocol/test"
        assert n.notification_type == "ssdp:alive"

    def test_create_notification_from_search_response(self, protocol):
        r = parse_message(search_response())
        r.endpoint = ("192.168.1.20", 1900)
        r.headers.add("S", "uuid:ignored")
        r.headers.add("Location", "http://second/")
        n = protocol.create_notification(r)
        assert n.subject == "upnp:rootdevice"
        assert n.usn == "uuid:remote-2::upnp:rootdevice"
        assert n.address == "192.168.1.20"
        assert n.max_age == 1800
        assert "ST" not in n.headers
        assert "S" not in n.headers
        assert n.headers.get_values("LOCATION") == ["http://192.168.1.20:80/description.xml"]
        assert n.headers.names() == ["CACHE-CONTROL", "LOCATION", "SERVER", "NT", "USN"]

    def test_create_search_request(self, protocol):
        sr = protocol.create_search_request("upnp:rootdevice")
        assert isinstance(sr, SsdpSearchRequest)
        assert sr.subject == "upnp:rootdevice"
        assert sr.man == '"ssdp:discover"'
        assert sr.mx == 1
        assert sr.headers.first("HOST") == "239.255.255.250:1900"
        assert sr.headers.first("USER-AGENT") == "TestOS/1.0 UPnP/1.0 ssdp-protocol/test"
        assert protocol.create_search_request().subject == "ssdp:all"

    def test_create_search_response_from_notification(self, protocol):
        n = local_notification(protocol, max_age=120)
        r = protocol.create_search_response(n)
        assert isinstance(r, SsdpSearchResponse)
        assert r.subject == SUBJECT
        assert r.usn == n.usn
        assert r.max_age == 120
        assert r.headers.first("EXT") == ""
        assert r.headers.first("LOCATION") == "http://192.168.1.10/desc.xml"
        assert "NT" not in r.headers
        assert "NTS" not in r.headers

    def test_create_search_response_from_subject(self, protocol):
        r = protocol.create_search_response("upnp:rootdevice", "uuid:1::upnp:rootdevice")
        assert r.subject == "upnp:rootdevice"
        assert r.usn == "uuid:1::upnp:rootdevice"
        assert r.max_age == 30
        with pytest.raises(TypeError):
            protocol.create_search_response("upnp:rootdevice")

    def test_signature_can_be_changed(self, protocol):
        protocol.signature = "Custom/1.0"
        assert protocol.create_notification().headers.first("SERVER") == "Custom/1.0"


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_pending_notify_is_sent_by_start(self, protocol):
        n = local_notification(protocol)
        protocol.notify(n, persist=True)
        assert [p.notification for p in protocol.pending_notifications] == [n]
        assert protocol.pending_notifications[0].persist is True
        assert protocol.unicast is None

        async with protocol:
            assert protocol.started
            assert protocol.pending_notifications == []
            messages = sent_messages(protocol.unicast)
            assert len(messages) == 1
            addr, m = messages[0]
            assert addr == MULTICAST
            assert m == n
            assert n.usn in protocol.application_notifications
        assert not protocol.started

    @pytest.mark.asyncio
    async def test_pending_search_is_sent_by_start(self, protocol):
        protocol.search("upnp:rootdevice")
        assert len(protocol.pending_searches) == 1
        async with protocol:
            assert protocol.pending_searches == []
            [(addr, m)] = sent_messages(protocol.unicast)
            assert addr == MULTICAST
            assert isinstance(m, SsdpSearchRequest)
            assert m.subject == "upnp:rootdevice"

    @pytest.mark.asyncio
    async def test_notifications_are_sent_before_searches(self, protocol):
        protocol.search()
        protocol.notify(local_notification(protocol))
        async with protocol:
            kinds = [type(m) for _, m in sent_messages(protocol.unicast)]
        assert kinds == [SsdpNotification, SsdpSearchRequest]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, protocol):
        await protocol.start()
        first = protocol.multicast
        await protocol.start()
        assert protocol.multicast is first
        await protocol.stop()
        await protocol.stop()
        assert first.closed

    @pytest.mark.asyncio
    async def test_unicast_address(self, protocol):
        assert protocol.unicast_address is None
        async with protocol:
            assert protocol.unicast_address == ("192.168.1.10", 40000)
        assert protocol.unicast_address is None

    @pytest.mark.asyncio
    async def test_stop_sends_byebye_and_keeps_notification(self, protocol):
        n = local_notification(protocol)
        await protocol.start()
        protocol.notify(n, persist=True)
        unicast = protocol.unicast
        await protocol.stop()

        addr, m = sent_messages(unicast)[-1]
        assert addr == MULTICAST
        assert m.notification_type == "ssdp:byebye"
        assert m.usn == n.usn
        assert unicast.closed
        assert len(protocol.application_notifications) == 0

        [pending] = protocol.pending_notifications
        assert pending.persist is True
        assert pending.notification.usn == n.usn
        assert pending.notification.notification_type == "ssdp:alive"

        # announced again on restart
        await protocol.start()
        [(addr, m)] = sent_messages(protocol.unicast)
        assert m.notification_type == "ssdp:alive"
        assert m.usn == n.usn
        assert n.usn in protocol.application_notifications
        await protocol.stop(keep_persistent_notifications=False)
        assert protocol.pending_notifications == []

    @pytest.mark.asyncio
    async def test_deferred_messages_are_discarded_by_stop(self, protocol, events, settled):
        await protocol.start()
        protocol.notify(local_notification(protocol), persist=True)
        protocol.multicast.inject(alive())
        protocol.multicast.inject(search_request(), REMOTE_SEARCHER)
        await settled()
        await protocol.stop()

        await protocol.start()
        sent_by_start = len(protocol.unicast.sent)
        protocol.update()
        assert events == []
        assert len(protocol.active_notifications) == 0
        assert len(protocol.unicast.sent) == sent_by_start
        assert all(addr != REMOTE_SEARCHER for addr, _ in protocol.unicast.sent)
        await protocol.stop()

    @pytest.mark.asyncio
    async def test_context_manager_exit_forgets_notifications(self, protocol):
        protocol.notify(local_notification(protocol), persist=True)
        async with protocol:
            pass
        assert protocol.pending_notifications == []
        [_, (_, m)] = sent_messages(protocol.unicast)
        assert m.notification_type == "ssdp:byebye"

    @pytest.mark.asyncio
    async def test_transport_errors_reach_error_handlers(self, protocol):
        reported = []
        i = protocol.add_error_handler(lambda name, exc: reported.append((name, exc)))
        async with protocol:
            exc = OSError("network unreachable")
            protocol.multicast.error_received(exc)
            protocol.remove_error_handler(i)
            protocol.unicast.error_received(OSError("ignored"))
        assert reported == [("multicast", exc)]


class TestNotify:
    @pytest.mark.asyncio
    async def test_non_persistent_notify(self, protocol):
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n)
            assert n.usn not in protocol.application_notifications
            [(addr, m)] = sent_messages(protocol.unicast)
            assert addr == MULTICAST
            assert m == n

    @pytest.mark.asyncio
    async def test_byebye_replaces_persistent_notification(self, protocol):
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n, persist=True)
            bye = n.copy()
            bye.notification_type = "ssdp:byebye"
            protocol.notify(bye, persist=True)
            assert n.usn not in protocol.application_notifications

    @pytest.mark.asyncio
    async def test_withdraw(self, protocol):
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n, persist=True)
            assert protocol.withdraw(n.usn) is True
            assert protocol.withdraw(n.usn) is False
            assert n.usn not in protocol.application_notifications
            addr, m = sent_messages(protocol.unicast)[-1]
            assert m.notification_type == "ssdp:byebye"
            assert m.usn == n.usn
            # the announced notification itself is left untouched
            assert n.notification_type == "ssdp:alive"

    @pytest.mark.asyncio
    async def test_renewal_happens_once_per_period(self, protocol, clock):
        async with protocol:
            protocol.notify(local_notification(protocol, max_age=30), persist=True)
            unicast = protocol.unicast
            assert len(unicast.sent) == 1

            clock.advance(24.0)
            protocol.update()
            assert len(unicast.sent) == 1

            clock.advance(2.0)
            protocol.update()
            protocol.update()
            assert len(unicast.sent) == 2
            addr, m = sent_messages(unicast)[-1]
            assert addr == MULTICAST
            assert m.notification_type == "ssdp:alive"

            clock.advance(24.0)
            protocol.update()
            assert len(unicast.sent) == 2
            clock.advance(2.0)
            protocol.update()
            assert len(unicast.sent) == 3


class TestSearchRequests:
    @pytest.mark.asyncio
    async def test_search_all_is_answered(self, protocol, settled):
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n, persist=True)
            protocol.multicast.inject(search_request("ssdp:all"), REMOTE_SEARCHER)
            await settled()
            protocol.update()
            addr, m = sent_messages(protocol.unicast)[-1]
            assert addr == REMOTE_SEARCHER
            assert isinstance(m, SsdpSearchResponse)
            assert m.subject == SUBJECT
            assert m.usn == n.usn
            assert m.headers.first("LOCATION") == "http://192.168.1.10/desc.xml"

    @pytest.mark.asyncio
    async def test_matching_subject_is_answered(self, protocol, settled):
        async with protocol:
            protocol.notify(local_notification(protocol, usn="u1", subject=SUBJECT), persist=True)
            protocol.notify(local_notification(protocol, usn="u2", subject="upnp:rootdevice"), persist=True)
            before = len(protocol.unicast.sent)
            protocol.multicast.inject(search_request("upnp:rootdevice"), REMOTE_SEARCHER)
            await settled()
            protocol.update()
            responses = sent_messages(protocol.unicast)[before:]
            assert [(addr, m.usn) for addr, m in responses] == [(REMOTE_SEARCHER, "u2")]

    @pytest.mark.asyncio
    async def test_other_subject_is_ignored(self, protocol, settled):
        async with protocol:
            protocol.notify(local_notification(protocol), persist=True)
            before = len(protocol.unicast.sent)
            protocol.multicast.inject(search_request("urn:other"), REMOTE_SEARCHER)
            await settled()
            protocol.update()
            assert len(protocol.unicast.sent) == before

    @pytest.mark.asyncio
    async def test_non_persistent_notifications_are_not_answered(self, protocol, settled):
        async with protocol:
            protocol.notify(local_notification(protocol))
            protocol.multicast.inject(search_request(), REMOTE_SEARCHER)
            await settled()
            protocol.update()
            assert len(protocol.unicast.sent) == 1


class TestSearchResponses:
    @pytest.mark.asyncio
    async def test_response_adds_notification(self, protocol, events, settled):
        async with protocol:
            protocol.unicast.inject(search_response(), REMOTE_ADDR)
            await settled()
            assert events == []
            protocol.update()
            [(n, reason)] = events
            assert reason == ADDED
            assert n.subject == "upnp:rootdevice"
            assert n.usn == "uuid:remote-2::upnp:rootdevice"
            assert n.address == "192.168.1.20"
            assert n.notification_type == "ssdp:alive"
            assert "uuid:remote-2::upnp:rootdevice" in protocol.active_notifications

    @pytest.mark.asyncio
    async def test_duplicate_response_is_ignored(self, protocol, events, settled):
        async with protocol:
            protocol.unicast.inject(search_response(), REMOTE_ADDR)
            protocol.unicast.inject(search_response(), REMOTE_ADDR)
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]

    @pytest.mark.asyncio
    async def test_response_for_known_notification_is_ignored(self, protocol, events, settled):
        async with protocol:
            usn = "uuid:remote-2::upnp:rootdevice"
            protocol.multicast.inject(alive(usn=usn, subject="upnp:rootdevice"))
            await settled()
            protocol.unicast.inject(search_response(usn=usn))
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]


class TestRemoteNotifications:
    @pytest.mark.asyncio
    async def test_alive_is_added(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive(), REMOTE_ADDR)
            await settled()
            protocol.update()
            [(n, reason)] = events
            assert reason == ADDED
            assert n.address == "192.168.1.20"
            assert n.usn == "uuid:remote-1::" + SUBJECT

    @pytest.mark.asyncio
    async def test_duplicate_alive_is_reported_once(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive())
            protocol.multicast.inject(alive())
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]

    @pytest.mark.asyncio
    async def test_changed_alive_is_updated(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive(location="http://192.168.1.20/a.xml"))
            protocol.multicast.inject(alive(location="http://192.168.1.20/b.xml"))
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED, UPDATED]
            entry = protocol.active_notifications.get("uuid:remote-1::" + SUBJECT)
            assert entry.notification.headers.first("LOCATION") == "http://192.168.1.20/b.xml"
            assert b"/b.xml" in entry.message_data

    @pytest.mark.asyncio
    async def test_byebye_removes(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive())
            protocol.multicast.inject(byebye())
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED, REMOVED]
            assert len(protocol.active_notifications) == 0

    @pytest.mark.asyncio
    async def test_byebye_for_unknown_usn_is_reported(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(byebye(usn="uuid:never-seen"))
            await settled()
            protocol.update()
            [(n, reason)] = events
            assert reason == REMOVED
            assert n.usn == "uuid:never-seen"
            assert len(protocol.active_notifications) == 0

    @pytest.mark.asyncio
    async def test_unknown_nts_is_other(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive().replace("ssdp:alive", "ssdp:update"))
            await settled()
            protocol.update()
            assert reasons(events) == [OTHER]
            assert len(protocol.active_notifications) == 0

    @pytest.mark.asyncio
    async def test_expiry_waits_for_leeway(self, protocol, events, clock, settled):
        async with protocol:
            protocol.multicast.inject(alive(max_age=30))
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]

            clock.advance(34.0)
            protocol.update()
            assert reasons(events) == [ADDED]

            clock.advance(2.0)
            protocol.update()
            assert reasons(events) == [ADDED, EXPIRED]
            n, _ = events[-1]
            assert n.notification_type == "ssdp:byebye"
            assert len(protocol.active_notifications) == 0

            protocol.update()
            assert reasons(events) == [ADDED, EXPIRED]

    @pytest.mark.asyncio
    async def test_reannouncement_postpones_expiry(self, protocol, events, clock, settled):
        async with protocol:
            protocol.multicast.inject(alive(max_age=30))
            await settled()
            protocol.update()
            clock.advance(20.0)
            protocol.multicast.inject(alive(max_age=30))
            await settled()
            protocol.update()
            clock.advance(30.0)
            protocol.update()
            assert reasons(events) == [ADDED]
            clock.advance(6.0)
            protocol.update()
            assert reasons(events) == [ADDED, EXPIRED]

    @pytest.mark.asyncio
    async def test_update_with_new_max_age_uses_it_for_expiry(self, protocol, events, clock, settled):
        async with protocol:
            protocol.multicast.inject(alive(max_age=30))
            await settled()
            protocol.update()
            clock.advance(10.0)
            protocol.multicast.inject(alive(max_age=120))
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED, UPDATED]
            entry = protocol.active_notifications.get("uuid:remote-1::" + SUBJECT)
            assert entry.expiration_time == 1130.0

            clock.advance(36.0)
            protocol.update()
            assert reasons(events) == [ADDED, UPDATED]

    @pytest.mark.asyncio
    async def test_messages_wait_for_update(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(alive())
            await settled()
            assert events == []
            protocol.update()
            assert reasons(events) == [ADDED]

    @pytest.mark.asyncio
    async def test_immediate_processing(self, make_protocol, settled):
        protocol = make_protocol(options=ProtocolOptions.IMMEDIATE_MESSAGE_PROCESSING)
        events = []
        protocol.add_notification_handler(lambda n, reason: events.append((n, reason)))
        async with protocol:
            protocol.multicast.inject(alive())
            await settled()
            assert reasons(events) == [ADDED]

    @pytest.mark.asyncio
    async def test_malformed_datagrams_are_skipped(self, protocol, events, settled):
        async with protocol:
            protocol.multicast.inject(b"GARBAGE")
            protocol.multicast.inject("NOTIFY * HTTP/1.1\r\n  dangling\r\n\r\n")
            protocol.multicast.inject(b"\xff\xfe\x00")
            protocol.multicast.inject(alive())
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]
            assert all(not task.done() for task in protocol._receive_tasks)

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, protocol, events, settled):
        def failing(n, reason):
            raise RuntimeError("handler failed")
        protocol.add_notification_handler(failing)
        later = []
        protocol.add_notification_handler(lambda n, reason: later.append(reason))
        async with protocol:
            protocol.multicast.inject(alive())
            protocol.multicast.inject(byebye())
            await settled()
            protocol.update()
        assert reasons(events) == [ADDED, REMOVED]
        assert later == [ADDED, REMOVED]

    @pytest.mark.asyncio
    async def test_removed_handler_is_not_called(self, protocol, settled):
        received = []
        i = protocol.add_notification_handler(lambda n, reason: received.append(reason))
        protocol.remove_notification_handler(i)
        async with protocol:
            protocol.multicast.inject(alive())
            await settled()
            protocol.update()
        assert received == []


class TestEmission:
    @pytest.mark.parametrize("is_owned, notify_loopback, notify_all, expected", [
        (False, False, False, True),
        (False, True, False, True),
        (False, False, True, True),
        (True, False, False, False),
        (True, True, False, True),
        (True, False, True, True),
        (True, True, True, True),
    ])
    def test_should_emit(self, is_owned, notify_loopback, notify_all, expected):
        assert should_emit(is_owned, notify_loopback, notify_all) is expected

    @pytest.mark.asyncio
    async def test_own_announcement_is_not_reported(self, protocol, events, settled):
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n, persist=True)
            # our own multicast comes back from the network
            protocol.multicast.inject(protocol.unicast.sent[0][1], ("192.168.1.10", 40000))
            await settled()
            protocol.update()
            assert events == []

    @pytest.mark.asyncio
    async def test_own_announcement_with_loopback(self, make_protocol, settled):
        protocol = make_protocol(options=ProtocolOptions.NOTIFY_LOOPBACK)
        events = []
        protocol.add_notification_handler(lambda n, reason: events.append((n, reason)))
        async with protocol:
            n = local_notification(protocol)
            protocol.notify(n, persist=True)
            protocol.multicast.inject(protocol.unicast.sent[0][1], ("192.168.1.10", 40000))
            await settled()
            protocol.update()
            [(received, reason)] = events
            assert reason == ADDED
            assert received.usn == n.usn
            assert received.address == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_own_announcement_never_expires_from_active(self, make_protocol, clock, settled):
        protocol = make_protocol(options=ProtocolOptions.NOTIFY_LOOPBACK)
        events = []
        protocol.add_notification_handler(lambda n, reason: events.append((n, reason)))
        async with protocol:
            n = local_notification(protocol, max_age=30)
            protocol.notify(n, persist=True)
            protocol.multicast.inject(protocol.unicast.sent[0][1], ("192.168.1.10", 40000))
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED]

            clock.advance(100.0)
            protocol.update()
            assert reasons(events) == [ADDED]
            assert n.usn in protocol.active_notifications

    @pytest.mark.asyncio
    async def test_notify_all_reports_unchanged_alive(self, make_protocol, settled):
        protocol = make_protocol(options=ProtocolOptions.NOTIFY_ALL)
        events = []
        protocol.add_notification_handler(lambda n, reason: events.append((n, reason)))
        async with protocol:
            protocol.multicast.inject(alive())
            protocol.multicast.inject(alive())
            await settled()
            protocol.update()
            assert reasons(events) == [ADDED, OTHER]

    @pytest.mark.asyncio
    async def test_options_can_change_while_started(self, protocol, events, settled):
        async with protocol:
            protocol.options = ProtocolOptions.NOTIFY_ALL | ProtocolOptions.IMMEDIATE_MESSAGE_PROCESSING
            protocol.multicast.inject(alive())
            protocol.multicast.inject(alive())
            await settled()
            assert reasons(events) == [ADDED, OTHER]


class TestSearch:
    @pytest.mark.asyncio
    async def test_search_sends_request(self, protocol):
        async with protocol:
            protocol.search("upnp:rootdevice")
            [(addr, m)] = sent_messages(protocol.unicast)
            assert addr == MULTICAST
            assert isinstance(m, SsdpSearchRequest)
            assert m.subject == "upnp:rootdevice"

    @pytest.mark.asyncio
    async def test_search_with_request(self, protocol):
        async with protocol:
            sr = protocol.create_search_request("upnp:rootdevice")
            sr.mx = 3
            protocol.search(sr)
            [(_, m)] = sent_messages(protocol.unicast)
            assert m == sr

    @pytest.mark.asyncio
    async def test_search_handler_replays_known_notifications(self, protocol, settled):
        async with protocol:
            protocol.multicast.inject(alive(usn="u1", subject=SUBJECT))
            protocol.multicast.inject(alive(usn="u2", subject="upnp:rootdevice"))
            await settled()
            protocol.update()

            replayed = []
            protocol.search(SUBJECT, handler=lambda n, reason: replayed.append((n.usn, reason)))
            assert replayed == [("u1", ADDED)]

            replayed = []
            protocol.search(handler=lambda n, reason: replayed.append((n.usn, reason)))
            assert replayed == [("u1", ADDED), ("u2", ADDED)]
