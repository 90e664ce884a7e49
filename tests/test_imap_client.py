"""Tests for the IMAPClient-backed transport, with IMAPClient mocked out."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from mailvision.application.cancellation import CancellationToken
from mailvision.application.ports.mailbox_transport import BodyPart
from mailvision.domain.errors import AuthenticationError, ConnectivityError, DecodeError, FolderNotFoundError
from mailvision.domain.events import MessageExpunged, MessagesArrived
from mailvision.infrastructure.email.providers.imap.client import ImapConfig, ImapMailboxTransport

CLIENT_PATH = "mailvision.infrastructure.email.providers.imap.client.IMAPClient"


@pytest.fixture
def imap_cls():
    with patch(CLIENT_PATH) as cls:
        client = cls.return_value
        client.has_capability.return_value = True
        client.find_special_folder.return_value = "Sent Items"
        client.folder_exists.return_value = True
        client.select_folder.return_value = {b"EXISTS": 4, b"UIDVALIDITY": 77}
        client.idle_check.return_value = []
        client.idle_done.return_value = (b"Idle terminated", [])
        client.noop.return_value = (b"NOOP completed", [])
        yield cls


@pytest.fixture
def mock_imap_client(imap_cls):
    return imap_cls.return_value


@pytest.fixture
def transport(imap_cls):
    return ImapMailboxTransport(ImapConfig(host="imap.example.com", login="alice@example.com", password="s3cret"))


@pytest.fixture
def ready(transport):
    transport.connect()
    transport.login()
    transport.open_folder(None)
    return transport


# ============================================================================
# Session
# ============================================================================


def test_connect_and_login(transport, imap_cls, mock_imap_client):
    transport.connect()
    transport.login()

    assert imap_cls.call_args.args == ("imap.example.com",)
    assert imap_cls.call_args.kwargs["port"] == 993
    assert imap_cls.call_args.kwargs["ssl"] is True
    mock_imap_client.login.assert_called_once_with("alice@example.com", "s3cret")
    assert transport.is_authenticated
    assert transport.supports_idle


def test_rejected_login_is_authentication_error(transport, mock_imap_client):
    mock_imap_client.login.side_effect = LoginError("[AUTHENTICATIONFAILED] Invalid credentials")
    transport.connect()

    with pytest.raises(AuthenticationError):
        transport.login()
    assert not transport.is_authenticated


def test_socket_failure_on_connect_is_connectivity_error(transport, imap_cls):
    imap_cls.side_effect = OSError("connection refused")

    with pytest.raises(ConnectivityError):
        transport.connect()
    assert not transport.is_connected


def test_operations_before_connect_are_connectivity_errors(transport):
    with pytest.raises(ConnectivityError):
        transport.search_since(datetime(2024, 1, 1))


def test_open_folder_uses_special_use_sent_folder(transport, mock_imap_client):
    transport.connect()
    transport.login()

    info = transport.open_folder(None)

    assert info.name == "Sent Items"
    assert info.count == 4
    assert info.uidvalidity == 77
    assert transport.message_count == 4
    mock_imap_client.select_folder.assert_called_once_with("Sent Items", readonly=True)


def test_open_folder_falls_back_to_common_names(transport, mock_imap_client):
    mock_imap_client.find_special_folder.return_value = None
    mock_imap_client.folder_exists.side_effect = lambda name: name == "Sent"
    transport.connect()

    assert transport.open_folder(None).name == "Sent"


def test_missing_folder_raises(transport, mock_imap_client):
    mock_imap_client.find_special_folder.return_value = None
    mock_imap_client.folder_exists.return_value = False
    transport.connect()

    with pytest.raises(FolderNotFoundError):
        transport.open_folder(None)
    with pytest.raises(FolderNotFoundError):
        transport.open_folder("Envoyés")


def test_disconnect_logs_out_and_tolerates_errors(ready, mock_imap_client):
    mock_imap_client.logout.side_effect = OSError("gone")

    ready.disconnect()

    mock_imap_client.logout.assert_called_once()
    assert not ready.is_connected


# ============================================================================
# IDLE / NOOP
# ============================================================================


def test_idle_forwards_push_events_until_scope_cancelled(ready, mock_imap_client):
    scope = CancellationToken()
    events = []

    def emit(event):
        events.append(event)
        scope.cancel()

    mock_imap_client.idle_check.side_effect = [[(b"OK", b"Still here")], [(6, b"EXISTS")]]
    mock_imap_client.idle_done.return_value = (b"Idle terminated", [(5, b"EXPUNGE")])

    ready.idle(scope, emit)

    assert events == [MessagesArrived(6), MessageExpunged(5)]
    assert ready.message_count == 5
    mock_imap_client.idle.assert_called_once()
    mock_imap_client.idle_done.assert_called_once()


def test_idle_check_slice_is_bounded_by_scope_deadline(ready, mock_imap_client, clock):
    scope = CancellationToken(timeout=0.5, clock=clock)

    def check(timeout):
        clock.advance(timeout)
        return []

    mock_imap_client.idle_check.side_effect = check

    ready.idle(scope, lambda event: None)

    timeouts = [c.kwargs["timeout"] for c in mock_imap_client.idle_check.call_args_list]
    assert timeouts == [0.5]


def test_aborted_idle_drops_connection(ready, mock_imap_client):
    mock_imap_client.idle_check.side_effect = IMAPClientAbortError("socket error: EOF")

    with pytest.raises(ConnectivityError):
        ready.idle(CancellationToken(), lambda event: None)

    assert not ready.is_connected
    mock_imap_client.shutdown.assert_called_once()


def test_noop_routes_untagged_responses(ready, mock_imap_client):
    mock_imap_client.noop.return_value = (b"NOOP completed", [(7, b"EXISTS")])
    events = []

    ready.noop(events.append)

    assert events == [MessagesArrived(7)]


# ============================================================================
# Search and fetch
# ============================================================================


def test_search_since_passes_date(ready, mock_imap_client):
    mock_imap_client.search.return_value = [9, 3]

    assert ready.search_since(datetime(2024, 1, 1, 8, tzinfo=timezone.utc)) == [3, 9]
    mock_imap_client.search.assert_called_once_with(["SINCE", datetime(2024, 1, 1).date()])


def test_fetch_after_filters_star_range_artifact(ready, mock_imap_client):
    """``13:*`` returns the newest message even when its UID is below 13."""
    mock_imap_client.search.return_value = [10]

    assert ready.fetch_after(12) == []
    mock_imap_client.search.assert_called_once_with(["UID", "13:*"])
    mock_imap_client.fetch.assert_not_called()


def test_fetch_after_returns_sorted_summaries(ready, mock_imap_client):
    mock_imap_client.search.return_value = [15, 13]
    mock_imap_client.fetch.return_value = {
        15: {b"INTERNALDATE": datetime(2024, 2, 2, tzinfo=timezone.utc)},
        13: {b"INTERNALDATE": datetime(2024, 2, 1, tzinfo=timezone.utc)},
    }

    summaries = ready.fetch_after(12)

    assert [s.uid for s in summaries] == [13, 15]
    assert mock_imap_client.fetch.call_args.args[0] == [13, 15]


def test_fetch_part_joins_mime_header_and_body(ready, mock_imap_client):
    part = BodyPart(specifier="2", content_type="image/png", filename="a.png")
    mock_imap_client.fetch.return_value = {
        5: {
            b"BODY[2.MIME]": b"Content-Type: image/png\r\nContent-Transfer-Encoding: base64\r\n\r\n",
            b"BODY[2]": b"iVBORw0KGgo=",
        }
    }

    raw = ready.fetch_part(5, part)

    assert raw == b"Content-Type: image/png\r\nContent-Transfer-Encoding: base64\r\n\r\niVBORw0KGgo="
    assert mock_imap_client.fetch.call_args.args == ([5], ["BODY.PEEK[2.MIME]", "BODY.PEEK[2]"])


def test_fetch_part_of_single_part_message_uses_header(ready, mock_imap_client):
    part = BodyPart(specifier="1", content_type="image/png", top_level=True)
    mock_imap_client.fetch.return_value = {5: {b"BODY[HEADER]": b"Subject: x\r\n\r\n", b"BODY[1]": b"AAAA"}}

    assert ready.fetch_part(5, part) == b"Subject: x\r\n\r\nAAAA"


def test_fetch_part_command_failure_is_decode_error(ready, mock_imap_client):
    mock_imap_client.fetch.side_effect = IMAPClientError("FETCH command error: BAD")

    with pytest.raises(DecodeError):
        ready.fetch_part(5, BodyPart(specifier="2", content_type="image/png"))
    assert ready.is_connected


def test_fetch_part_missing_message_is_decode_error(ready, mock_imap_client):
    mock_imap_client.fetch.return_value = {}

    with pytest.raises(DecodeError):
        ready.fetch_part(5, BodyPart(specifier="2", content_type="image/png"))


def test_search_failure_drops_connection(ready, mock_imap_client):
    mock_imap_client.search.side_effect = IMAPClientError("SEARCH command error: BAD")

    with pytest.raises(ConnectivityError):
        ready.fetch_after(1)
    assert not ready.is_connected
