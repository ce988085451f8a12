"""Tests for GmailClient — the discovery service is fully mocked, no network."""

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from radar.mail.gmail_client import (
    METADATA_HEADERS,
    AuthorizationError,
    GmailClient,
    GmailError,
    build_gmail_client,
    extract_domain,
    extract_email_address,
    load_credentials,
)


# ── Helpers ────────────────────────────────────────────────────────────────────


def make_http_error(status: int) -> HttpError:
    resp = MagicMock(status=status, reason="error")
    return HttpError(resp, b"")


def make_service() -> MagicMock:
    return MagicMock()


def history_request(service: MagicMock) -> MagicMock:
    return service.users.return_value.history.return_value.list.return_value


def messages_list_request(service: MagicMock) -> MagicMock:
    return service.users.return_value.messages.return_value.list.return_value


def messages_get_request(service: MagicMock) -> MagicMock:
    return service.users.return_value.messages.return_value.get.return_value


def metadata_response(
    id: str = "msg_1",
    thread_id: str = "thread_1",
    sender: str = "Jane Doe <Jane@Example.com>",
    subject: str | None = "Q1 reconciliation due Friday",
    history_id: str | None = "1205",
) -> dict:
    headers = [{"name": "From", "value": sender}]
    if subject is not None:
        headers.append({"name": "Subject", "value": subject})
    data: dict = {
        "id": id,
        "threadId": thread_id,
        "snippet": "Please send the numbers",
        "internalDate": "1772443800000",
        "payload": {"headers": headers},
    }
    if history_id is not None:
        data["historyId"] = history_id
    return data


# ── Header helpers ─────────────────────────────────────────────────────────────


class TestHeaderHelpers:
    def test_angle_address(self) -> None:
        assert extract_email_address("Jane <Jane@X.com>") == "jane@x.com"

    def test_bare_address(self) -> None:
        assert extract_email_address(" Boss@Corp.com ") == "boss@corp.com"

    def test_domain(self) -> None:
        assert extract_domain("jane@x.com") == "x.com"

    def test_domain_missing(self) -> None:
        assert extract_domain("unknown") is None


# ── History listing ────────────────────────────────────────────────────────────


class TestListHistoryMessageIds:
    async def test_collects_added_messages(self) -> None:
        service = make_service()
        history_request(service).execute.return_value = {
            "history": [
                {"messagesAdded": [{"message": {"id": "a"}}, {"message": {"id": "b"}}]},
                {"messagesAdded": [{"message": {"id": "a"}}]},
                {"labelsAdded": [{"message": {"id": "z"}}]},
            ]
        }
        ids = await GmailClient(service).list_history_message_ids("1200")

        assert ids == ["a", "b"]
        service.users.return_value.history.return_value.list.assert_called_once_with(
            userId="me",
            startHistoryId="1200",
            historyTypes=["messageAdded"],
            labelId="INBOX",
            pageToken=None,
        )

    async def test_follows_pagination(self) -> None:
        service = make_service()
        history_request(service).execute.side_effect = [
            {"history": [{"messagesAdded": [{"message": {"id": "a"}}]}], "nextPageToken": "p2"},
            {"history": [{"messagesAdded": [{"message": {"id": "b"}}]}]},
        ]
        ids = await GmailClient(service).list_history_message_ids("1200")

        assert ids == ["a", "b"]
        list_call = service.users.return_value.history.return_value.list
        assert list_call.call_args_list[1].kwargs["pageToken"] == "p2"

    async def test_empty_history(self) -> None:
        service = make_service()
        history_request(service).execute.return_value = {}
        assert await GmailClient(service).list_history_message_ids("1200") == []

    async def test_expired_history_id_returns_empty(self) -> None:
        service = make_service()
        history_request(service).execute.side_effect = make_http_error(404)
        assert await GmailClient(service).list_history_message_ids("1") == []

    async def test_unauthorized_raises(self) -> None:
        service = make_service()
        history_request(service).execute.side_effect = make_http_error(401)
        with pytest.raises(AuthorizationError):
            await GmailClient(service).list_history_message_ids("1200")

    async def test_server_error_raises(self) -> None:
        service = make_service()
        history_request(service).execute.side_effect = make_http_error(500)
        with pytest.raises(GmailError) as exc_info:
            await GmailClient(service).list_history_message_ids("1200")
        assert not isinstance(exc_info.value, AuthorizationError)


# ── Recent window ──────────────────────────────────────────────────────────────


class TestListRecentMessageIds:
    async def test_query_and_result(self) -> None:
        service = make_service()
        messages_list_request(service).execute.return_value = {
            "messages": [{"id": "a"}, {"id": "b"}, {}]
        }
        ids = await GmailClient(service).list_recent_message_ids(days=7, max_results=25)

        assert ids == ["a", "b"]
        service.users.return_value.messages.return_value.list.assert_called_once_with(
            userId="me", labelIds=["INBOX"], maxResults=25, q="newer_than:7d"
        )

    async def test_refresh_error_is_authorization_error(self) -> None:
        service = make_service()
        messages_list_request(service).execute.side_effect = RefreshError("revoked")
        with pytest.raises(AuthorizationError):
            await GmailClient(service).list_recent_message_ids()


# ── Message metadata ───────────────────────────────────────────────────────────


class TestGetMessageSummary:
    async def test_fetches_metadata_only(self) -> None:
        service = make_service()
        messages_get_request(service).execute.return_value = metadata_response()
        summary = await GmailClient(service).get_message_summary("msg_1")

        service.users.return_value.messages.return_value.get.assert_called_once_with(
            userId="me", id="msg_1", format="metadata", metadataHeaders=METADATA_HEADERS
        )
        assert summary is not None
        assert summary.id == "msg_1"
        assert summary.thread_id == "thread_1"
        assert summary.sender_email == "jane@example.com"
        assert summary.sender_domain == "example.com"
        assert summary.history_id == "1205"
        assert summary.received_at == datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    async def test_deleted_message_returns_none(self) -> None:
        service = make_service()
        messages_get_request(service).execute.side_effect = make_http_error(404)
        assert await GmailClient(service).get_message_summary("gone") is None

    async def test_server_error_raises(self) -> None:
        service = make_service()
        messages_get_request(service).execute.side_effect = make_http_error(500)
        with pytest.raises(GmailError, match="messages.get failed with HTTP 500"):
            await GmailClient(service).get_message_summary("msg_1")

    async def test_unauthorized_raises(self) -> None:
        service = make_service()
        messages_get_request(service).execute.side_effect = make_http_error(401)
        with pytest.raises(AuthorizationError):
            await GmailClient(service).get_message_summary("msg_1")


class TestToSummary:
    def test_missing_subject_defaults(self) -> None:
        summary = GmailClient._to_summary(metadata_response(subject=None))
        assert summary is not None
        assert summary.subject == "(no subject)"

    def test_missing_thread_id_is_skipped(self) -> None:
        data = metadata_response()
        del data["threadId"]
        assert GmailClient._to_summary(data) is None

    def test_missing_history_id(self) -> None:
        summary = GmailClient._to_summary(metadata_response(history_id=None))
        assert summary is not None
        assert summary.history_id is None

    def test_numeric_history_id_becomes_string(self) -> None:
        data = metadata_response()
        data["historyId"] = 1205
        summary = GmailClient._to_summary(data)
        assert summary is not None
        assert summary.history_id == "1205"


# ── Credentials ────────────────────────────────────────────────────────────────


class TestLoadCredentials:
    def test_missing_token_file(self, tmp_path: Path) -> None:
        with pytest.raises(AuthorizationError, match="radar auth"):
            load_credentials(tmp_path / "token.json")

    def test_valid_token_returned_as_is(self, tmp_path: Path) -> None:
        token = tmp_path / "token.json"
        token.write_text("{}")
        creds = MagicMock(valid=True)
        with patch(
            "radar.mail.gmail_client.Credentials.from_authorized_user_file",
            return_value=creds,
        ):
            assert load_credentials(token) is creds
        creds.refresh.assert_not_called()

    def test_expired_without_refresh_token(self, tmp_path: Path) -> None:
        token = tmp_path / "token.json"
        token.write_text("{}")
        creds = MagicMock(valid=False, expired=True, refresh_token=None)
        with patch(
            "radar.mail.gmail_client.Credentials.from_authorized_user_file",
            return_value=creds,
        ):
            with pytest.raises(AuthorizationError):
                load_credentials(token)

    def test_refreshed_token_is_saved(self, tmp_path: Path) -> None:
        token = tmp_path / "token.json"
        token.write_text("{}")
        creds = MagicMock(valid=False, expired=True, refresh_token="r")
        creds.to_json.return_value = '{"token": "new"}'
        with patch(
            "radar.mail.gmail_client.Credentials.from_authorized_user_file",
            return_value=creds,
        ), patch("radar.mail.gmail_client.Request"):
            load_credentials(token)

        creds.refresh.assert_called_once()
        assert token.read_text() == '{"token": "new"}'

    def test_rejected_refresh(self, tmp_path: Path) -> None:
        token = tmp_path / "token.json"
        token.write_text("{}")
        creds = MagicMock(valid=False, expired=True, refresh_token="r")
        creds.refresh.side_effect = RefreshError("invalid_grant")
        with patch(
            "radar.mail.gmail_client.Credentials.from_authorized_user_file",
            return_value=creds,
        ), patch("radar.mail.gmail_client.Request"):
            with pytest.raises(AuthorizationError):
                load_credentials(token)


class TestBuildGmailClient:
    def test_builds_v1_service(self, tmp_path: Path) -> None:
        creds = MagicMock()
        with patch("radar.mail.gmail_client.load_credentials", return_value=creds), \
             patch("radar.mail.gmail_client.build") as mock_build:
            client = build_gmail_client(tmp_path / "token.json")

        mock_build.assert_called_once_with("gmail", "v1", credentials=creds, cache_discovery=False)
        assert isinstance(client, GmailClient)
