"""Gmail REST client — wraps the Gmail v1 API behind a typed async interface."""

import asyncio
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from radar.mail.types import MessageSummary

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]

INBOX_LABEL = "INBOX"
METADATA_HEADERS = ["From", "Subject", "Date"]

_ANGLE_ADDRESS = re.compile(r"<([^>]+)>")


class GmailError(Exception):
    """Raised when a Gmail API call fails."""


class AuthorizationError(GmailError):
    """Credentials are missing, expired or revoked — the user must re-run `radar auth`."""


def _is_not_found(exc: GmailError) -> bool:
    return isinstance(exc.__cause__, HttpError) and exc.__cause__.resp.status == 404


# ── Credentials ────────────────────────────────────────────────────────────────


def load_credentials(token_path: str | Path) -> Credentials:
    """Load the saved OAuth token, refreshing it if it has expired.

    Raises:
        AuthorizationError: if there is no usable token on disk.
    """
    path = Path(token_path)
    if not path.exists():
        raise AuthorizationError(
            f"Google OAuth token missing at {path}. Run `radar auth` first."
        )
    try:
        creds = Credentials.from_authorized_user_file(str(path), SCOPES)
    except (ValueError, OSError) as exc:
        raise AuthorizationError(f"Unreadable OAuth token at {path}: {exc}") from exc

    if creds.valid:
        return creds
    if not (creds.expired and creds.refresh_token):
        raise AuthorizationError("OAuth token expired and has no refresh token.")

    try:
        creds.refresh(Request())
    except RefreshError as exc:
        raise AuthorizationError(f"OAuth token refresh rejected: {exc}") from exc

    path.write_text(creds.to_json())
    logger.info("Refreshed Google OAuth token")
    return creds


def run_oauth_flow(credentials_path: str | Path, token_path: str | Path) -> Path:
    """Run the installed-app OAuth flow in a browser and save the token."""
    flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
    creds = flow.run_local_server(port=0)
    path = Path(token_path)
    path.write_text(creds.to_json())
    return path


# ── Header helpers ─────────────────────────────────────────────────────────────


def extract_email_address(value: str) -> str:
    """``"Jane <Jane@X.com>"`` → ``"jane@x.com"``; bare addresses are just lower-cased."""
    match = _ANGLE_ADDRESS.search(value)
    return (match.group(1) if match else value).strip().lower()


def extract_domain(address: str) -> str | None:
    at = address.rfind("@")
    if at == -1:
        return None
    return address[at + 1:].lower()


def _header(headers: list[dict[str, str]], name: str) -> str | None:
    for h in headers:
        if h.get("name", "").lower() == name.lower():
            return h.get("value")
    return None


# ── Client ─────────────────────────────────────────────────────────────────────


class GmailClient:
    """Thin async wrapper around the read-only Gmail calls the poller needs.

    The discovery client is synchronous, so each request runs in a worker
    thread via ``asyncio.to_thread``; calls are still issued one at a time.
    """

    def __init__(self, service: Any) -> None:
        self._service = service

    # ── Public API ─────────────────────────────────────────────────────────────

    async def list_history_message_ids(self, start_history_id: str) -> list[str]:
        """Return ids of messages added to the inbox since ``start_history_id``.

        Follows pagination. An expired start id (HTTP 404) yields an empty
        list so the caller falls back to the recent-window scan.
        """
        ids: list[str] = []
        seen: set[str] = set()
        page_token: str | None = None
        while True:
            request = self._service.users().history().list(
                userId="me",
                startHistoryId=start_history_id,
                historyTypes=["messageAdded"],
                labelId=INBOX_LABEL,
                pageToken=page_token,
            )
            try:
                data = await self._execute(request, "history.list")
            except GmailError as exc:
                if _is_not_found(exc):
                    logger.warning(
                        "History id %s is no longer available — falling back to window scan",
                        start_history_id,
                    )
                    return []
                raise

            for entry in data.get("history", []):
                for added in entry.get("messagesAdded", []):
                    msg_id = added.get("message", {}).get("id")
                    if msg_id and msg_id not in seen:
                        seen.add(msg_id)
                        ids.append(msg_id)

            page_token = data.get("nextPageToken")
            if not page_token:
                return ids

    async def list_recent_message_ids(self, days: int = 7, max_results: int = 25) -> list[str]:
        """Return up to ``max_results`` inbox message ids from the last ``days`` days."""
        request = self._service.users().messages().list(
            userId="me",
            labelIds=[INBOX_LABEL],
            maxResults=max_results,
            q=f"newer_than:{days}d",
        )
        data = await self._execute(request, "messages.list")
        return [m["id"] for m in data.get("messages", []) if m.get("id")]

    async def get_message_summary(self, message_id: str) -> MessageSummary | None:
        """Fetch headers + snippet only (``format=metadata``) for one message.

        Returns None when the message no longer exists (HTTP 404), e.g. it was
        deleted between the history listing and this fetch.
        """
        request = self._service.users().messages().get(
            userId="me",
            id=message_id,
            format="metadata",
            metadataHeaders=METADATA_HEADERS,
        )
        try:
            data = await self._execute(request, "messages.get")
        except GmailError as exc:
            if _is_not_found(exc):
                logger.warning("Message %s no longer exists — skipping", message_id)
                return None
            raise
        return self._to_summary(data)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _execute(self, request: Any, name: str) -> dict[str, Any]:
        """Run a prepared request off the event loop and translate failures."""
        logger.debug("Gmail → %s", name)
        try:
            result = await asyncio.to_thread(request.execute)
        except RefreshError as exc:
            raise AuthorizationError(f"{name}: credentials rejected: {exc}") from exc
        except HttpError as exc:
            if exc.resp.status == 401:
                raise AuthorizationError(f"{name}: unauthorized") from exc
            raise GmailError(f"{name} failed with HTTP {exc.resp.status}") from exc
        return result or {}

    @staticmethod
    def _to_summary(data: dict[str, Any]) -> MessageSummary | None:
        """Map a metadata response to a MessageSummary; None if ids are missing."""
        msg_id = data.get("id")
        thread_id = data.get("threadId")
        if not msg_id or not thread_id:
            return None

        headers = data.get("payload", {}).get("headers", [])
        subject = _header(headers, "Subject") or "(no subject)"
        sender = _header(headers, "From") or "unknown"
        sender_email = extract_email_address(sender)

        internal_date = data.get("internalDate")
        received_at = (
            datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
            if internal_date
            else datetime.now(timezone.utc)
        )

        history_id = data.get("historyId")
        return MessageSummary(
            id=str(msg_id),
            thread_id=str(thread_id),
            subject=subject,
            snippet=data.get("snippet", ""),
            sender=sender,
            sender_email=sender_email,
            sender_domain=extract_domain(sender_email),
            received_at=received_at,
            history_id=str(history_id) if history_id else None,
        )


def build_gmail_client(token_path: str | Path) -> GmailClient:
    """Load credentials and build a ready-to-use GmailClient.

    Raises:
        AuthorizationError: if credentials are missing or cannot be refreshed.
    """
    creds = load_credentials(token_path)
    service = build("gmail", "v1", credentials=creds, cache_discovery=False)
    return GmailClient(service)
