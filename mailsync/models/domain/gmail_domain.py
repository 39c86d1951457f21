# models/domain/gmail_domain.py
"""
Gmail Domain Models
Parsed views of Gmail API payloads used by the sync pipeline.
"""

import base64
import re
from datetime import UTC, datetime, timedelta
from email.utils import getaddresses, parseaddr, parsedate_to_datetime

from pydantic import BaseModel

_EMAIL_PATTERN = re.compile(r"^[^@\s<>\"]+@[^@\s<>\"]+\.[^@\s<>\"]+$")
_HTML_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")


class EmailAddress(BaseModel):
    """A normalized mailbox address."""

    email: str
    name: str = ""

    @property
    def domain(self) -> str:
        return self.email.rsplit("@", 1)[1]

    @property
    def local_part(self) -> str:
        return self.email.rsplit("@", 1)[0]


def parse_email_address(value: str) -> EmailAddress | None:
    """Parse 'John Doe <john@example.com>' or a bare address; None if invalid."""
    if not value:
        return None
    name, address = parseaddr(value)
    address = address.strip().lower()
    if not _EMAIL_PATTERN.match(address):
        return None
    return EmailAddress(email=address, name=name.strip().strip('"'))


def parse_email_addresses(value: str) -> list[EmailAddress]:
    """Parse a To/Cc header, dropping entries without a valid address."""
    if not value:
        return []
    addresses = []
    for name, address in getaddresses([value]):
        address = address.strip().lower()
        if _EMAIL_PATTERN.match(address):
            addresses.append(EmailAddress(email=address, name=name.strip().strip('"')))
    return addresses


class MessageRef(BaseModel):
    """Message reference returned by messages.list."""

    id: str
    thread_id: str | None = None


class MessagePage(BaseModel):
    """One page of messages.list."""

    refs: list[MessageRef]
    next_page_token: str | None = None
    result_size_estimate: int = 0


def build_sync_query(days_since: int, now: datetime | None = None) -> str:
    """
    Build the Gmail search query for a sync window.

    days_since=0 means no date floor; the run is then bounded by max_emails only.
    """
    terms = ["-in:chats", "-in:drafts"]
    if days_since > 0:
        floor = (now or datetime.now(UTC)) - timedelta(days=days_since)
        terms.insert(0, f"after:{int(floor.timestamp())}")
    return " ".join(terms)


class GmailMessage:
    """Domain model for a Gmail message fetched with format=full."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.internal_date = data.get("internalDate")
        self.payload = data.get("payload", {}) or {}
        self.raw_data = data

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        """Parse email headers from payload."""
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers if "name" in h}

        self.subject = self.headers.get("subject") or "(No Subject)"
        self.from_header = self.headers.get("from", "")
        self.sender = parse_email_address(self.from_header)
        self.recipients = parse_email_addresses(self.headers.get("to", ""))
        self.cc = parse_email_addresses(self.headers.get("cc", ""))
        self.date_header = self.headers.get("date", "")

    def _parse_body(self):
        """Parse plain and HTML body content from payload."""
        self.body_text = ""
        self.body_html = ""

        if not self.payload:
            return

        if self.payload.get("body", {}).get("data"):
            decoded = self._decode_base64_data(self.payload["body"]["data"])
            if self.payload.get("mimeType") == "text/html":
                self.body_html = decoded
            else:
                self.body_text = decoded
        elif self.payload.get("parts"):
            self._parse_multipart_body(self.payload["parts"])

    def _parse_multipart_body(self, parts: list):
        """Walk multipart parts; the first text/plain and text/html win."""
        for part in parts:
            mime_type = part.get("mimeType", "")
            body_data = part.get("body", {}).get("data")

            if mime_type == "text/plain" and body_data and not self.body_text:
                self.body_text = self._decode_base64_data(body_data)
            elif mime_type == "text/html" and body_data and not self.body_html:
                self.body_html = self._decode_base64_data(body_data)
            elif mime_type.startswith("multipart/"):
                self._parse_multipart_body(part.get("parts", []))

    def _decode_base64_data(self, data: str) -> str:
        """Decode base64 URL-safe encoded data."""
        try:
            decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
            return decoded_bytes.decode("utf-8", errors="ignore")
        except (ValueError, TypeError):
            return ""

    @property
    def body(self) -> str:
        """Readable body: plain text, else tag-stripped HTML, else the snippet."""
        if self.body_text:
            return self.body_text
        if self.body_html:
            stripped = _HTML_TAG_PATTERN.sub(" ", self.body_html)
            return _WHITESPACE_PATTERN.sub(" ", stripped).strip()
        return self.snippet or ""

    @property
    def sent_at(self) -> datetime:
        """Message timestamp from the Date header, falling back to internalDate."""
        if self.date_header:
            try:
                parsed = parsedate_to_datetime(self.date_header)
                if parsed.tzinfo is None:
                    parsed = parsed.replace(tzinfo=UTC)
                return parsed
            except (TypeError, ValueError, IndexError):
                pass
        if self.internal_date:
            try:
                return datetime.fromtimestamp(int(self.internal_date) / 1000, tz=UTC)
            except (TypeError, ValueError):
                pass
        return datetime.now(UTC)
