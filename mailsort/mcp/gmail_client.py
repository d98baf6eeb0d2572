"""Gmail MCP client — wraps workspace-mcp Gmail tools behind a typed async API."""

import asyncio
import json
import logging
import os
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.types import TextContent

from mailsort.errors import MailsortError
from mailsort.mcp.types import MessagePage, RawEmail

logger = logging.getLogger(__name__)

#: Gmail's search page limit as exposed by workspace-mcp.
MAX_PAGE_SIZE = 50

# JSON-decoded value from an MCP tool response
_JsonValue = dict[str, Any] | list[Any] | str | None


class MCPError(MailsortError):
    """Raised when a workspace-mcp tool call returns an error."""


class GmailClient:
    """Thin async wrapper around the workspace-mcp Gmail tools.

    Holds a single long-lived MCP session for the whole bulk run.  Use the
    `gmail_client()` context manager to construct and tear down correctly.

    Label IDs on fetched messages are translated to label names through the
    label cache, so callers only ever see names in ``RawEmail.labels``.
    """

    def __init__(
        self,
        session: ClientSession,
        user_email: str,
        *,
        label_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._session = session
        self._user_email = user_email
        self._label_retries = max(1, label_retries)
        self._retry_delay = retry_delay
        self._label_cache: dict[str, str] = {}  # label name → label ID

    # ── Public API ─────────────────────────────────────────────────────────────

    async def fetch_page(
        self, query: str, page_token: str | None = None, max_results: int = MAX_PAGE_SIZE
    ) -> MessagePage:
        """Return one page of messages matching ``query`` with full content.

        Makes two MCP calls: a lightweight search, then a batch content fetch.
        """
        args: dict[str, Any] = {
            "query": query,
            "page_size": max(1, min(max_results, MAX_PAGE_SIZE)),
            "user_google_email": self._user_email,
        }
        if page_token:
            args["page_token"] = page_token
        raw = await self._call("search_gmail_messages", args)
        ids = self._parse_search_ids(raw)
        next_token = self._parse_next_page_token(raw)
        if not ids:
            return MessagePage(messages=[], next_page_token=next_token)

        content = await self._call(
            "get_gmail_messages_content_batch",
            {"message_ids": ids, "user_google_email": self._user_email},
        )
        emails = [self._with_label_names(e) for e in self._parse_batch_emails(content)]
        logger.debug("Fetched %d message(s); next page token %r", len(emails), next_token)
        return MessagePage(messages=emails, next_page_token=next_token)

    async def get_email(self, email_id: str) -> RawEmail:
        """Return a single email with full body."""
        raw = await self._call(
            "get_gmail_message_content",
            {"message_id": email_id, "user_google_email": self._user_email},
        )
        if isinstance(raw, str):
            emails = self._parse_batch_emails(raw)
            if emails:
                return self._with_label_names(emails[0])
            raise MCPError(f"Could not parse message {email_id} from response")
        if isinstance(raw, dict):
            return self._with_label_names(self._parse_email_dict(raw))
        raise MCPError(f"Unexpected response type for message {email_id}: {type(raw)}")

    async def list_labels(self) -> dict[str, str]:
        """Return a fresh label name → ID mapping from the live Gmail label list."""
        await self._refresh_label_cache()
        return dict(self._label_cache)

    async def create_label(self, label_name: str) -> str:
        """Create a Gmail label and return its ID.

        If the label already exists (found in cache), returns the cached ID
        without making an MCP call.
        """
        cached = self._label_cache.get(label_name)
        if cached:
            return cached

        await self._call("manage_gmail_label", {"name": label_name, "action": "create",
                                                "user_google_email": self._user_email})
        await self._refresh_label_cache()

        label_id = self._label_cache.get(label_name)
        if label_id is None:
            raise MCPError(
                f"Label {label_name!r} was created but is missing from Gmail label list"
            )
        logger.info("Created Gmail label: %s (id=%s)", label_name, label_id)
        return label_id

    async def add_label(self, message_id: str, label_id: str) -> None:
        """Add a label (by ID) to a message.  Raises MCPError on failure."""
        await self._call(
            "modify_gmail_message_labels",
            {"message_id": message_id, "add_label_ids": [label_id],
             "user_google_email": self._user_email},
        )
        logger.debug("Applied label id=%s to message %s", label_id, message_id)

    async def apply_label_with_retry(self, message_id: str, label_id: str) -> bool:
        """Add a label, retrying MCP failures with linear backoff.

        Returns False once every attempt has failed rather than raising, so a
        single stubborn message never stops a bulk run.
        """
        for attempt in range(1, self._label_retries + 1):
            try:
                await self.add_label(message_id, label_id)
                return True
            except MCPError as exc:
                if attempt < self._label_retries:
                    delay = self._retry_delay * attempt
                    logger.warning(
                        "Applying label %s to %s failed (attempt %d/%d) — retrying in %.1fs: %s",
                        label_id,
                        message_id,
                        attempt,
                        self._label_retries,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "Applying label %s to %s failed after %d attempt(s): %s",
                        label_id,
                        message_id,
                        attempt,
                        exc,
                    )
        return False

    async def verify_label_applied(self, message_id: str, label_id: str) -> bool:
        """Re-read the message and check the label is present (by ID or name)."""
        email = await self.get_email(message_id)
        names = {name for name, lid in self._label_cache.items() if lid == label_id}
        return label_id in email.labels or bool(names.intersection(email.labels))

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _refresh_label_cache(self) -> None:
        """Rebuild the name → ID cache from the live Gmail label list."""
        raw = await self._call(
            "list_gmail_labels", {"user_google_email": self._user_email}
        )
        if isinstance(raw, list):
            # Legacy JSON list response
            self._label_cache = {
                str(lbl["name"]): str(lbl["id"])
                for lbl in raw
                if isinstance(lbl, dict) and "name" in lbl and "id" in lbl
            }
        elif isinstance(raw, str):
            # Current workspace-mcp returns formatted text:
            #   • LabelName (ID: label_id)
            self._label_cache = {}
            for match in re.finditer(r"•\s+(.+?)\s+\(ID:\s+(.+?)\)", raw):
                self._label_cache[match.group(1)] = match.group(2)
        else:
            raise MCPError(f"Unexpected response from list_gmail_labels: {raw!r}")
        logger.debug("Label cache refreshed: %d labels", len(self._label_cache))

    def _with_label_names(self, email: RawEmail) -> RawEmail:
        """Translate label IDs on a message to names where the cache knows them."""
        if not email.labels or not self._label_cache:
            return email
        by_id = {lid: name for name, lid in self._label_cache.items()}
        names = [by_id.get(label, label) for label in email.labels]
        return RawEmail(
            id=email.id,
            thread_id=email.thread_id,
            sender=email.sender,
            subject=email.subject,
            snippet=email.snippet,
            labels=names,
            body=email.body,
            recipient=email.recipient,
            date=email.date,
            web_link=email.web_link,
        )

    async def _call(self, tool_name: str, arguments: dict[str, Any]) -> _JsonValue:
        """Call a workspace-mcp tool and return the parsed JSON result.

        Raises MCPError if the tool returns an error.  Plain-string responses
        (e.g. "Label added") are returned as-is.
        """
        logger.debug("MCP → %s %s", tool_name, arguments)
        result = await self._session.call_tool(tool_name, arguments)

        if result.isError:
            raise MCPError(f"Tool {tool_name!r} returned error: {result.content}")

        if not result.content:
            return None

        # Extract text from the first TextContent block
        text: str | None = None
        for item in result.content:
            if isinstance(item, TextContent):
                text = item.text
                break

        if text is None:
            return None

        try:
            parsed: _JsonValue = json.loads(text)
            return parsed
        except json.JSONDecodeError:
            return text  # some tools return plain confirmation strings

    @staticmethod
    def _parse_search_ids(raw: _JsonValue) -> list[str]:
        """Extract message IDs from a search response (text, JSON list or dict)."""
        if isinstance(raw, dict):
            raw = raw.get("messages", [])
        if isinstance(raw, list):
            return [
                str(m.get("message_id", m.get("id", "")))
                for m in raw
                if isinstance(m, dict) and (m.get("message_id") or m.get("id"))
            ]
        if isinstance(raw, str):
            return re.findall(r"Message ID:\s*(\S+)", raw)
        return []

    @staticmethod
    def _parse_next_page_token(raw: _JsonValue) -> str | None:
        """Extract the continuation token, if the search has more pages."""
        if isinstance(raw, dict):
            token = raw.get("next_page_token") or raw.get("nextPageToken")
            return str(token) if token else None
        if isinstance(raw, str):
            match = re.search(r"Next page token:\s*(\S+)", raw, re.IGNORECASE)
            return match.group(1) if match else None
        return None

    @staticmethod
    def _parse_batch_emails(raw: _JsonValue) -> list[RawEmail]:
        """Parse one or more emails from a batch/single content response.

        workspace-mcp returns text blocks like::

            Message ID: abc123
            Subject: Hello
            From: alice@example.com
            Date: Mon, 1 Jan 2026 12:00:00 +0000
            Labels: INBOX, Label_42

            Body text follows after a blank line...
        """
        if isinstance(raw, list):
            return [
                GmailClient._parse_email_dict(m)
                for m in raw
                if isinstance(m, dict)
            ]
        if not isinstance(raw, str):
            return []

        emails: list[RawEmail] = []
        # Split into per-message blocks on "Message ID:" boundaries
        blocks = re.split(r"(?=^Message ID:)", raw, flags=re.MULTILINE)
        for block in blocks:
            block = block.strip()
            if not block.startswith("Message ID:"):
                continue

            def _header(name: str) -> str:
                m = re.search(rf"^{name}:\s*(.+)$", block, re.MULTILINE)
                return m.group(1).strip() if m else ""

            # Body: everything after the header block (first blank line)
            body = ""
            header_end = re.search(r"\n\s*\n", block)
            if header_end:
                body = block[header_end.end():].strip()

            to_raw = _header("To")
            labels_raw = _header("Labels")
            emails.append(RawEmail(
                id=_header("Message ID"),
                thread_id=_header("Thread ID"),
                sender=_header("From"),
                recipient=re.sub(r"^<|>$", "", to_raw) if to_raw else None,
                subject=_header("Subject") or "(no subject)",
                snippet=body[:200] if body else "",
                body=body or None,
                labels=[lbl.strip() for lbl in labels_raw.split(",") if lbl.strip()],
                date=_header("Date") or None,
                web_link=_header("Web Link") or None,
            ))
        return emails

    @staticmethod
    def _parse_email_dict(data: dict[str, Any]) -> RawEmail:
        """Map a raw MCP message dict to a RawEmail dataclass (legacy JSON)."""
        body_raw = data.get("body", "")
        recipient_raw = data.get("to", "")
        date_raw = data.get("date", "")
        link_raw = data.get("web_link", "")
        labels_raw = data.get("labels", data.get("label_ids", []))

        return RawEmail(
            id=str(data.get("message_id", data.get("id", ""))),
            thread_id=str(data.get("thread_id", "")),
            sender=str(data.get("from", "")),
            recipient=str(recipient_raw) if recipient_raw else None,
            subject=str(data.get("subject", "(no subject)")),
            snippet=str(data.get("snippet", "")),
            body=str(body_raw) if body_raw else None,
            labels=[str(label) for label in labels_raw or []],
            date=str(date_raw) if date_raw else None,
            web_link=str(link_raw) if link_raw else None,
        )


_MCP_CONNECT_RETRIES = 5
_MCP_RETRY_DELAY_SECONDS = 3


@asynccontextmanager
async def gmail_client(
    *,
    user_email: str | None = None,
    server_command: str | None = None,
    label_retries: int = 3,
    retry_delay: float = 1.0,
) -> AsyncIterator[GmailClient]:
    """Async context manager that yields a connected, ready-to-use GmailClient.

    Spawns `workspace-mcp` as a subprocess via the MCP stdio transport,
    initialises the session, warms the label cache, and tears everything
    down cleanly on exit.  OAuth is handled by workspace-mcp itself.

    Retries up to ``_MCP_CONNECT_RETRIES`` times on startup failure because
    ``workspace-mcp`` binds a port for its internal OAuth server and will
    crash if a previous instance hasn't fully released it yet.

    Args:
        user_email: Google account email. Falls back to USER_GOOGLE_EMAIL env var.
        server_command: Command used to launch the MCP server.
                        Defaults to GMAIL_MCP_SERVER_PATH env var (or "uvx").
        label_retries: attempts per label application.
        retry_delay: base delay in seconds between label attempts.

    Example::

        async with gmail_client() as client:
            page = await client.fetch_page("in:inbox", None, 50)
    """
    email = user_email or os.environ.get("USER_GOOGLE_EMAIL", "")
    if not email:
        raise ValueError(
            "user_email must be provided or USER_GOOGLE_EMAIL env var must be set"
        )

    cmd = server_command or os.environ.get("GMAIL_MCP_SERVER_PATH", "uvx")
    # Detect uvx by name or full path (e.g. C:\...\uvx.exe) and pass workspace-mcp args
    _cmd_basename = os.path.basename(cmd).lower().replace(".exe", "")
    args = ["workspace-mcp", "--tools", "gmail"] if _cmd_basename == "uvx" else []

    mcp_port = os.environ.get("WORKSPACE_MCP_PORT", "18741")

    server_params = StdioServerParameters(
        command=cmd,
        args=args,
        env={
            **os.environ,
            "GOOGLE_OAUTH_CLIENT_ID": os.environ.get("GOOGLE_OAUTH_CLIENT_ID", ""),
            "GOOGLE_OAUTH_CLIENT_SECRET": os.environ.get("GOOGLE_OAUTH_CLIENT_SECRET", ""),
            "USER_GOOGLE_EMAIL": email,
            "MCP_SINGLE_USER_MODE": "1",
            "WORKSPACE_MCP_PORT": mcp_port,
            "PYTHONUTF8": "1",
        },
    )

    last_err: BaseException | None = None
    connected = False
    for attempt in range(1, _MCP_CONNECT_RETRIES + 1):
        try:
            async with stdio_client(server_params) as (read, write):
                async with ClientSession(read, write) as session:
                    await session.initialize()
                    client = GmailClient(
                        session, email, label_retries=label_retries, retry_delay=retry_delay
                    )
                    await client._refresh_label_cache()
                    logger.info("Gmail MCP client connected (%s)", email)
                    connected = True
                    yield client
                    return
        except Exception as exc:
            # Errors raised by the caller inside the context are not connect failures.
            if connected:
                raise
            last_err = exc
            if attempt < _MCP_CONNECT_RETRIES:
                logger.warning(
                    "MCP server connection failed (attempt %d/%d) — retrying in %ds",
                    attempt,
                    _MCP_CONNECT_RETRIES,
                    _MCP_RETRY_DELAY_SECONDS,
                )
                await asyncio.sleep(_MCP_RETRY_DELAY_SECONDS)

    raise MCPError(f"Failed to connect after {_MCP_CONNECT_RETRIES} attempts") from last_err
