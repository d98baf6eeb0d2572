"""Data types and the mailbox capability surface used by the pipeline."""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class RawEmail:
    """A message as fetched from the mailbox, before classification.

    ``labels`` holds label *names* (the Gmail client translates label IDs).
    ``classification`` is only set on caller-supplied, pre-classified lists.
    """

    id: str
    thread_id: str
    sender: str
    subject: str
    snippet: str
    labels: list[str] = field(default_factory=list)
    body: str | None = None
    recipient: str | None = None
    date: str | None = None
    web_link: str | None = None
    classification: str | None = None


@dataclass(frozen=True)
class MessagePage:
    """One page of search results plus the token for the next page."""

    messages: list[RawEmail]
    next_page_token: str | None = None


@runtime_checkable
class Mailbox(Protocol):
    """What the pipeline needs from a mailbox provider.

    Implemented by GmailClient; tests substitute AsyncMock-backed fakes.
    """

    async def fetch_page(
        self, query: str, page_token: str | None, max_results: int
    ) -> MessagePage:
        ...

    async def list_labels(self) -> dict[str, str]:
        """Return label name → label ID for every label in the mailbox."""
        ...

    async def create_label(self, label_name: str) -> str:
        ...

    async def apply_label_with_retry(self, message_id: str, label_id: str) -> bool:
        ...

    async def verify_label_applied(self, message_id: str, label_id: str) -> bool:
        ...
