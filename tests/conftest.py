"""Shared pytest fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mailsort.mcp.types import MessagePage


@pytest.fixture
def mailbox() -> MagicMock:
    """Mailbox double: every label exists once created, every apply succeeds."""
    m = MagicMock()
    m.fetch_page = AsyncMock(return_value=MessagePage(messages=[], next_page_token=None))
    m.list_labels = AsyncMock(return_value={})
    m.create_label = AsyncMock(side_effect=lambda name: f"id:{name}")
    m.apply_label_with_retry = AsyncMock(return_value=True)
    m.verify_label_applied = AsyncMock(return_value=True)
    return m


@pytest.fixture
def sample_raw_email() -> dict[str, object]:
    """A caller-supplied message in its camelCase wire form."""
    return {
        "id": "msg_001",
        "threadId": "thread_001",
        "from": "alice@example.com",
        "subject": "Q2 budget review — action required",
        "body": "Hi, please review the attached budget figures and respond by Friday.",
        "snippet": "Hi, please review the attached budget figures...",
        "timestamp": "2026-02-27T09:00:00Z",
        "labels": ["INBOX"],
    }
