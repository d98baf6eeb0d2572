"""Pagination — fetch one page of messages or pass a caller's list through."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mailsort.mcp.gmail_client import MAX_PAGE_SIZE
from mailsort.mcp.types import Mailbox, MessagePage, RawEmail

logger = logging.getLogger(__name__)


class PaginationController:
    """Threads a continuation token through successive mailbox searches."""

    def __init__(self, mailbox: Mailbox, page_limit: int = MAX_PAGE_SIZE) -> None:
        self._mailbox = mailbox
        self._page_limit = page_limit

    async def fetch_page(
        self, query: str, page_token: str | None, max_results: int
    ) -> MessagePage:
        """Fetch one page; ``max_results`` is clamped to the provider limit."""
        size = max(1, min(max_results, self._page_limit))
        logger.info("Fetching up to %d message(s) for query %r", size, query)
        page = await self._mailbox.fetch_page(query, page_token, size)
        return MessagePage(
            messages=list(page.messages),
            next_page_token=page.next_page_token or None,
        )

    async def resolve(
        self,
        query: str,
        page_token: str | None,
        max_results: int,
        prefetched: Sequence[RawEmail] | None = None,
    ) -> MessagePage:
        """Use the caller's pre-built list if given, otherwise fetch a page."""
        if prefetched is not None:
            logger.info("Processing %d pre-supplied message(s)", len(prefetched))
            return MessagePage(messages=list(prefetched), next_page_token=None)
        return await self.fetch_page(query, page_token, max_results)
