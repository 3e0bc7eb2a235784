"""Page-numbered retrieval of an ordered collection from the REST API."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from commitreel.engines.history.github_client import PageResponse
from commitreel.exceptions import HttpError

log = structlog.get_logger("commitreel.engine")

MAX_ITEMS = 5000
DEFAULT_PAGE_SIZE = 100
# GitHub answers 409 Conflict when listing commits of an empty repository.
EMPTY_RESOURCE_STATUS = 409


class PageSource(Protocol):
    async def get_page(self, path: str, params: dict[str, Any] | None = None) -> PageResponse: ...


@dataclass
class FetchResult:
    items: list[Any] = field(default_factory=list)
    pages: int = 0
    empty: bool = False  # the remote reported the resource as empty
    truncated: bool = False  # the safety cap cut the collection short
    stopped: bool = False  # the stop predicate matched

    def __len__(self) -> int:
        return len(self.items)


class PaginatedFetcher:
    """Concatenates ``page=1, 2, ...`` until the collection is exhausted.

    Stops when a page is short, when the source says there is no next page,
    when *stop_at* matches an item, or when *max_items* is reached.
    """

    def __init__(self, source: PageSource, *, max_items: int = MAX_ITEMS) -> None:
        self._source = source
        self._max_items = max_items

    async def fetch_all(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        stop_at: Callable[[Any], bool] | None = None,
    ) -> FetchResult:
        """Fetch every item of *path* in order.

        Raises ``HttpError``/``TransportError``; an empty-resource status on
        the first page yields ``FetchResult(empty=True)`` instead.
        """
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        result = FetchResult()
        page = 1
        while True:
            query = dict(params or {})
            query["per_page"] = page_size
            query["page"] = page
            try:
                response = await self._source.get_page(path, query)
            except HttpError as exc:
                if exc.status == EMPTY_RESOURCE_STATUS and page == 1:
                    log.info("pagination.empty_resource", path=path)
                    result.empty = True
                    return result
                raise
            result.pages += 1

            for item in response.items:
                if stop_at is not None and stop_at(item):
                    result.stopped = True
                    break
                if len(result.items) >= self._max_items:
                    result.truncated = True
                    break
                result.items.append(item)
            if result.stopped or result.truncated:
                break

            if len(response.items) < page_size or response.has_next is False:
                break
            if len(result.items) >= self._max_items:
                # a full page with more to come
                result.truncated = True
                break
            page += 1

        if result.truncated:
            log.warning("pagination.truncated", path=path, max_items=self._max_items)
        return result
