"""Retrieve and rank last year's posts for today."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Iterable, List, Optional, Sequence

from rewind.core.atproto.agent import PdsAgent, XrpcError
from rewind.core.atproto.tid import tid_for_datetime
from rewind.domains.memories.schemas import MemoryView, Profile, RemoteRecord, SelectedMemory

logger = logging.getLogger(__name__)

POST_COLLECTION = "app.bsky.feed.post"
DEFAULT_PAGE_SIZE = 10
YEARS_AGO = 1


class MemoryServiceError(Exception):
    """Base exception for memory retrieval."""

    pass


class RetrievalError(MemoryServiceError):
    """Raised when the repository listing call fails or times out."""

    pass


@dataclass(frozen=True)
class TimeWindow:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime

    def _bounds(self, moment: datetime) -> tuple[datetime, datetime]:
        if moment.tzinfo is not None and self.start.tzinfo is None:
            # Naive windows are read as UTC.
            return self.start.replace(tzinfo=timezone.utc), self.end.replace(tzinfo=timezone.utc)
        return self.start, self.end

    def contains(self, moment: datetime) -> bool:
        start, end = self._bounds(moment)
        return start <= moment < end

    def is_past(self, moment: datetime) -> bool:
        return moment >= self._bounds(moment)[1]


def window_for(now: datetime, tz: Optional[tzinfo] = None, years: int = YEARS_AGO) -> TimeWindow:
    """
    Same calendar day ``years`` years before ``now``, midnight to midnight.

    Aware ``now`` values are first converted to ``tz`` (the repository clock).
    Feb 29 maps to Feb 28 in non-leap years.
    """
    if now.tzinfo is not None and tz is not None:
        local = now.astimezone(tz)
    elif now.tzinfo is None and tz is not None:
        local = now.replace(tzinfo=tz)
    else:
        local = now

    year = local.year - years
    day = local.day
    if local.month == 2 and day == 29:
        try:
            datetime(year, 2, 29)
        except ValueError:
            day = 28
    start = datetime(year, local.month, day, tzinfo=local.tzinfo)
    return TimeWindow(start=start, end=start + timedelta(days=1))


def cursor_for(window: TimeWindow) -> str:
    """Listing cursor anchored at the window start; keys after it are newer."""
    start = window.start
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return tid_for_datetime(start)


def fetch(
    agent: PdsAgent,
    window: TimeWindow,
    *,
    collection: str = POST_COLLECTION,
    limit: int = DEFAULT_PAGE_SIZE,
    max_pages: int = 1,
    timeout: Optional[float] = None,
) -> List[RemoteRecord]:
    """
    List posts oldest-first starting from the window's anchor cursor.

    One page is requested by default. ``max_pages`` above 1 follows the
    returned cursor until a page runs past the end of the window.

    Raises:
        RetrievalError: If any listing call fails
    """
    cursor: Optional[str] = cursor_for(window)
    records: List[RemoteRecord] = []

    for _ in range(max(1, max_pages)):
        try:
            data = agent.list_records(
                collection,
                limit=limit,
                cursor=cursor,
                reverse=True,
                timeout=timeout,
            )
        except XrpcError as e:
            logger.warning("listRecords failed for %s: %s", agent.identity, e)
            raise RetrievalError(f"Failed to list records: {e}") from e

        items = data.get("records")
        if not isinstance(items, list) or not items:
            break
        page = [record for record in map(RemoteRecord.from_listing, items) if record]
        records.extend(page)

        cursor = data.get("cursor")
        if not isinstance(cursor, str) or not cursor:
            break
        if page and window.is_past(page[-1].created_at):
            break

    return records


def filter_to_window(records: Iterable[RemoteRecord], window: TimeWindow) -> List[RemoteRecord]:
    return [record for record in records if window.contains(record.created_at)]


def select(candidates: Sequence[RemoteRecord], years_ago: int = YEARS_AGO) -> Optional[SelectedMemory]:
    """Most-liked candidate; ties go to the earliest post."""
    if not candidates:
        return None
    if len(candidates) == 1:
        return SelectedMemory(record=candidates[0], years_ago=years_ago)
    ranked = sorted(candidates, key=lambda record: (-record.engagement_score, record.created_at))
    return SelectedMemory(record=ranked[0], years_ago=years_ago)


def get_todays_memory(
    agent: PdsAgent,
    now: datetime,
    *,
    tz: Optional[tzinfo] = None,
    collection: str = POST_COLLECTION,
    limit: int = DEFAULT_PAGE_SIZE,
    max_pages: int = 1,
    timeout: Optional[float] = None,
) -> Optional[SelectedMemory]:
    """Window, fetch, filter and select. Retrieval failures mean no memory today."""
    window = window_for(now, tz)
    try:
        records = fetch(
            agent,
            window,
            collection=collection,
            limit=limit,
            max_pages=max_pages,
            timeout=timeout,
        )
    except RetrievalError:
        return None
    return select(filter_to_window(records, window))


def fetch_profile(agent: PdsAgent) -> Optional[Profile]:
    try:
        data = agent.get_profile()
    except XrpcError as e:
        logger.info("getProfile failed for %s: %s", agent.identity, e)
        return None
    return Profile.from_api(data)


def build_memory_view(agent: Optional[PdsAgent], now: datetime, **options) -> MemoryView:
    """Presentation payload for the home page; anonymous visitors get an empty view."""
    if agent is None:
        return MemoryView()
    memory = get_todays_memory(agent, now, **options)
    return MemoryView(selected_memory=memory, profile=fetch_profile(agent))
