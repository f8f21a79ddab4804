"""News mention counts per keyword."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from trendwatch.ingest.models import Source, to_int
from trendwatch.logic.ranking import SignalRecord, normalize_title
from trendwatch.utils.dates import isoformat, now_utc
from trendwatch.utils.http import FetchClient

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://newsapi.org/v2/everything"
API_KEY_HEADER = "X-Api-Key"


@dataclass(slots=True)
class NewsMentions:
    keyword: str
    count: int
    fetched_at: str
    source: str

    def to_signal(self) -> SignalRecord:
        return SignalRecord(
            source=self.source,
            title=self.keyword,
            identity=normalize_title(self.keyword),
            mentions=self.count,
            observed_at=self.fetched_at,
        )


def mention_count(payload: Any) -> int:
    """``totalResults`` when present, else the number of returned articles."""
    if not isinstance(payload, dict):
        return 0
    total = to_int(payload.get("totalResults"))
    if total is not None:
        return max(0, total)
    articles = payload.get("articles")
    return len(articles) if isinstance(articles, list) else 0


class NewsClient:
    def __init__(self, client: FetchClient, source: Source, *, language: str = "en", page_size: int = 20) -> None:
        self.client = client
        self.source = source
        self.language = language
        self.page_size = page_size

    @property
    def endpoint(self) -> str:
        return self.source.endpoint or self.source.url or DEFAULT_ENDPOINT

    async def count_mentions(self, keyword: str) -> NewsMentions:
        logger.info("Counting news mentions for %r", keyword)
        payload = await self.client.fetch_json(
            self.endpoint,
            params={"q": keyword, "language": self.language, "pageSize": self.page_size},
            headers={API_KEY_HEADER: self.source.token or ""},
        )
        return NewsMentions(
            keyword=keyword,
            count=mention_count(payload),
            fetched_at=isoformat(now_utc()),
            source=self.source.id,
        )
