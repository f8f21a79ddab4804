"""Per-host robots.txt policy cache."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from trendwatch.utils.http import FetchClient, FetchError

logger = logging.getLogger(__name__)

ALLOW_ALL = ["User-agent: *", "Allow: /"]


class RobotsCache:
    """Fetches robots.txt once per host; unreachable files allow everything."""

    def __init__(self, client: FetchClient, *, user_agent: str | None = None) -> None:
        self._client = client
        self.user_agent = user_agent or client.user_agent
        self._parsers: dict[str, RobotFileParser] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def allowed(self, url: str) -> bool:
        parsed = urlparse(url)
        base = f"{parsed.scheme}://{parsed.netloc}"
        parser = self._parsers.get(base)
        if parser is None:
            async with self._locks[base]:
                parser = self._parsers.get(base)
                if parser is None:
                    parser = await self._load(base)
                    self._parsers[base] = parser
        return parser.can_fetch(self.user_agent, url)

    async def _load(self, base: str) -> RobotFileParser:
        parser = RobotFileParser()
        try:
            result = await self._client.fetch(f"{base}/robots.txt", headers={"Accept": "text/plain"})
        except FetchError as exc:
            logger.info("No robots.txt for %s (%s); allowing", base, exc)
            parser.parse(ALLOW_ALL)
        else:
            parser.parse(result.body.splitlines())
        return parser
