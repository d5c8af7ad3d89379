"""
Decoder for raw result records scraped from the results page.

Converts the extraction script payload into SearchResult values:
- records without a resolvable absolute URL or without a title/name are dropped
- results are deduplicated by URL (first occurrence wins)
- every result is tagged with the query that produced it

Only a payload that is not a JSON array raises DecodeError; malformed
individual records never do.
"""

from __future__ import annotations

import json
import re
from typing import Any
from urllib.parse import ParseResult, parse_qs, urlparse

from pydantic import BaseModel, ConfigDict, ValidationError

from compendium.search.models import SearchResult
from compendium.utils.errors import CompendiumError
from compendium.utils.logging import get_logger

logger = get_logger(__name__)

# google.com, www.google.co.uk, ...
_ENGINE_HOST = re.compile(r"(www\.)?google(\.[a-z]{2,3}){1,2}")


class DecodeError(CompendiumError):
    """Raised when a raw payload is not the expected container shape."""

    pass


class RawResultRecord(BaseModel):
    """Untyped record as returned by the extraction script."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = None
    link: str | None = None
    name: str | None = None
    description: str | None = None


def _is_redirect_link(parsed: ParseResult) -> bool:
    if parsed.path != "/url":
        return False
    if not parsed.netloc:
        return True
    return _ENGINE_HOST.fullmatch(parsed.hostname or "") is not None


def _clean_redirect_url(link: str) -> str:
    """Unwrap engine redirect links (``/url?q=...``) to their destination."""
    parsed = urlparse(link)
    if not _is_redirect_link(parsed):
        return link
    params = parse_qs(parsed.query)
    for key in ("q", "url"):
        if key in params:
            return params[key][0]
    return link


def resolve_url(link: str | None) -> str | None:
    """Return the absolute http(s) URL for a raw link, or None."""
    if not link:
        return None

    url = _clean_redirect_url(link.strip())
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return url


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    value = " ".join(value.split())
    return value or None


class ResultDecoder:
    """Maps raw extraction payloads to SearchResult values."""

    def parse_payload(self, payload: Any) -> list[Any]:
        """Parse the payload container.

        Args:
            payload: JSON text (str/bytes) or an already parsed list.

        Returns:
            The list of raw items.

        Raises:
            DecodeError: If the payload is not a JSON array.
        """
        if isinstance(payload, str | bytes | bytearray):
            try:
                payload = json.loads(payload)
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise DecodeError(f"Payload is not valid JSON: {e}") from e

        if not isinstance(payload, list):
            raise DecodeError(f"Expected a JSON array, got {type(payload).__name__}")
        return payload

    def decode(self, payload: Any, query: str) -> list[SearchResult]:
        """Decode a payload into deduplicated results.

        Args:
            payload: Raw payload returned by the extraction script.
            query: Query string the results belong to.

        Returns:
            Results in page order.

        Raises:
            DecodeError: If the payload is not a JSON array.
        """
        items = self.parse_payload(payload)

        results: list[SearchResult] = []
        seen: set[str] = set()
        dropped = 0

        for item in items:
            result = self._decode_record(item, query)
            if result is None or result.url in seen:
                dropped += 1
                continue
            seen.add(result.url)
            results.append(result)

        if dropped:
            logger.debug(
                "Dropped raw records",
                query=query[:50],
                dropped=dropped,
                kept=len(results),
            )

        return results

    def _decode_record(self, item: Any, query: str) -> SearchResult | None:
        if not isinstance(item, dict):
            return None

        try:
            record = RawResultRecord.model_validate(item)
        except ValidationError:
            return None

        url = resolve_url(record.link)
        if url is None:
            return None

        name = _clean_text(record.name)
        title = _clean_text(record.title) or name
        if title is None:
            return None

        return SearchResult(
            title=title,
            url=url,
            description=_clean_text(record.description),
            name=name,
            query=query,
        )
