"""
Link ranking and topic identification through an LLM.

LinkRanker is the boundary the search layer consumes:
- rank_links(results): pick the useful links and label them blog/tutorial/datasheet
- identify_topic(payload): name the component behind an image-search payload

OllamaLinkRanker implements it against a local Ollama server. Both
operations degrade (empty selection / None) when the model is unreachable
or answers in an unusable format.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any, Protocol, runtime_checkable

import aiohttp
from pydantic import BaseModel, ConfigDict, Field, field_validator

from compendium.filter.llm_output import extract_json, validate_list_with_schema
from compendium.search.models import SearchResult
from compendium.utils.config import LLMConfig, get_settings
from compendium.utils.errors import CompendiumError
from compendium.utils.logging import get_logger

logger = get_logger(__name__)


class RankerError(CompendiumError):
    """Raised when the model cannot be reached or returns an error."""

    pass


# =============================================================================
# Prompts
# =============================================================================

LINK_PICKER_PROMPT = """\
You are an expert research assistant and technical documentation finder. \
You are a master at finding the best links from Google search results.

You are part of a system that identifies and collects information about hardware \
components, electronic parts and microcontrollers from an image.

Given a list of search results, find the best links, avoiding SEO spam, \
pointing to useful blogs, articles and other written content about the component.

Only choose links that most likely point to:
- articles from blogs or longform written content
- datasheets or technical specifications for the component

ONLY RESPOND IN JSON, according to this schema:
[{
"index": integer, // index of the relevant link, starting from 0
"type": string // one of "blog", "tutorial", "datasheet". If unsure, use "blog"
}]
"""

COMPONENT_IDENTIFIER_PROMPT = """\
You are a hardware component identifier.

You are part of a system that identifies hardware components, electronic parts \
and microcontrollers from an image.

You will be given JSON containing links from a reverse image search. Identify the \
hardware component based on the links and return its exact name and model number, \
as specific as possible. The links are fuzzy matches of the image, so base the \
answer on most of them.

Only return the name, model and brand of the component, in one line, as a string.
"""


# =============================================================================
# Data Models
# =============================================================================


class LinkType(str, Enum):
    """Category assigned to a selected link."""

    BLOG = "blog"
    TUTORIAL = "tutorial"
    DATASHEET = "datasheet"


class LinkIndex(BaseModel):
    """One selection as returned by the model."""

    model_config = ConfigDict(extra="ignore")

    index: int = Field(..., ge=0)
    type: LinkType = LinkType.BLOG

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> Any:
        if isinstance(value, LinkType):
            return value
        if isinstance(value, str) and value.strip().lower() in {t.value for t in LinkType}:
            return value.strip().lower()
        return LinkType.BLOG


class RankedLink(BaseModel):
    """A selected search result with its inferred category."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    title: str
    url: str
    type: LinkType

    @classmethod
    def from_result(cls, result: SearchResult, link_type: LinkType) -> RankedLink:
        return cls(name=result.name, title=result.title, url=result.url, type=link_type)


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class LinkRanker(Protocol):
    """Classifier/ranker collaborator consumed by the research flow."""

    async def rank_links(self, candidates: Sequence[SearchResult]) -> list[RankedLink]:
        """Select useful links from candidates, labelled by category."""
        ...

    async def identify_topic(self, payload: str) -> str | None:
        """Name the topic behind a raw scraped payload."""
        ...


def format_candidates(candidates: Sequence[SearchResult]) -> str:
    """Render candidates as the indexed listing the link picker expects."""
    header = candidates[0].query if candidates else ""
    lines = [
        f"INDEX: {index}, NAME: {result.name or ''}, URL: {result.url}, TITLE: {result.title}"
        for index, result in enumerate(candidates)
    ]
    return "\n".join([header, *lines])


def select_links(
    candidates: Sequence[SearchResult],
    selections: Sequence[LinkIndex],
) -> list[RankedLink]:
    """Map model selections back to candidates, dropping out-of-range indexes."""
    return [
        RankedLink.from_result(candidates[selection.index], selection.type)
        for selection in selections
        if selection.index < len(candidates)
    ]


def _selection_items(data: dict | list | None) -> list | None:
    """Accept a bare array or an object wrapping one."""
    if isinstance(data, dict):
        return next((value for value in data.values() if isinstance(value, list)), None)
    return data


# =============================================================================
# Ollama Implementation
# =============================================================================


class OllamaLinkRanker:
    """
    LinkRanker backed by a local Ollama model.

    Example:
        ranker = OllamaLinkRanker()
        links = await ranker.rank_links(results)
        await ranker.close()
    """

    def __init__(self, config: LLMConfig | None = None):
        """
        Initialize the ranker.

        Args:
            config: LLM configuration (default: from settings).
        """
        self._config = config or get_settings().llm
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._config.timeout_seconds)
            )
        return self._session

    async def _generate(self, system: str, prompt: str, json_output: bool = False) -> str:
        """Run one non-streaming generation.

        Raises:
            RankerError: If the server is unreachable or answers with an error.
        """
        payload: dict[str, Any] = {
            "model": self._config.model,
            "system": system,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self._config.temperature},
        }
        if json_output:
            payload["format"] = "json"

        session = await self._get_session()
        try:
            async with session.post(f"{self._config.host}/api/generate", json=payload) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise RankerError(f"Ollama error {response.status}: {error_text[:200]}")
                data = await response.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            raise RankerError(f"Ollama request failed: {e}") from e

        return str(data.get("response", ""))

    async def rank_links(self, candidates: Sequence[SearchResult]) -> list[RankedLink]:
        if not candidates:
            return []

        try:
            text = await self._generate(
                LINK_PICKER_PROMPT, format_candidates(candidates), json_output=True
            )
        except RankerError as e:
            logger.error("Link ranking failed", error=str(e))
            return []

        items = _selection_items(extract_json(text, expect_array=True) or extract_json(text))
        if items is None:
            logger.warning("Link ranking returned no JSON array", response=text[:200])
            return []

        links = select_links(candidates, validate_list_with_schema(items, LinkIndex))
        logger.info("Links ranked", candidates=len(candidates), selected=len(links))
        return links

    async def identify_topic(self, payload: str) -> str | None:
        try:
            text = await self._generate(COMPONENT_IDENTIFIER_PROMPT, payload)
        except RankerError as e:
            logger.error("Topic identification failed", error=str(e))
            return None

        lines = [line.strip().strip('"') for line in text.strip().splitlines() if line.strip()]
        topic = lines[0] if lines else None
        logger.info("Topic identified", topic=topic)
        return topic or None

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
