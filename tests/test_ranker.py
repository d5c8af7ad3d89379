"""
Tests for link ranking and LLM output parsing.

Test Perspectives Table:
| Case ID | Input / Precondition | Perspective | Expected Result | Notes |
|---------|----------------------|-------------|-----------------|-------|
| TC-N-01 | JSON array of selections | Equivalence - normal | Ranked links in selection order | - |
| TC-N-02 | Selections wrapped in an object | Equivalence - normal | Array unwrapped | - |
| TC-N-03 | Model names the component | Equivalence - normal | First non-empty line | - |
| TC-N-04 | JSON in code block / prose | Equivalence - normal | extract_json finds it | - |
| TC-B-01 | Out-of-range index | Boundary - max | Dropped | - |
| TC-B-02 | Unknown link type | Boundary - enum | Coerced to blog | - |
| TC-B-03 | No candidates | Boundary - empty | No model call | - |
| TC-A-01 | Model unreachable | Error recovery | Empty selection / None | - |
| TC-A-02 | Non-JSON answer | Error recovery | Empty selection | - |
| TC-A-03 | Invalid items | Error recovery | Skipped | - |
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from compendium.filter.llm_output import extract_json, validate_list_with_schema
from compendium.filter.ranker import (
    LinkIndex,
    LinkRanker,
    LinkType,
    OllamaLinkRanker,
    RankerError,
    format_candidates,
    select_links,
)
from compendium.search.models import SearchResult
from compendium.utils.config import LLMConfig

pytestmark = pytest.mark.unit


def _candidates(count: int = 3) -> list[SearchResult]:
    return [
        SearchResult(
            title=f"Result {i}",
            url=f"https://example.com/{i}",
            name=f"Site {i}",
            query="ESP32 pinout tutorials",
        )
        for i in range(count)
    ]


@pytest.fixture
def ranker() -> OllamaLinkRanker:
    return OllamaLinkRanker(LLMConfig(host="http://ollama.test:11434", model="test-model"))


class TestExtractJson:
    """Tests for extract_json."""

    def test_direct_array(self) -> None:
        """TC-N-04: A bare JSON array is parsed."""
        assert extract_json('[{"index": 0}]', expect_array=True) == [{"index": 0}]

    def test_code_block(self) -> None:
        """TC-N-04: JSON inside a fenced block is extracted."""
        text = 'Here you go:\n```json\n[{"index": 1, "type": "datasheet"}]\n```'

        assert extract_json(text, expect_array=True) == [{"index": 1, "type": "datasheet"}]

    def test_surrounding_prose(self) -> None:
        """TC-N-04: JSON embedded in prose is extracted."""
        text = 'The best links are {"links": [0, 2]} as requested.'

        assert extract_json(text) == {"links": [0, 2]}

    @pytest.mark.parametrize("text", ["", "no json here", "[broken", '{"a": 1}'])
    def test_no_array(self, text: str) -> None:
        """TC-A-02: Missing or mistyped JSON yields None."""
        assert extract_json(text, expect_array=True) is None


class TestSelection:
    """Tests for selection models and mapping."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("datasheet", LinkType.DATASHEET),
            (" Tutorial ", LinkType.TUTORIAL),
            ("blog", LinkType.BLOG),
            ("video", LinkType.BLOG),
            (None, LinkType.BLOG),
        ],
    )
    def test_link_type_coerced(self, raw: object, expected: LinkType) -> None:
        """TC-B-02: Unknown types default to blog."""
        assert LinkIndex.model_validate({"index": 0, "type": raw}).type == expected

    def test_invalid_items_skipped(self) -> None:
        """TC-A-03: Items without a valid index are skipped."""
        items = [{"index": 0}, {"index": -1}, {"type": "blog"}, "3", {"index": 2}]

        selections = validate_list_with_schema(items, LinkIndex)

        assert [s.index for s in selections] == [0, 2]

    def test_select_links_drops_out_of_range(self) -> None:
        """TC-B-01: Indexes past the candidate list are dropped."""
        candidates = _candidates(2)
        selections = [
            LinkIndex(index=1, type=LinkType.DATASHEET),
            LinkIndex(index=5),
            LinkIndex(index=0),
        ]

        links = select_links(candidates, selections)

        assert [(link.url, link.type) for link in links] == [
            ("https://example.com/1", LinkType.DATASHEET),
            ("https://example.com/0", LinkType.BLOG),
        ]
        assert links[0].name == "Site 1"

    def test_format_candidates(self) -> None:
        """Candidates are listed with their index after the query header."""
        lines = format_candidates(_candidates(2)).splitlines()

        assert lines[0] == "ESP32 pinout tutorials"
        assert lines[1] == (
            "INDEX: 0, NAME: Site 0, URL: https://example.com/0, TITLE: Result 0"
        )
        assert len(lines) == 3


class TestOllamaLinkRanker:
    """Tests for OllamaLinkRanker with the model call mocked."""

    def test_satisfies_protocol(self, ranker: OllamaLinkRanker) -> None:
        assert isinstance(ranker, LinkRanker)

    @pytest.mark.asyncio
    async def test_rank_links(self, ranker: OllamaLinkRanker) -> None:
        """TC-N-01: The model's selections map back to candidates.

        Given: Three candidates and a model answering with two selections
        When: rank_links() is called
        Then: The selected candidates are returned with their types, and the
              model was asked for JSON output
        """
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            return_value='[{"index": 2, "type": "datasheet"}, {"index": 0, "type": "tutorial"}]'
        )

        links = await ranker.rank_links(_candidates())

        assert [(link.url, link.type) for link in links] == [
            ("https://example.com/2", LinkType.DATASHEET),
            ("https://example.com/0", LinkType.TUTORIAL),
        ]
        assert ranker._generate.await_args.kwargs == {"json_output": True}

    @pytest.mark.asyncio
    async def test_rank_links_wrapped_array(self, ranker: OllamaLinkRanker) -> None:
        """TC-N-02: JSON mode answers wrapped in an object are unwrapped."""
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            return_value='{"links": [{"index": 1, "type": "blog"}]}'
        )

        links = await ranker.rank_links(_candidates())

        assert [link.url for link in links] == ["https://example.com/1"]

    @pytest.mark.asyncio
    async def test_rank_links_without_candidates(self, ranker: OllamaLinkRanker) -> None:
        """TC-B-03: Nothing to rank means no model call."""
        ranker._generate = AsyncMock()  # type: ignore[method-assign]

        assert await ranker.rank_links([]) == []
        ranker._generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rank_links_model_unreachable(self, ranker: OllamaLinkRanker) -> None:
        """TC-A-01: A ranker error degrades to an empty selection."""
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            side_effect=RankerError("Ollama request failed")
        )

        assert await ranker.rank_links(_candidates()) == []

    @pytest.mark.asyncio
    async def test_rank_links_non_json(self, ranker: OllamaLinkRanker) -> None:
        """TC-A-02: A prose answer degrades to an empty selection."""
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            return_value="I think the first link is best."
        )

        assert await ranker.rank_links(_candidates()) == []

    @pytest.mark.asyncio
    async def test_identify_topic(self, ranker: OllamaLinkRanker) -> None:
        """TC-N-03: The first non-empty line names the component."""
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            return_value='\n"Espressif ESP32-WROOM-32 module"\nIt is a Wi-Fi module.'
        )

        topic = await ranker.identify_topic('[{"title": "ESP32", "link": "https://x"}]')

        assert topic == "Espressif ESP32-WROOM-32 module"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", ["", "   \n  "])
    async def test_identify_topic_empty_answer(
        self, ranker: OllamaLinkRanker, answer: str
    ) -> None:
        """TC-A-02: An empty answer identifies nothing."""
        ranker._generate = AsyncMock(return_value=answer)  # type: ignore[method-assign]

        assert await ranker.identify_topic("[]") is None

    @pytest.mark.asyncio
    async def test_identify_topic_model_unreachable(self, ranker: OllamaLinkRanker) -> None:
        """TC-A-01: A ranker error identifies nothing."""
        ranker._generate = AsyncMock(  # type: ignore[method-assign]
            side_effect=RankerError("Ollama error 500")
        )

        assert await ranker.identify_topic("[]") is None


class TestOllamaGenerate:
    """Tests for the HTTP call with the aiohttp session mocked."""

    @staticmethod
    def _session(response: MagicMock) -> MagicMock:
        context = MagicMock()
        context.__aenter__ = AsyncMock(return_value=response)
        context.__aexit__ = AsyncMock(return_value=None)
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(return_value=context)
        session.close = AsyncMock()
        return session

    @pytest.mark.asyncio
    async def test_generate_posts_payload(self, ranker: OllamaLinkRanker) -> None:
        """A successful call returns the response text."""
        response = MagicMock(status=200)
        response.json = AsyncMock(return_value={"response": "ESP32"})
        session = self._session(response)
        ranker._session = session

        text = await ranker._generate("system", "prompt", json_output=True)

        assert text == "ESP32"
        url = session.post.call_args.args[0]
        payload = session.post.call_args.kwargs["json"]
        assert url == "http://ollama.test:11434/api/generate"
        assert payload["model"] == "test-model"
        assert payload["stream"] is False
        assert payload["format"] == "json"

    @pytest.mark.asyncio
    async def test_generate_error_status(self, ranker: OllamaLinkRanker) -> None:
        """A non-200 answer raises RankerError."""
        response = MagicMock(status=404)
        response.text = AsyncMock(return_value="model not found")
        ranker._session = self._session(response)

        with pytest.raises(RankerError, match="404"):
            await ranker._generate("system", "prompt")

    @pytest.mark.asyncio
    async def test_generate_connection_error(self, ranker: OllamaLinkRanker) -> None:
        """A client error raises RankerError."""
        session = MagicMock()
        session.closed = False
        session.post = MagicMock(side_effect=aiohttp.ClientError("connection refused"))
        ranker._session = session

        with pytest.raises(RankerError, match="connection refused"):
            await ranker._generate("system", "prompt")

    @pytest.mark.asyncio
    async def test_close(self, ranker: OllamaLinkRanker) -> None:
        """close() closes the session once."""
        session = self._session(MagicMock())
        ranker._session = session

        await ranker.close()
        await ranker.close()

        session.close.assert_awaited_once()
