"""
Component research flow.

Ties the search layer to the ranker: a topic (typed, or identified from a
reverse image search) is searched across all query variants and the merged
results are narrowed to the links worth reading.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from compendium.filter.ranker import LinkRanker, RankedLink
from compendium.search.aggregator import MultiSessionAggregator
from compendium.search.controller import ResultStreamController
from compendium.search.models import SearchResult
from compendium.utils.logging import get_logger

logger = get_logger(__name__)


class ComponentReport(BaseModel):
    """Ranked reading list for one component."""

    name: str
    links: list[RankedLink] = Field(default_factory=list)
    candidates: list[SearchResult] = Field(default_factory=list)


async def research_component(
    topic: str,
    aggregator: MultiSessionAggregator,
    ranker: LinkRanker,
) -> ComponentReport:
    """Search a topic across all variants and rank the merged results.

    Args:
        topic: Component name or free-text topic.
        aggregator: Multi-session aggregator.
        ranker: Link ranker.

    Returns:
        ComponentReport with the selected links and every candidate.
    """
    candidates = await aggregator.aggregate(topic)
    links = await ranker.rank_links(candidates)

    logger.info(
        "Component researched",
        topic=topic[:50],
        candidates=len(candidates),
        links=len(links),
    )
    return ComponentReport(name=topic, links=links, candidates=candidates)


async def research_image(
    image_path: str,
    controller: ResultStreamController,
    aggregator: MultiSessionAggregator,
    ranker: LinkRanker,
) -> ComponentReport | None:
    """Identify the component in an image, then research it.

    Args:
        image_path: Local image file.
        controller: Controller used for the reverse image search.
        aggregator: Multi-session aggregator for the follow-up search.
        ranker: Link ranker (also identifies the topic).

    Returns:
        ComponentReport, or None if no topic could be identified.
    """
    payload = await controller.image_search(image_path)

    topic = await ranker.identify_topic(payload)
    if not topic:
        logger.warning("No component identified from image", image=image_path)
        return None

    return await research_component(topic, aggregator, ranker)
