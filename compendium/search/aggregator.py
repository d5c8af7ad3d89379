"""
Fan-out/fan-in search across independent sessions.

MultiSessionAggregator derives the tutorial, blog and datasheet variants of
a topic, streams each on its own ResultStreamController concurrently, keeps
the last snapshot of every stream and concatenates them in variant order.
A failed variant contributes no results instead of failing the aggregate.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from enum import Enum

from compendium.crawler.driver import BrowserDriver
from compendium.search.controller import ResultStreamController
from compendium.search.models import SearchQuery, SearchResult
from compendium.utils.config import VariantTemplatesConfig, get_settings
from compendium.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class QueryVariant(str, Enum):
    """Query variants derived from one topic, in output order."""

    TUTORIAL = "tutorial"
    BLOG = "blog"
    DATASHEET = "datasheet"


def build_variant_queries(
    topic: str,
    templates: VariantTemplatesConfig | None = None,
) -> dict[QueryVariant, str]:
    """Derive the query string of every variant for a topic.

    Args:
        topic: Topic text, e.g. "ESP32 pinout".
        templates: Variant templates (default: from settings).

    Returns:
        Query strings keyed by variant, in variant order.
    """
    templates = templates or get_settings().search.variant_templates
    topic = topic.strip()
    return {
        variant: getattr(templates, variant.value).format(topic=topic) for variant in QueryVariant
    }


class MultiSessionAggregator:
    """
    Runs one controller per query variant and merges their final snapshots.

    Each variant owns its controller (and thus its session); sessions are
    never shared between variants.

    Example:
        aggregator = MultiSessionAggregator.from_driver_factory(PlaywrightDriver)
        results = await aggregator.aggregate("ESP32 pinout")
        await aggregator.close()
    """

    def __init__(
        self,
        controllers: Mapping[QueryVariant, ResultStreamController],
        templates: VariantTemplatesConfig | None = None,
    ):
        """
        Initialize the aggregator.

        Args:
            controllers: One controller per variant.
            templates: Variant templates (default: from settings).

        Raises:
            ValueError: If a variant has no controller or two variants share one.
        """
        missing = [variant.value for variant in QueryVariant if variant not in controllers]
        if missing:
            raise ValueError(f"Missing controllers for variants: {', '.join(missing)}")

        if len({id(controllers[variant]) for variant in QueryVariant}) != len(QueryVariant):
            raise ValueError("Each variant needs its own controller")

        self._controllers = {variant: controllers[variant] for variant in QueryVariant}
        self._templates = templates or get_settings().search.variant_templates

    @classmethod
    def from_driver_factory(
        cls,
        driver_factory: Callable[[], BrowserDriver],
        templates: VariantTemplatesConfig | None = None,
    ) -> MultiSessionAggregator:
        """Create an aggregator with a fresh driver per variant."""
        return cls(
            {variant: ResultStreamController(driver_factory()) for variant in QueryVariant},
            templates=templates,
        )

    @property
    def controllers(self) -> dict[QueryVariant, ResultStreamController]:
        return dict(self._controllers)

    async def aggregate(self, topic: str, result_limit: int | None = None) -> list[SearchResult]:
        """Search all variants of a topic concurrently and merge the results.

        Cancelling this call cancels every child stream.

        Args:
            topic: Topic text.
            result_limit: Per-variant result limit.

        Returns:
            Concatenated results in variant order (tutorial, blog, datasheet).
            Duplicate URLs across variants are kept.
        """
        queries = build_variant_queries(topic, self._templates)

        contributions = await asyncio.gather(
            *(
                self._collect(variant, SearchQuery(text=text, result_limit=result_limit))
                for variant, text in queries.items()
            )
        )

        merged = [result for contribution in contributions for result in contribution]
        logger.info(
            "Aggregate search completed",
            topic=topic[:50],
            total=len(merged),
            per_variant={
                variant.value: len(contribution)
                for variant, contribution in zip(queries, contributions, strict=True)
            },
        )
        return merged

    async def _collect(self, variant: QueryVariant, query: SearchQuery) -> list[SearchResult]:
        """Drain one variant's stream, keeping only its last snapshot."""
        with LogContext(variant=variant.value, query=query.text[:50]):
            try:
                snapshot = await self._controllers[variant].stream(query).last()
            except Exception as e:
                logger.warning(
                    "Variant search failed, contributing no results",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return []

        return list(snapshot.results) if snapshot else []

    async def close(self) -> None:
        """Close every variant's session."""
        for controller in self._controllers.values():
            await controller.close()
