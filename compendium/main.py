"""
Main entry point for Compendium.
"""

import asyncio
import json
import sys

from compendium.crawler.playwright_driver import PlaywrightDriver
from compendium.filter.ranker import OllamaLinkRanker
from compendium.research import ComponentReport, research_component, research_image
from compendium.search.aggregator import MultiSessionAggregator
from compendium.search.controller import ResultStreamController
from compendium.utils.config import get_settings
from compendium.utils.logging import configure_logging, get_logger


def _print_json(data: object) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _print_report(report: ComponentReport | None) -> None:
    if report is None:
        print("Error: no component identified", file=sys.stderr)
        return
    _print_json(
        {
            "name": report.name,
            "links": [link.model_dump(mode="json") for link in report.links],
        }
    )


async def run_search(topic: str, limit: int | None = None) -> None:
    """Search all variants of a topic and print the merged results."""
    aggregator = MultiSessionAggregator.from_driver_factory(PlaywrightDriver)
    try:
        results = await aggregator.aggregate(topic, result_limit=limit)
        _print_json([result.to_dict() for result in results])
    finally:
        await aggregator.close()


async def run_research(topic: str | None = None, image: str | None = None) -> None:
    """Research a topic (or the component in an image) and print ranked links."""
    aggregator = MultiSessionAggregator.from_driver_factory(PlaywrightDriver)
    ranker = OllamaLinkRanker()
    image_controller: ResultStreamController | None = None

    try:
        if image is not None:
            image_controller = ResultStreamController(PlaywrightDriver())
            report = await research_image(image, image_controller, aggregator, ranker)
        else:
            assert topic is not None
            report = await research_component(topic, aggregator, ranker)
        _print_report(report)
    finally:
        if image_controller is not None:
            await image_controller.close()
        await aggregator.close()
        await ranker.close()


def main() -> None:
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Compendium - hardware component research through live search sessions"
    )
    parser.add_argument(
        "command",
        choices=["search", "research", "image"],
        help="Command to run",
    )
    parser.add_argument(
        "target",
        help="Topic (search/research) or image path (image)",
    )
    parser.add_argument(
        "--limit", "-n",
        type=int,
        default=None,
        help="Results per query variant (for 'search' command)",
    )
    parser.add_argument(
        "--console-log",
        action="store_true",
        help="Human-readable log output instead of JSON",
    )

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(log_level=settings.general.log_level, json_format=not args.console_log)
    logger = get_logger(__name__)
    logger.info("Compendium starting", version=settings.general.version, command=args.command)

    if args.command == "search":
        asyncio.run(run_search(args.target, args.limit))
    elif args.command == "research":
        asyncio.run(run_research(topic=args.target))
    elif args.command == "image":
        asyncio.run(run_research(image=args.target))


if __name__ == "__main__":
    main()
