"""
Compendium filter module.

LLM-backed link ranking and topic identification.
"""

from compendium.filter.ranker import (
    LinkRanker,
    LinkType,
    OllamaLinkRanker,
    RankedLink,
    RankerError,
)

__all__ = [
    "LinkRanker",
    "LinkType",
    "OllamaLinkRanker",
    "RankedLink",
    "RankerError",
]
