"""
Compendium search module.

Main entry points:
    ResultStreamController - Streams result snapshots over one reusable session
    MultiSessionAggregator - Runs the tutorial/blog/datasheet variants concurrently

Session reuse:
    SessionReuseTracker - Cold/Warm reuse policy with carried URL parameters

Decoding:
    ResultDecoder - Raw extraction payload to deduplicated SearchResult values
"""

from compendium.search.aggregator import (
    MultiSessionAggregator,
    QueryVariant,
    build_variant_queries,
)
from compendium.search.controller import ResultStream, ResultStreamController
from compendium.search.decoder import DecodeError, RawResultRecord, ResultDecoder
from compendium.search.models import ResultSnapshot, SearchQuery, SearchResult
from compendium.search.session import (
    ReusePhase,
    ReuseState,
    SessionContext,
    SessionReuseTracker,
    next_reuse_state,
    strip_ephemeral_params,
)

__all__ = [
    # Aggregation
    "MultiSessionAggregator",
    "QueryVariant",
    "build_variant_queries",
    # Streaming
    "ResultStream",
    "ResultStreamController",
    # Decoding
    "DecodeError",
    "RawResultRecord",
    "ResultDecoder",
    # Models
    "ResultSnapshot",
    "SearchQuery",
    "SearchResult",
    # Session reuse
    "ReusePhase",
    "ReuseState",
    "SessionContext",
    "SessionReuseTracker",
    "next_reuse_state",
    "strip_ephemeral_params",
]
