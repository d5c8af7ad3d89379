"""
Session reuse policy for a long-lived search page.

A session is either Cold (no reusable results page: the next query must
navigate to a fresh search URL) or Warm(remaining) (the loaded results page
may serve ``remaining`` more queries through its search box). One transition
function drives the state machine:

- cold query completed  -> Warm(max_reuse)   (Cold if max_reuse == 0)
- warm query completed  -> Warm(remaining-1) (Cold once remaining hits 0)

A completed cold query also snapshots the page's URL parameters so later
cold navigations keep the engine's session parameters. The query term and
ephemeral per-search identifiers are never carried over.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import parse_qsl, urlencode, urlparse

from compendium.utils.config import get_settings
from compendium.utils.logging import get_logger

logger = get_logger(__name__)

QueryParams = tuple[tuple[str, str], ...]


class ReusePhase(str, Enum):
    """Reuse state of a search session."""

    COLD = "cold"
    WARM = "warm"


@dataclass(frozen=True)
class ReuseState:
    """Reuse phase plus the number of warm queries left."""

    phase: ReusePhase = ReusePhase.COLD
    remaining: int = 0

    @classmethod
    def cold(cls) -> ReuseState:
        return cls(ReusePhase.COLD, 0)

    @classmethod
    def warm(cls, remaining: int) -> ReuseState:
        if remaining <= 0:
            return cls.cold()
        return cls(ReusePhase.WARM, remaining)

    @property
    def reusable(self) -> bool:
        return self.phase == ReusePhase.WARM and self.remaining > 0


def next_reuse_state(state: ReuseState, cold_path: bool, max_reuse: int) -> ReuseState:
    """Transition after a completed query attempt.

    Args:
        state: Current state.
        cold_path: Whether the query was served by a fresh navigation.
        max_reuse: Warm queries granted by a cold query.

    Returns:
        The next state.
    """
    if cold_path:
        return ReuseState.warm(max_reuse)
    return ReuseState.warm(max(state.remaining - 1, 0))


def strip_ephemeral_params(url: str, excluded: Iterable[str]) -> QueryParams:
    """Extract a URL's query parameters without the excluded keys."""
    excluded_keys = set(excluded)
    return tuple(
        (key, value)
        for key, value in parse_qsl(urlparse(url).query, keep_blank_values=True)
        if key not in excluded_keys
    )


@dataclass
class SessionContext:
    """Mutable per-session state, owned by exactly one controller."""

    last_query: str | None = None
    carried_params: QueryParams = ()
    reuse: ReuseState = field(default_factory=ReuseState.cold)


class SessionReuseTracker:
    """
    Decides whether a query may reuse the loaded results page.

    Not thread-safe and not locked: a tracker belongs to one controller and
    is only touched from that controller's task.

    Example:
        tracker = SessionReuseTracker(max_reuse=5)
        url = tracker.search_url("esp32 pinout")  # cold navigation target
        ...
        tracker.on_query_completed(cold_path=True, current_url=driver.current_url)
        assert tracker.should_reuse()
    """

    def __init__(
        self,
        max_reuse: int | None = None,
        base_url: str | None = None,
        query_param: str | None = None,
        ephemeral_params: Iterable[str] | None = None,
        context: SessionContext | None = None,
    ):
        """
        Initialize the tracker.

        Args:
            max_reuse: Warm queries per cold navigation (default: from settings).
            base_url: Search endpoint for cold navigations (default: from settings).
            query_param: Query-term URL parameter (default: from settings).
            ephemeral_params: Per-search parameters never carried over.
            context: Existing session context (default: a fresh Cold context).
        """
        search_settings = get_settings().search

        self._max_reuse = search_settings.max_reuse if max_reuse is None else max_reuse
        if self._max_reuse < 0:
            raise ValueError("max_reuse must be >= 0")

        self._base_url = base_url or search_settings.base_url
        self._query_param = query_param or search_settings.query_param
        ephemeral = search_settings.ephemeral_params if ephemeral_params is None else ephemeral_params
        self._excluded_params = frozenset({self._query_param, *ephemeral})
        self._context = context or SessionContext()

    @property
    def context(self) -> SessionContext:
        return self._context

    @property
    def max_reuse(self) -> int:
        return self._max_reuse

    @property
    def remaining(self) -> int:
        """Warm queries left before a forced cold reload."""
        return self._context.reuse.remaining

    @property
    def excluded_params(self) -> frozenset[str]:
        return self._excluded_params

    def should_reuse(self) -> bool:
        """True iff the reuse counter is strictly greater than 0."""
        return self._context.reuse.reusable

    def search_url(self, query: str) -> str:
        """Build a cold navigation URL for a query plus the carried parameters."""
        params = [(self._query_param, query), *self._context.carried_params]
        return f"{self._base_url}?{urlencode(params)}"

    def on_query_completed(
        self,
        cold_path: bool,
        current_url: str | None = None,
        query: str | None = None,
    ) -> ReuseState:
        """Record a completed query attempt.

        Args:
            cold_path: Whether the query was served by a fresh navigation.
            current_url: URL shown after the query (captured on the cold path).
            query: Query string that was executed.

        Returns:
            The new reuse state.
        """
        previous = self._context.reuse

        if cold_path and current_url is not None:
            self._context.carried_params = strip_ephemeral_params(
                current_url, self._excluded_params
            )

        self._context.reuse = next_reuse_state(previous, cold_path, self._max_reuse)
        if query is not None:
            self._context.last_query = query

        logger.debug(
            "Reuse state transition",
            cold_path=cold_path,
            from_phase=previous.phase.value,
            to_phase=self._context.reuse.phase.value,
            remaining=self._context.reuse.remaining,
            carried_params=len(self._context.carried_params),
        )
        return self._context.reuse

    def invalidate(self) -> None:
        """Force the next query onto the cold path."""
        if self._context.reuse.phase != ReusePhase.COLD:
            logger.debug("Reuse state invalidated", remaining=self._context.reuse.remaining)
        self._context.reuse = ReuseState.cold()
