"""
Incremental search result streaming over one reusable browser session.

ResultStreamController owns a BrowserDriver and produces, per query, a
ResultStream: a cancellable async iterator of ResultSnapshot values.

Cold path (no reusable page):
    navigate to a fresh search URL, re-extract a fast snapshot whenever the
    page mutates while still loading (autocorrect redirects, lazy results),
    then run the full extraction once navigation settles.

Warm path (reusable page):
    submit the new term through the loaded page's search box and emit one
    fast snapshot.

Mutation notifications are pushed by the driver onto a queue drained by a
single watcher task; the handler is removed from the driver whenever the
stream terminates (success, failure or cancellation). Snapshots from the
watcher and the final extraction may interleave: consumers treat the
stream as "latest snapshot wins".

Example:
    controller = ResultStreamController(driver)
    async with controller.stream(SearchQuery(text="esp32 pinout")) as stream:
        async for snapshot in stream:
            render(snapshot.results)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from compendium.crawler.driver import (
    BrowserDriver,
    MutationEvent,
    MutationHandler,
    ResultShape,
    ScriptError,
)
from compendium.search.decoder import DecodeError, ResultDecoder
from compendium.search.models import ResultSnapshot, SearchQuery, SearchResult
from compendium.search.scripts import (
    CURRENT_RESULTS_SCRIPT,
    EXTRACT_RESULTS_SCRIPT,
    IMAGE_MATCH_LINKS_SCRIPT,
    SEARCH_BAR_SCRIPT,
)
from compendium.search.session import SessionReuseTracker
from compendium.utils.config import SearchConfig, get_settings
from compendium.utils.logging import get_logger

logger = get_logger(__name__)

_END = object()


# =============================================================================
# Result Stream
# =============================================================================


class ResultStream:
    """
    Cancellable, single-use async iterator of snapshots for one query.

    Iterate it inside ``async with``: leaving the block by any path (a
    ``break``, an exception, task cancellation) cancels the stream and
    detaches its mutation handler. The producer starts on entry. Once the
    stream terminates it accepts no further snapshots; a producer failure is
    raised from the iteration that reaches it.
    """

    def __init__(
        self,
        query: str,
        producer: Callable[[ResultStream], Awaitable[None]],
    ):
        self.query = query
        self._producer = producer
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._cleanups: list[Callable[[], None]] = []
        self._closed = False
        self._entered = False
        self._exhausted = False
        self.latest: ResultSnapshot | None = None

    @property
    def closed(self) -> bool:
        """Whether the stream stopped accepting snapshots."""
        return self._closed

    def _start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(
                self._producer(self), name=f"result-stream:{self.query[:40]}"
            )

    def add_cleanup(self, callback: Callable[[], None]) -> None:
        """Register a synchronous callback run when the stream is cancelled."""
        self._cleanups.append(callback)

    def emit(self, snapshot: ResultSnapshot) -> bool:
        """Queue a snapshot; returns False once the stream is closed."""
        if self._closed:
            return False
        self._queue.put_nowait(snapshot)
        return True

    def finish(self, error: BaseException | None = None) -> None:
        """Terminate the stream, optionally with an error for the consumer."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(error if error is not None else _END)

    def cancel(self) -> None:
        """Stop the stream now.

        Cleanup callbacks (mutation handler removal) run synchronously before
        the producer task is cancelled.
        """
        for callback in self._cleanups:
            callback()
        self._cleanups.clear()
        self.finish()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def aclose(self) -> None:
        """Cancel the stream and wait for the producer to unwind."""
        self.cancel()
        if self._task is not None:
            await asyncio.wait([self._task])

    async def __aenter__(self) -> ResultStream:
        self._entered = True
        self._start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def __aiter__(self) -> ResultStream:
        return self

    async def __anext__(self) -> ResultSnapshot:
        if self._exhausted:
            raise StopAsyncIteration
        if not (self._entered or self._closed):
            raise RuntimeError("ResultStream must be iterated inside 'async with'")

        item = await self._queue.get()
        if item is _END:
            self._exhausted = True
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            self._exhausted = True
            raise item

        self.latest = item
        return item

    async def last(self) -> ResultSnapshot | None:
        """Drain the stream and return the last snapshot observed."""
        async with self:
            async for _ in self:
                pass
        return self.latest


# =============================================================================
# Controller
# =============================================================================


class ResultStreamController:
    """
    Streams search results for queries over one exclusively owned session.

    Streams on the same controller run one at a time; the session state
    (reuse counter, carried URL parameters) is private to the controller.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        tracker: SessionReuseTracker | None = None,
        decoder: ResultDecoder | None = None,
        config: SearchConfig | None = None,
    ):
        """
        Initialize the controller.

        Args:
            driver: Browser session used exclusively by this controller.
            tracker: Reuse policy (default: a fresh Cold tracker).
            decoder: Raw record decoder.
            config: Search configuration (default: from settings).
        """
        self._driver = driver
        self._config = config or get_settings().search
        self._tracker = tracker or SessionReuseTracker(
            max_reuse=self._config.max_reuse,
            base_url=self._config.base_url,
            query_param=self._config.query_param,
            ephemeral_params=self._config.ephemeral_params,
        )
        self._decoder = decoder or ResultDecoder()
        self._lock = asyncio.Lock()

    @property
    def driver(self) -> BrowserDriver:
        return self._driver

    @property
    def tracker(self) -> SessionReuseTracker:
        return self._tracker

    def stream(self, query: SearchQuery | str, result_limit: int | None = None) -> ResultStream:
        """Create a snapshot stream for a query.

        Args:
            query: Query (or plain search term).
            result_limit: Overrides the query's result limit.

        Returns:
            A lazy, single-use ResultStream.
        """
        if isinstance(query, str):
            query = SearchQuery(text=query, result_limit=result_limit)
        elif result_limit is not None:
            query = query.model_copy(update={"result_limit": result_limit})

        search_query = query
        return ResultStream(query.text, lambda stream: self._run(search_query, stream))

    async def results(self, query: SearchQuery | str) -> list[SearchResult]:
        """Run a query to completion and return its last snapshot's results."""
        snapshot = await self.stream(query).last()
        return list(snapshot.results) if snapshot else []

    async def _run(self, query: SearchQuery, stream: ResultStream) -> None:
        async with self._lock:
            if stream.closed:
                return

            warm = query.use_search_bar and self._tracker.should_reuse()
            logger.info(
                "Search stream started",
                query=query.text[:50],
                path="warm" if warm else "cold",
                remaining=self._tracker.remaining,
            )

            try:
                if warm:
                    await self._run_warm(query, stream)
                else:
                    await self._run_cold(query, stream)
            except asyncio.CancelledError:
                logger.info("Search stream cancelled", query=query.text[:50])
                raise
            except Exception as e:
                logger.warning(
                    "Search stream failed",
                    query=query.text[:50],
                    error=str(e),
                    error_type=type(e).__name__,
                )
                stream.finish(e)
                return

            stream.finish()

    # -------------------------------------------------------------------------
    # Cold path
    # -------------------------------------------------------------------------

    async def _run_cold(self, query: SearchQuery, stream: ResultStream) -> None:
        mutations: asyncio.Queue[MutationEvent] = asyncio.Queue()
        handler: MutationHandler = mutations.put_nowait

        self._driver.on_mutation = handler
        stream.add_cleanup(lambda: self._detach(handler))
        watcher = asyncio.create_task(self._watch_mutations(query, mutations, stream))

        try:
            await self._driver.navigate(self._tracker.search_url(query.text))
            await self._settle()

            count = query.result_limit or self._config.full_result_count
            payload = await self._driver.evaluate(
                EXTRACT_RESULTS_SCRIPT,
                {
                    "minResults": count,
                    "timeoutMs": self._config.full_result_timeout_ms,
                    "maxResults": count,
                },
                expecting=ResultShape.TEXT,
            )
            results = self._decoder.decode(payload, query.text)
        finally:
            self._detach(handler)
            watcher.cancel()
            await asyncio.wait([watcher])
            if not watcher.cancelled() and watcher.exception() is not None:
                error = watcher.exception()
                logger.warning(
                    "Mutation watcher failed",
                    query=query.text[:50],
                    error=str(error),
                    error_type=type(error).__name__,
                )

        self._emit(stream, ResultSnapshot.of(query.text, results, final=True), "final")
        self._tracker.on_query_completed(
            cold_path=True,
            current_url=self._driver.current_url,
            query=query.text,
        )

    async def _watch_mutations(
        self,
        query: SearchQuery,
        mutations: asyncio.Queue[MutationEvent],
        stream: ResultStream,
    ) -> None:
        """Re-extract a fast snapshot for each burst of loading-time mutations."""
        while True:
            event = await mutations.get()
            while not mutations.empty():
                event = mutations.get_nowait()

            if not (event.loading and self._driver.is_loading):
                continue

            try:
                results = await self._fast_extract(EXTRACT_RESULTS_SCRIPT, query.text)
            except (ScriptError, DecodeError) as e:
                # The page is mid-navigation; the next mutation retries
                logger.debug("Mutation extraction skipped", query=query.text[:50], error=str(e))
                continue

            self._emit(stream, ResultSnapshot.of(query.text, results), "mutation")

    def _detach(self, handler: MutationHandler) -> None:
        if self._driver.on_mutation is handler:
            self._driver.on_mutation = None

    # -------------------------------------------------------------------------
    # Warm path
    # -------------------------------------------------------------------------

    async def _run_warm(self, query: SearchQuery, stream: ResultStream) -> None:
        # Failed and cancelled attempts count against the reuse budget too
        try:
            submitted = await self._driver.evaluate(
                SEARCH_BAR_SCRIPT,
                {"query": query.text},
                expecting=ResultShape.BOOLEAN,
            )
            if not submitted:
                raise ScriptError("Search box not found on the loaded page")

            await self._settle()
            await self._driver.wait_for_navigation()
            results = await self._fast_extract(EXTRACT_RESULTS_SCRIPT, query.text)
            self._emit(stream, ResultSnapshot.of(query.text, results, final=True), "warm")
        finally:
            self._tracker.on_query_completed(cold_path=False, query=query.text)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _fast_extract(
        self, script: str, query: str, max_results: int | None = None
    ) -> list[SearchResult]:
        payload = await self._driver.evaluate(
            script,
            {
                "minResults": self._config.fast_min_results,
                "timeoutMs": self._config.fast_result_timeout_ms,
                "maxResults": max_results or self._config.fast_max_results,
            },
            expecting=ResultShape.TEXT,
        )
        return self._decoder.decode(payload, query)

    async def _settle(self) -> None:
        """Fixed backoff letting the page react to a programmatic interaction."""
        await asyncio.sleep(self._config.settle_delay_ms / 1000)

    def _emit(self, stream: ResultStream, snapshot: ResultSnapshot, origin: str) -> None:
        if stream.emit(snapshot):
            logger.debug(
                "Snapshot emitted",
                query=snapshot.query[:50],
                origin=origin,
                count=len(snapshot.results),
            )

    # -------------------------------------------------------------------------
    # Session operations outside the query stream
    # -------------------------------------------------------------------------

    async def fetch_current_results(self, limit: int | None = None) -> ResultSnapshot:
        """Extract results from the page the session currently shows.

        Does not navigate and does not change the reuse state.

        Args:
            limit: Maximum results (default: full_result_count).

        Returns:
            Snapshot whose results carry an empty query string.
        """
        async with self._lock:
            results = await self._fast_extract(
                CURRENT_RESULTS_SCRIPT,
                "",
                max_results=limit or self._config.full_result_count,
            )
        return ResultSnapshot.of("", results, final=True)

    async def image_search(self, image_path: str) -> str:
        """Run a reverse image search and return the matched links as JSON text.

        The session leaves the results page, so the next query is cold.

        Args:
            image_path: Local image file.

        Returns:
            JSON array text of ``{title, link}`` records.

        Raises:
            NavigationError: If the image search page cannot be loaded.
            UploadError: If the page has no file input.
            ScriptError: If the match links cannot be read.
        """
        async with self._lock:
            self._tracker.invalidate()
            logger.info("Image search started", image=image_path)

            await self._driver.navigate(self._config.image_search_url)
            await self._settle()
            await self._driver.upload_file(image_path, self._config.image_upload_selector)
            await self._settle()
            await self._driver.wait_for_navigation()

            payload = await self._driver.evaluate(
                IMAGE_MATCH_LINKS_SCRIPT, expecting=ResultShape.TEXT
            )

        logger.info("Image search completed", payload_chars=len(payload))
        return payload

    async def close(self) -> None:
        """Close the owned browser session."""
        self._driver.on_mutation = None
        await self._driver.close()
