"""
Pytest configuration and shared fixtures for Compendium tests.

Test Classification:
- @pytest.mark.unit: No external dependencies (fast, <1s/test)
- @pytest.mark.integration: Mocked external dependencies (<5s/test)
- @pytest.mark.e2e: Real browser / Ollama required (excluded by default)
- @pytest.mark.slow: Tests taking more than 5 seconds (excluded by default)

Tests without a classification marker are treated as unit tests.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Awaitable, Callable, Generator
from pathlib import Path
from typing import Any

import pytest

# Point settings at the repository config before anything loads them
_CONFIG_DIR = Path(__file__).parent.parent / "config"
os.environ.setdefault("COMPENDIUM_CONFIG_DIR", str(_CONFIG_DIR))

from compendium.crawler.driver import (  # noqa: E402
    MutationEvent,
    MutationHandler,
    NavigationError,
    ResultShape,
    UploadError,
    coerce_script_result,
)
from compendium.search.scripts import (  # noqa: E402
    CURRENT_RESULTS_SCRIPT,
    IMAGE_MATCH_LINKS_SCRIPT,
    SEARCH_BAR_SCRIPT,
)
from compendium.utils.config import SearchConfig, get_settings  # noqa: E402

FAST_TIMEOUT_MS = 50
FULL_TIMEOUT_MS = 500
ENGINE_SESSION_PARAMS = "sca_esv=abc&ei=XyZ123"


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line("markers", "unit: Unit tests with no external dependencies")
    config.addinivalue_line("markers", "integration: Tests with mocked external dependencies")
    config.addinivalue_line("markers", "e2e: Tests requiring a real browser or LLM")
    config.addinivalue_line("markers", "slow: Tests taking more than 5 seconds")


def pytest_collection_modifyitems(config, items):
    """Default unclassified tests to the unit marker."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Reload settings for every test so env overrides do not leak."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Fake Browser Driver
# =============================================================================


def results_payload(*records: tuple[str, str]) -> str:
    """Build an extraction payload from (title, link) pairs."""
    return json.dumps([{"title": title, "link": link} for title, link in records])


class FakeDriver:
    """
    In-memory BrowserDriver for controller tests.

    Extraction payloads are served from two queues: ``fast_payloads`` for
    lightweight extractions and ``full_payloads`` for the settled extraction
    of a cold navigation (told apart by the timeout the caller passes).
    A queued Exception instance is raised instead of returned. When a queue
    runs dry its last value is repeated.
    """

    def __init__(self, current_url: str = "about:blank"):
        self.on_mutation: MutationHandler | None = None
        self.is_loading = False
        self._current_url = current_url

        self.calls: list[tuple[str, Any]] = []
        self.fast_payloads: list[Any] = ["[]"]
        self.full_payloads: list[Any] = ["[]"]
        self.current_results_payload: Any = "[]"
        self.image_payload: Any = "[]"
        self.search_box_present: Any = True

        self.navigate_error: Exception | None = None
        self.wait_error: Exception | None = None
        self.upload_selectors: set[str] = {"input[type=file]"}
        self.engine_params = ENGINE_SESSION_PARAMS

        # Mutations fired while navigate() is in flight
        self.mutations_during_navigation: int = 0
        # When set, navigate() blocks until the event is set
        self.navigate_gate: asyncio.Event | None = None
        self.navigate_started = asyncio.Event()
        self.navigate_hook: Callable[[FakeDriver, str], Awaitable[None]] | None = None
        # When set, wait_for_navigation() blocks until the event is set
        self.wait_gate: asyncio.Event | None = None
        self.wait_started = asyncio.Event()

        self.closed = False

    @property
    def current_url(self) -> str:
        return self._current_url

    @current_url.setter
    def current_url(self, value: str) -> None:
        self._current_url = value

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    def fire_mutation(self, loading: bool = True) -> None:
        """Push a mutation notification to the registered handler, if any."""
        if self.on_mutation is not None:
            self.on_mutation(MutationEvent(url=self._current_url, loading=loading))

    @staticmethod
    async def yield_loop(times: int = 10) -> None:
        for _ in range(times):
            await asyncio.sleep(0)

    async def navigate(self, url: str) -> None:
        self.calls.append(("navigate", url))
        self.navigate_started.set()

        if self.navigate_error is not None:
            raise self.navigate_error

        self.is_loading = True
        for _ in range(self.mutations_during_navigation):
            self.fire_mutation()
            await self.yield_loop()

        if self.navigate_hook is not None:
            await self.navigate_hook(self, url)

        if self.navigate_gate is not None:
            await self.navigate_gate.wait()

        separator = "&" if "?" in url else "?"
        self._current_url = f"{url}{separator}{self.engine_params}" if self.engine_params else url
        self.is_loading = False

    async def wait_for_navigation(self) -> None:
        self.calls.append(("wait_for_navigation", None))
        self.wait_started.set()
        if self.wait_gate is not None:
            await self.wait_gate.wait()
        if self.wait_error is not None:
            raise self.wait_error

    async def evaluate(
        self,
        script: str,
        arguments: dict[str, Any] | None = None,
        expecting: ResultShape = ResultShape.JSON,
    ) -> Any:
        arguments = arguments or {}

        if script == SEARCH_BAR_SCRIPT:
            self.calls.append(("search_bar", arguments.get("query")))
            value = self.search_box_present
        elif script == IMAGE_MATCH_LINKS_SCRIPT:
            self.calls.append(("image_links", None))
            value = self.image_payload
        elif script == CURRENT_RESULTS_SCRIPT:
            self.calls.append(("current_results", arguments))
            value = self.current_results_payload
        elif arguments.get("timeoutMs") == FULL_TIMEOUT_MS:
            self.calls.append(("full_extract", arguments))
            value = self._next(self.full_payloads)
        else:
            self.calls.append(("fast_extract", arguments))
            value = self._next(self.fast_payloads)

        if isinstance(value, Exception):
            raise value
        return coerce_script_result(value, expecting)

    async def upload_file(self, path: str, target_selector: str) -> None:
        self.calls.append(("upload_file", path))
        if target_selector not in self.upload_selectors:
            raise UploadError(target_selector, "target element not found")

    async def close(self) -> None:
        self.calls.append(("close", None))
        self.closed = True

    @staticmethod
    def _next(queue: list[Any]) -> Any:
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]


def navigation_failure(url: str = "https://www.google.com/search") -> NavigationError:
    return NavigationError(url, "net::ERR_CONNECTION_RESET")


@pytest.fixture
def search_config() -> SearchConfig:
    """Search configuration with no settle delay and distinguishable timeouts."""
    return SearchConfig(
        base_url="https://www.google.com/search",
        max_reuse=3,
        settle_delay_ms=0,
        fast_result_timeout_ms=FAST_TIMEOUT_MS,
        full_result_timeout_ms=FULL_TIMEOUT_MS,
    )


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()
