"""
Browser driver abstraction for Compendium.

Defines the capability set the search layer consumes from a browser session
(navigation, script evaluation, file upload, mutation notification) and the
error taxonomy every driver implementation translates its failures into.

Script results are decoded by an explicit expected shape chosen at the call
site (ResultShape) rather than by probing the runtime type of the payload.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from compendium.utils.errors import CompendiumError

# =============================================================================
# Exceptions
# =============================================================================


class DriverError(CompendiumError):
    """Base class for browser driver failures."""

    pass


class NavigationError(DriverError):
    """Raised when a page cannot be loaded (timeout or network failure)."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")


class ScriptError(DriverError):
    """Raised when an in-page script fails or returns an unexpected shape."""

    pass


class UploadError(DriverError):
    """Raised when a file cannot be handed to the target element."""

    def __init__(self, selector: str, reason: str):
        self.selector = selector
        self.reason = reason
        super().__init__(f"Upload to {selector!r} failed: {reason}")


# =============================================================================
# Data Classes
# =============================================================================


class ResultShape(str, Enum):
    """Expected shape of a script evaluation result."""

    NONE = "none"  # result is discarded
    TEXT = "text"  # str
    INTEGER = "integer"  # int (bool rejected)
    BOOLEAN = "boolean"  # bool
    JSON = "json"  # dict or list


@dataclass(frozen=True)
class MutationEvent:
    """A document mutation reported by the driver."""

    url: str
    loading: bool
    timestamp: float = field(default_factory=time.time)


MutationHandler = Callable[[MutationEvent], None]


def coerce_script_result(value: Any, shape: ResultShape) -> Any:
    """Check a raw evaluation result against the shape expected by the caller.

    Args:
        value: Value returned by the page.
        shape: Shape the caller expects.

    Returns:
        The value (None for ResultShape.NONE).

    Raises:
        ScriptError: If the value does not have the expected shape.
    """
    if shape == ResultShape.NONE:
        return None

    if shape == ResultShape.TEXT:
        ok = isinstance(value, str)
    elif shape == ResultShape.INTEGER:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif shape == ResultShape.BOOLEAN:
        ok = isinstance(value, bool)
    else:
        ok = isinstance(value, dict | list)

    if not ok:
        raise ScriptError(
            f"Script returned {type(value).__name__}, expected {shape.value}"
        )
    return value


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class BrowserDriver(Protocol):
    """
    Protocol for a single, exclusively owned browser session.

    A driver pushes MutationEvent values to ``on_mutation`` whenever the
    document changes while the page reports itself as still loading.
    Owners must reset ``on_mutation`` to None when they stop listening.
    """

    on_mutation: MutationHandler | None

    @property
    def current_url(self) -> str:
        """URL of the page currently shown by the session."""
        ...

    @property
    def is_loading(self) -> bool:
        """Whether the page reports itself as still loading."""
        ...

    async def navigate(self, url: str) -> None:
        """Navigate and wait for completion.

        Raises:
            NavigationError: On timeout or network failure.
        """
        ...

    async def wait_for_navigation(self) -> None:
        """Wait for an in-flight navigation to settle.

        Raises:
            NavigationError: On timeout or network failure.
        """
        ...

    async def evaluate(
        self,
        script: str,
        arguments: dict[str, Any] | None = None,
        expecting: ResultShape = ResultShape.JSON,
    ) -> Any:
        """Evaluate a script body in the page.

        ``arguments`` are exposed to the script as ``args``.

        Raises:
            ScriptError: On evaluation failure or shape mismatch.
        """
        ...

    async def upload_file(self, path: str, target_selector: str) -> None:
        """Hand a local file to a file input.

        Raises:
            UploadError: If the target element is absent.
        """
        ...

    async def close(self) -> None:
        """Release the session."""
        ...
