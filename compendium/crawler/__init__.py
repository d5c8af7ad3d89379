"""
Compendium crawler module.

Browser session abstraction consumed by the search layer:
    BrowserDriver - Protocol for an exclusively owned browser session
    PlaywrightDriver - Playwright implementation
    NavigationError / ScriptError / UploadError - Driver error taxonomy
"""

from compendium.crawler.driver import (
    BrowserDriver,
    DriverError,
    MutationEvent,
    MutationHandler,
    NavigationError,
    ResultShape,
    ScriptError,
    UploadError,
    coerce_script_result,
)
from compendium.crawler.playwright_driver import PlaywrightDriver

__all__ = [
    "BrowserDriver",
    "DriverError",
    "MutationEvent",
    "MutationHandler",
    "NavigationError",
    "PlaywrightDriver",
    "ResultShape",
    "ScriptError",
    "UploadError",
    "coerce_script_result",
]
