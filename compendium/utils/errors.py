"""
Base exception for Compendium.

Concrete errors live next to the component that raises them:
- crawler.driver: NavigationError, ScriptError, UploadError
- search.decoder: DecodeError
- filter.ranker: RankerError
"""


class CompendiumError(Exception):
    """Base class for all Compendium errors."""

    pass
