"""
Data models for search queries and results.
"""

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field


class SearchQuery(BaseModel):
    """A single search invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str = Field(..., min_length=1, description="Search term")
    result_limit: int | None = Field(
        default=None, ge=1, description="Results to wait for on a full extraction"
    )
    use_search_bar: bool = Field(
        default=True, description="Allow the warm path (in-page search box) when available"
    )


class SearchResult(BaseModel):
    """A decoded search result."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., description="Result title")
    url: str = Field(..., description="Absolute result URL")
    description: str | None = Field(default=None, description="Snippet text if available")
    name: str | None = Field(default=None, description="Site name if available")
    query: str = Field(..., description="Query string that produced this result")

    def to_dict(self) -> dict[str, str | None]:
        """Convert to dictionary for serialization."""
        return {
            "title": self.title,
            "url": self.url,
            "description": self.description,
            "name": self.name,
            "query": self.query,
        }


class ResultSnapshot(BaseModel):
    """Ordered results for one query at one point in time."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: tuple[SearchResult, ...] = ()
    final: bool = Field(default=False, description="True for the settled extraction")

    @classmethod
    def of(cls, query: str, results: Sequence[SearchResult], final: bool = False) -> "ResultSnapshot":
        return cls(query=query, results=tuple(results), final=final)
