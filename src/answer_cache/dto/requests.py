"""Request DTOs for API endpoints."""

from pydantic import BaseModel, Field

from answer_cache.entities import QueryContext, SourceReference


class ContextFields(BaseModel):
    """Context a query is asked in."""

    zone: str = Field(..., description="Geographic zone", min_length=1)
    development: str = Field(..., description="Development (project) name", min_length=1)
    document_type: str | None = Field(None, description="Optional document type restriction")

    def to_context(self) -> QueryContext:
        return QueryContext(self.zone, self.development, self.document_type or None)


class LookupRequest(ContextFields):
    """Request DTO for looking up a cached answer."""

    query: str = Field(..., description="The user query", min_length=1)


class SourceItem(BaseModel):
    """A source document an answer was built from."""

    filename: str = Field(..., min_length=1)
    page: int | None = Field(None, ge=1)
    relevance_score: float | None = None

    def to_reference(self) -> SourceReference:
        return SourceReference(self.filename, self.page, self.relevance_score)


class SaveRequest(ContextFields):
    """Request DTO for storing a freshly generated answer."""

    query: str = Field(..., description="The user query", min_length=1)
    response: str = Field(..., description="The generated answer", min_length=1)
    sources: list[SourceItem] = Field(
        default_factory=list,
        description="Ordered sources behind the answer",
    )
