"""Query context domain entity."""

from dataclasses import dataclass


@dataclass(frozen=True)
class QueryContext:
    """Scope a cached answer belongs to.

    Attributes:
        zone: Geographic zone the question is about
        development: Development (project) the question is about
        document_type: Optional document type the answer was restricted to
    """

    zone: str
    development: str
    document_type: str | None = None

    def as_filter(self) -> dict[str, str]:
        """Exact-match metadata filter for vector queries.

        ``document_type`` is only part of the filter when it is set.
        """
        result = {"zone": self.zone, "development": self.development}
        if self.document_type:
            result["document_type"] = self.document_type
        return result
